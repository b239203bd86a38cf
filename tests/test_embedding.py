import tempfile
import unittest

from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings

from docs_indexer.embedding import LangChainEmbeddingClient, LocalVectorIndex, chunk_id
from docs_indexer.errors import EmbeddingFailure


class FailingEmbeddings(Embeddings):
    def embed_documents(self, texts):
        raise ConnectionError("connection reset")

    def embed_query(self, text):
        raise ConnectionError("connection reset")


class ShortEmbeddings(Embeddings):
    def embed_documents(self, texts):
        return [[0.0, 1.0]]

    def embed_query(self, text):
        return [0.0, 1.0]


class LangChainEmbeddingClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_one_vector_per_chunk(self) -> None:
        client = LangChainEmbeddingClient(DeterministicFakeEmbedding(size=8))
        vectors = await client.embed(["first", "second", "first"])

        self.assertEqual(len(vectors), 3)
        self.assertEqual(len(vectors[0]), 8)
        self.assertEqual(vectors[0], vectors[2])

    async def test_empty_input_makes_no_request(self) -> None:
        client = LangChainEmbeddingClient(FailingEmbeddings())
        self.assertEqual(await client.embed([]), [])

    async def test_provider_errors_become_embedding_failures(self) -> None:
        with self.assertRaises(EmbeddingFailure):
            await LangChainEmbeddingClient(FailingEmbeddings()).embed(["text"])

    async def test_vector_count_mismatch_is_a_failure(self) -> None:
        with self.assertRaises(EmbeddingFailure):
            await LangChainEmbeddingClient(ShortEmbeddings()).embed(["a", "b"])


class LocalVectorIndexTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.index = LocalVectorIndex(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def test_store_replaces_previous_chunks(self) -> None:
        url = "https://docs.example.com/a"
        await self.index.store(url, ["one", "two", "three"], [[1.0], [2.0], [3.0]], {"title": "A"})
        await self.index.store(url, ["only"], [[4.0]], {"title": "A2"})

        document = self.index.load(url)
        self.assertEqual(document["metadata"], {"title": "A2"})
        self.assertEqual(
            document["chunks"],
            [{"id": chunk_id(url, 0), "index": 0, "text": "only", "vector": [4.0]}],
        )

    async def test_mismatched_vectors_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await self.index.store("https://docs.example.com/a", ["one"], [], {})

    def test_load_missing_resource(self) -> None:
        self.assertIsNone(self.index.load("https://docs.example.com/none"))

    def test_chunk_ids(self) -> None:
        self.assertEqual(chunk_id("https://docs.example.com/a", 2), "https://docs.example.com/a#chunk2")


if __name__ == "__main__":
    unittest.main()
