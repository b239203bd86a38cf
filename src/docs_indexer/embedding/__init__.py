from docs_indexer.embedding.interfaces import EmbeddingClient, VectorSink
from docs_indexer.embedding.langchain_client import LangChainEmbeddingClient, build_embeddings
from docs_indexer.embedding.vector_index import LocalVectorIndex, chunk_id

__all__ = [
    "EmbeddingClient",
    "LangChainEmbeddingClient",
    "LocalVectorIndex",
    "VectorSink",
    "build_embeddings",
    "chunk_id",
]
