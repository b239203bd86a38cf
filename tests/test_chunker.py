import unittest

from docs_indexer.indexing import split_into_chunks


class ChunkerTests(unittest.TestCase):
    def test_short_text_is_one_chunk(self) -> None:
        self.assertEqual(split_into_chunks("One.\n\nTwo.", 100), ["One.\n\nTwo."])

    def test_paragraphs_are_packed_up_to_limit(self) -> None:
        paragraphs = ["a" * 40, "b" * 40, "c" * 40]
        chunks = split_into_chunks("\n\n".join(paragraphs), 100)
        self.assertEqual(chunks, [f"{'a' * 40}\n\n{'b' * 40}", "c" * 40])

    def test_every_chunk_respects_limit(self) -> None:
        text = "\n\n".join(" ".join(["word"] * n) for n in (5, 80, 3, 200, 1))
        chunks = split_into_chunks(text, 120)
        self.assertTrue(chunks)
        self.assertTrue(all(len(chunk) <= 120 for chunk in chunks))
        self.assertEqual(" ".join(" ".join(chunks).split()), " ".join(text.split()))

    def test_unbroken_paragraph_is_hard_split(self) -> None:
        chunks = split_into_chunks("x" * 250, 100)
        self.assertEqual([len(c) for c in chunks], [100, 100, 50])

    def test_blank_text_has_no_chunks(self) -> None:
        self.assertEqual(split_into_chunks("  \n\n \n", 100), [])

    def test_rejects_non_positive_limit(self) -> None:
        with self.assertRaises(ValueError):
            split_into_chunks("text", 0)


if __name__ == "__main__":
    unittest.main()
