from docs_indexer.extract.html_extractor import ExtractedDocument, Extractor, HtmlExtractor, clean_title, extract_title

__all__ = ["ExtractedDocument", "Extractor", "HtmlExtractor", "clean_title", "extract_title"]
