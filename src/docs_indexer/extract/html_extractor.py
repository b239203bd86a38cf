from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from bs4 import BeautifulSoup, Comment, Tag

from docs_indexer.errors import ExtractionFailure

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"
MAX_TITLE_CHARS = 80

UNWANTED_TAGS = [
    "script", "style", "noscript", "iframe", "svg", "button", "input", "select",
    "textarea", "canvas", "nav", "header", "footer", "aside",
]
UNWANTED_SELECTORS = [".sidebar", ".navigation"]
MAIN_SELECTORS = ["main", "article", ".content", ".documentation-content", "#content", ".main-content"]
BLOCK_TAGS = [
    "p", "div", "section", "li", "pre", "blockquote", "table", "tr",
    "h1", "h2", "h3", "h4", "h5", "h6", "dt", "dd", "br", "hr",
]

_SITE_SUFFIX = re.compile(r"\s+[|\-–—]\s+[^|\-–—]*$")
_PERMALINK = re.compile(r"\[#\]\([^)]+\s+\"Permalink\"\)")


@dataclass(frozen=True, slots=True)
class ExtractedDocument:
    text: str
    title: str


class Extractor(Protocol):
    def extract(self, body: str) -> ExtractedDocument:
        """Return normalized text and a title. Raises ExtractionFailure."""
        ...


def clean_title(raw: Optional[str], *, strip_site_suffix: bool = True) -> str:
    if not raw:
        return ""
    title = raw.replace("\xa0", " ")
    title = _PERMALINK.sub("", title)
    title = re.sub(r"\s+", " ", title).strip()
    if strip_site_suffix:
        stripped = _SITE_SUFFIX.sub("", title).strip()
        # Keep the full title when stripping would leave nothing
        if stripped:
            title = stripped
    if len(title) > MAX_TITLE_CHARS:
        title = title[: MAX_TITLE_CHARS - 3] + "..."
    return title


def _meta_content(soup: BeautifulSoup, **attrs: str) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if isinstance(tag, Tag):
        content = tag.get("content")
        if isinstance(content, str):
            return content
    return None


def extract_title(soup: BeautifulSoup) -> str:
    h1 = soup.find("h1")
    title_tag = soup.find("title")
    heading = clean_title(h1.get_text(" "), strip_site_suffix=False) if h1 is not None else ""
    if heading:
        return heading
    candidates = [
        _meta_content(soup, property="og:title"),
        title_tag.get_text(" ") if title_tag is not None else None,
        _meta_content(soup, name="twitter:title"),
    ]
    for candidate in candidates:
        title = clean_title(candidate)
        if title:
            return title
    return UNTITLED


def _normalize_text(text: str) -> str:
    paragraphs = []
    for block in re.split(r"\n\s*\n", text):
        collapsed = re.sub(r"\s+", " ", block).strip()
        if collapsed:
            paragraphs.append(collapsed)
    return "\n\n".join(paragraphs)


class HtmlExtractor:
    """Turns an HTML documentation page into plain text paragraphs plus a display title."""

    def extract(self, body: str) -> ExtractedDocument:
        soup = BeautifulSoup(body, "html.parser")
        # Title first, since header and nav removal may drop the only h1
        title = extract_title(soup)

        for element in soup(UNWANTED_TAGS):
            element.decompose()
        for selector in UNWANTED_SELECTORS:
            for element in soup.select(selector):
                element.decompose()
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()

        content: Optional[Tag] = None
        for selector in MAIN_SELECTORS:
            content = soup.select_one(selector)
            if content is not None:
                break
        if content is None:
            content = soup.body or soup

        for tag in content.find_all(BLOCK_TAGS):
            tag.insert_after("\n\n")

        text = _normalize_text(content.get_text())
        if not text:
            raise ExtractionFailure("No text content could be extracted")
        logger.debug("Extracted document. title=%s chars=%d", title, len(text))
        return ExtractedDocument(text=text, title=title)
