from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Iterable, Optional, Protocol

import aiohttp

from docs_indexer.cache.utils import parse_rfc3339
from docs_indexer.config.models import FetchSettings, SourceSettings
from docs_indexer.discovery.models import CandidateUrl

logger = logging.getLogger(__name__)

SITEMAP_NAMESPACE = {"ns": "http://www.sitemaps.org/schemas/sitemap/0.9"}


class Discovery(Protocol):
    async def discover(self, source: SourceSettings) -> list[CandidateUrl]:
        """Return candidate resources for a source. Must not raise for remote failures."""
        ...


@dataclass(frozen=True, slots=True)
class ParsedSitemap:
    urls: list[CandidateUrl]
    # Child sitemap locations when the document is a <sitemapindex>
    children: list[str]


def parse_lastmod(value: Optional[str]) -> Optional[datetime]:
    """Parse a sitemap <lastmod>. Date-only values map to midnight UTC; bad values to None."""
    if not value:
        return None
    raw = value.strip()
    if not raw:
        return None
    try:
        if len(raw) == 10:
            return datetime.combine(datetime.fromisoformat(raw).date(), time(0, 0), tzinfo=timezone.utc)
        return parse_rfc3339(raw)
    except ValueError:
        logger.debug("Ignoring unparseable sitemap lastmod. value=%s", raw)
        return None


def _find(element: ET.Element, tag: str) -> Optional[ET.Element]:
    # Empty elements are falsy, so compare against None explicitly
    found = element.find(f"ns:{tag}", SITEMAP_NAMESPACE)
    if found is None:
        found = element.find(tag)
    return found


def _findall(element: ET.Element, tag: str) -> list[ET.Element]:
    found = element.findall(f"ns:{tag}", SITEMAP_NAMESPACE)
    if not found:
        found = element.findall(tag)
    return found


def _text(element: Optional[ET.Element]) -> Optional[str]:
    if element is None or element.text is None:
        return None
    text = element.text.strip()
    return text or None


def parse_sitemap(xml_content: bytes | str) -> ParsedSitemap:
    """Parse a <urlset> or <sitemapindex> document, with or without the sitemap namespace."""
    root = ET.fromstring(xml_content)

    children = [loc for loc in (_text(_find(item, "loc")) for item in _findall(root, "sitemap")) if loc]
    if children:
        return ParsedSitemap(urls=[], children=children)

    urls: list[CandidateUrl] = []
    for item in _findall(root, "url"):
        loc = _text(_find(item, "loc"))
        if not loc:
            continue
        urls.append(CandidateUrl(url=loc, source_last_mod=parse_lastmod(_text(_find(item, "lastmod")))))
    return ParsedSitemap(urls=urls, children=[])


def filter_candidates(
    candidates: Iterable[CandidateUrl],
    *,
    exclude_patterns: Iterable[str],
    max_urls: Optional[int] = None,
) -> list[CandidateUrl]:
    patterns = [p for p in exclude_patterns if p]
    seen: set[str] = set()
    result: list[CandidateUrl] = []
    for candidate in candidates:
        if candidate.url in seen:
            continue
        if any(pattern in candidate.url for pattern in patterns):
            continue
        seen.add(candidate.url)
        result.append(candidate)
        if max_urls is not None and len(result) >= max_urls:
            break
    return result


def fallback_candidates(source: SourceSettings) -> list[CandidateUrl]:
    urls = []
    for path in source.fallback_paths:
        if path.startswith(("http://", "https://")):
            urls.append(CandidateUrl(url=path))
        else:
            urls.append(CandidateUrl(url=f"{source.base_url}/{path.lstrip('/')}"))
    return filter_candidates(urls, exclude_patterns=(), max_urls=source.max_urls)


class SitemapDiscovery:
    """Discovers documentation pages from a source's sitemap, degrading to static fallback paths."""

    def __init__(self, settings: FetchSettings) -> None:
        self._settings = settings

    async def discover(self, source: SourceSettings) -> list[CandidateUrl]:
        sitemap_url = f"{source.base_url}/{source.sitemap_path.lstrip('/')}"
        try:
            async with aiohttp.ClientSession(headers={"User-Agent": self._settings.user_agent}) as session:
                raw_candidates = await self._collect(session, sitemap_url)
        except (aiohttp.ClientError, asyncio.TimeoutError, ET.ParseError) as e:
            logger.warning(
                "Sitemap discovery failed, using fallback URLs. source=%s sitemap=%s error=%s",
                source.id,
                sitemap_url,
                e,
            )
            return fallback_candidates(source)

        candidates = filter_candidates(
            raw_candidates,
            exclude_patterns=source.exclude_patterns,
            max_urls=source.max_urls,
        )
        if not candidates:
            logger.warning("Sitemap has no usable URLs, using fallback URLs. source=%s sitemap=%s", source.id, sitemap_url)
            return fallback_candidates(source)

        logger.info("Discovered URLs from sitemap. source=%s count=%d", source.id, len(candidates))
        return candidates

    async def _collect(self, session: aiohttp.ClientSession, sitemap_url: str) -> list[CandidateUrl]:
        parsed = parse_sitemap(await self._get(session, sitemap_url))
        if not parsed.children:
            return parsed.urls

        logger.info("Found sitemap index. sitemap=%s children=%d", sitemap_url, len(parsed.children))
        urls: list[CandidateUrl] = []
        for child_url in parsed.children:
            try:
                child = parse_sitemap(await self._get(session, child_url))
            except (aiohttp.ClientError, asyncio.TimeoutError, ET.ParseError) as e:
                logger.warning("Failed to read child sitemap. sitemap=%s error=%s", child_url, e)
                continue
            # Only one level of nesting is followed
            urls.extend(child.urls)
        return urls

    async def _get(self, session: aiohttp.ClientSession, url: str) -> bytes:
        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_seconds)
        async with session.get(url, timeout=timeout) as response:
            response.raise_for_status()
            return await response.read()
