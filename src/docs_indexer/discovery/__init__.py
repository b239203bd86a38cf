from docs_indexer.discovery.models import CandidateUrl
from docs_indexer.discovery.sitemap import (
    Discovery,
    ParsedSitemap,
    SitemapDiscovery,
    fallback_candidates,
    filter_candidates,
    parse_lastmod,
    parse_sitemap,
)

__all__ = [
    "CandidateUrl",
    "Discovery",
    "ParsedSitemap",
    "SitemapDiscovery",
    "fallback_candidates",
    "filter_candidates",
    "parse_lastmod",
    "parse_sitemap",
]
