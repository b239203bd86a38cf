"""Fetch collaborator contract and its HTTP implementation."""

from docs_indexer.fetch.http_fetcher import HttpFetcher
from docs_indexer.fetch.interfaces import Fetcher, FetchResult, FetchStatus, ProbeResult

__all__ = ["FetchResult", "FetchStatus", "Fetcher", "HttpFetcher", "ProbeResult"]
