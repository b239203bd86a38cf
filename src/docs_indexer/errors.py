"""
Error taxonomy for the indexing pipeline.

Store and lease errors are run-level: the run cannot proceed safely and stops.
Resource failures are per-resource: they are recorded in the run report and the
run continues with the next resource.
"""

from __future__ import annotations

from typing import Optional


class IndexerError(Exception):
    """Base class for all indexer errors."""


class StoreUnavailable(IndexerError):
    """The metadata store could not be read or written; cache state is unknown."""


class LeaseConflict(IndexerError):
    def __init__(self, name: str, remaining_ttl: float) -> None:
        super().__init__(f"Lease {name!r} is held by another run (expires in {remaining_ttl:.0f}s)")
        self.name = name
        self.remaining_ttl = remaining_ttl


class ResourceFailure(IndexerError):
    def __init__(self, message: str, *, resource_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id


class FetchFailure(ResourceFailure):
    """Transport error, timeout or error status while fetching a resource."""


class EmbeddingFailure(ResourceFailure):
    """The embedding service failed; callers may retry."""


class ExtractionFailure(ResourceFailure):
    """The fetched body is structurally unprocessable; never retried."""


__all__ = [
    "EmbeddingFailure",
    "ExtractionFailure",
    "FetchFailure",
    "IndexerError",
    "LeaseConflict",
    "ResourceFailure",
    "StoreUnavailable",
]
