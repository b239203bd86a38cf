"""Cache records, lease bookkeeping and the durable metadata store."""

from docs_indexer.cache.io import BodyStore
from docs_indexer.cache.models import CacheRecord, Lease, LeaseGrant, SourceStats, Validators
from docs_indexer.cache.sqlite_store import SqliteMetadataStore
from docs_indexer.cache.store import MetadataStore

__all__ = [
    "BodyStore",
    "CacheRecord",
    "Lease",
    "LeaseGrant",
    "MetadataStore",
    "SourceStats",
    "SqliteMetadataStore",
    "Validators",
]
