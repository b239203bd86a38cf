from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol

from docs_indexer.cache.models import CacheRecord, Lease, LeaseGrant, SourceStats


class MetadataStore(Protocol):
    """
    Durable record of cache state and run leases.

    Every mutating call is a single transaction at the storage layer. Any I/O
    failure surfaces as StoreUnavailable.
    """

    def get(self, resource_id: str) -> Optional[CacheRecord]:
        ...

    def upsert(self, record: CacheRecord) -> None:
        ...

    def bulk_upsert(self, records: Iterable[CacheRecord]) -> int:
        ...

    def query(
        self,
        *,
        source: Optional[str] = None,
        indexed: Optional[bool] = None,
        updated_after: Optional[datetime] = None,
        updated_before: Optional[datetime] = None,
        checked_before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[CacheRecord]:
        ...

    def aggregate_by_source(self) -> list[SourceStats]:
        ...

    def acquire_lease(self, name: str, ttl_seconds: float, *, holder: Optional[str] = None) -> LeaseGrant:
        ...

    def renew_lease(self, name: str, holder: str, ttl_seconds: float) -> bool:
        ...

    def release_lease(self, name: str, holder: str) -> bool:
        ...

    def reap_expired_leases(self) -> int:
        ...

    def list_leases(self) -> list[Lease]:
        ...

    def close(self) -> None:
        ...
