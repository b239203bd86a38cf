from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class Validators:
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.etag and not self.last_modified

    def merged_with(self, fallback: Validators) -> Validators:
        """Prefer values from self, keeping fallback values the server did not resend."""
        return Validators(
            etag=self.etag or fallback.etag,
            last_modified=self.last_modified or fallback.last_modified,
        )


@dataclass(slots=True)
class CacheRecord:
    """
    Cache state of a single resource, keyed by its URL.

    `indexed` may only be true when `content_hash` describes the body that was
    actually embedded, and a `content_hash` always comes with a `body_ref`.
    """

    id: str
    source: Optional[str] = None
    validators: Validators = field(default_factory=Validators)
    content_hash: Optional[str] = None
    body_ref: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    indexed: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> None:
        if not self.id:
            raise ValueError("Cache record id must not be empty")
        if self.indexed and self.content_hash is None:
            raise ValueError(f"Indexed cache record has no content hash. id={self.id}")
        if self.content_hash is not None and self.body_ref is None:
            raise ValueError(f"Cache record with content hash has no body reference. id={self.id}")


@dataclass(frozen=True, slots=True)
class Lease:
    name: str
    holder: str
    acquired_at: datetime
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class LeaseGrant:
    name: str
    granted: bool
    holder: Optional[str] = None
    remaining_ttl: float = 0.0
    expires_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class SourceStats:
    source: str
    total: int
    indexed_count: int
    last_updated: Optional[datetime]
