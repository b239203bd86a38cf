from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Literal, Optional

from docs_indexer.cache.models import CacheRecord


@dataclass(frozen=True, slots=True)
class ResourceError:
    resource_id: str
    message: str


@dataclass(slots=True)
class RunReport:
    """
    Outcome of one indexing run for a source.

    Skipped resources (unchanged, including pre-filtered ones) are counted
    separately from newly indexed ones and from failures.
    """

    source: str
    success: bool = False
    indexed_count: int = 0
    skipped_count: int = 0
    prefiltered_count: int = 0
    errors: list[ResourceError] = field(default_factory=list)
    cancelled: bool = False
    # Set when another run holds the source lease
    lease_remaining_ttl: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(slots=True)
class ChangeSummary:
    source: str
    changed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    errors: list[ResourceError] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


OutcomeKind = Literal["indexed", "skipped", "changed", "unchanged", "failed"]


@dataclass(frozen=True, slots=True)
class ResourceOutcome:
    resource_id: str
    kind: OutcomeKind
    # Record whose last_checked_at/validators should be refreshed in the batch commit
    touched: Optional[CacheRecord] = None
    error: Optional[ResourceError] = None
