from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Protocol

from docs_indexer.cache.models import Validators

FetchStatus = Literal["fresh", "not_modified"]


@dataclass(frozen=True, slots=True)
class ProbeResult:
    http_status: int
    validators: Validators = field(default_factory=Validators)

    @property
    def ok(self) -> bool:
        return 200 <= self.http_status < 300


@dataclass(frozen=True, slots=True)
class FetchResult:
    status: FetchStatus
    http_status: int
    body: Optional[str] = None
    validators: Validators = field(default_factory=Validators)


class Fetcher(Protocol):
    async def probe(self, url: str) -> ProbeResult:
        """Header-only existence check. Raises FetchFailure on transport errors only."""
        ...

    async def fetch(self, url: str, *, validators: Optional[Validators] = None) -> FetchResult:
        """Full GET, conditional when validators are given. Raises FetchFailure."""
        ...
