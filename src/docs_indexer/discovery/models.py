from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class CandidateUrl:
    """A discovered resource. Never persisted; reconciled into a CacheRecord after a decision."""

    url: str
    source_last_mod: Optional[datetime] = None
