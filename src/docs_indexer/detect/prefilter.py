from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from docs_indexer.cache.models import CacheRecord
from docs_indexer.discovery.models import CandidateUrl

logger = logging.getLogger(__name__)


def can_skip(candidate: CandidateUrl, record: Optional[CacheRecord]) -> bool:
    """
    True when the manifest timestamp proves the resource has not changed since
    it was last checked.

    Compares against last_checked_at rather than the time of the last content
    change, so a manifest with coarser resolution than the check interval can
    hide a very recent change.
    """
    if candidate.source_last_mod is None or record is None:
        return False
    if not record.indexed or record.last_checked_at is None:
        return False
    return candidate.source_last_mod <= record.last_checked_at


def prefilter_candidates(
    candidates: Iterable[CandidateUrl],
    records: Mapping[str, CacheRecord],
) -> tuple[list[CandidateUrl], list[CandidateUrl]]:
    survivors: list[CandidateUrl] = []
    skipped: list[CandidateUrl] = []
    for candidate in candidates:
        if can_skip(candidate, records.get(candidate.url)):
            skipped.append(candidate)
        else:
            survivors.append(candidate)
    if skipped:
        logger.info("Pre-filtered unchanged URLs by manifest timestamp. skipped=%d remaining=%d", len(skipped), len(survivors))
    return survivors, skipped
