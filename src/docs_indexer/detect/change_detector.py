from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Optional

from docs_indexer.cache.models import CacheRecord, Validators
from docs_indexer.cache.utils import hash_text, parse_http_date
from docs_indexer.errors import FetchFailure
from docs_indexer.fetch.interfaces import Fetcher

logger = logging.getLogger(__name__)

DetectionStatus = Literal["new", "changed", "unchanged"]
DetectionMethod = Literal["fetch", "etag", "last_modified", "not_modified", "content_hash", "fallback"]


@dataclass(frozen=True, slots=True)
class Detection:
    url: str
    status: DetectionStatus
    method: DetectionMethod
    # Freshly fetched body, when the decision required one
    body: Optional[str] = None
    content_hash: Optional[str] = None
    validators: Validators = field(default_factory=Validators)

    @property
    def changed(self) -> bool:
        return self.status != "unchanged"


def _normalize_etag(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value


def _can_fall_back(record: CacheRecord) -> bool:
    return record.body_ref is not None and record.content_hash is not None and not record.validators.is_empty


class ChangeDetector:
    """
    Decides whether a resource changed since it was cached, using the cheapest
    signal that gives a confident answer: ETag probe, Last-Modified probe, then
    a conditional GET whose body hash is compared with the cached hash.
    """

    def __init__(self, fetcher: Fetcher) -> None:
        self._fetcher = fetcher

    async def check(self, url: str, record: Optional[CacheRecord]) -> Detection:
        if record is None or record.content_hash is None:
            result = await self._fetcher.fetch(url)
            body = result.body or ""
            return Detection(
                url=url,
                status="new",
                method="fetch",
                body=body,
                content_hash=hash_text(body),
                validators=result.validators,
            )

        cached = record.validators
        try:
            if not cached.is_empty:
                probe = await self._fetcher.probe(url)
                if probe.ok:
                    decided = self._decide_from_probe(url, record, probe.validators)
                    if decided is not None:
                        return decided

            result = await self._fetcher.fetch(url, validators=None if cached.is_empty else cached)
        except FetchFailure as e:
            if not _can_fall_back(record):
                raise
            logger.warning("Change check failed, reusing cached body. url=%s error=%s", url, e)
            return Detection(
                url=url,
                status="unchanged",
                method="fallback",
                content_hash=record.content_hash,
                validators=cached,
            )

        validators = result.validators.merged_with(cached)
        if result.status == "not_modified":
            return Detection(
                url=url,
                status="unchanged",
                method="not_modified",
                content_hash=record.content_hash,
                validators=validators,
            )

        body = result.body or ""
        content_hash = hash_text(body)
        if content_hash == record.content_hash:
            return Detection(
                url=url,
                status="unchanged",
                method="content_hash",
                body=body,
                content_hash=content_hash,
                validators=validators,
            )

        logger.info("Content changed. url=%s old_hash=%s new_hash=%s", url, record.content_hash[:12], content_hash[:12])
        return Detection(
            url=url,
            status="changed",
            method="content_hash",
            body=body,
            content_hash=content_hash,
            validators=result.validators,
        )

    def _decide_from_probe(self, url: str, record: CacheRecord, current: Validators) -> Optional[Detection]:
        cached = record.validators

        cached_etag = _normalize_etag(cached.etag)
        if cached_etag and cached_etag == _normalize_etag(current.etag):
            return Detection(
                url=url,
                status="unchanged",
                method="etag",
                content_hash=record.content_hash,
                validators=current.merged_with(cached),
            )

        cached_time = parse_http_date(cached.last_modified)
        current_time = parse_http_date(current.last_modified)
        if cached_time is not None and current_time is not None and current_time <= cached_time:
            return Detection(
                url=url,
                status="unchanged",
                method="last_modified",
                content_hash=record.content_hash,
                validators=current.merged_with(cached),
            )
        return None
