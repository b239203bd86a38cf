from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from docs_indexer.cache.io import BodyStore
from docs_indexer.cache.models import CacheRecord, Validators
from docs_indexer.cache.store import MetadataStore
from docs_indexer.cache.utils import hash_text, utc_now
from docs_indexer.config.models import EmbeddingSettings, IndexingSettings, SourceSettings
from docs_indexer.detect.change_detector import ChangeDetector, Detection
from docs_indexer.detect.prefilter import prefilter_candidates
from docs_indexer.discovery.models import CandidateUrl
from docs_indexer.discovery.sitemap import Discovery
from docs_indexer.embedding.interfaces import EmbeddingClient, VectorSink
from docs_indexer.errors import (
    EmbeddingFailure,
    ExtractionFailure,
    LeaseConflict,
    ResourceFailure,
    StoreUnavailable,
)
from docs_indexer.extract.html_extractor import Extractor
from docs_indexer.fetch.interfaces import Fetcher
from docs_indexer.indexing.chunker import split_into_chunks
from docs_indexer.indexing.models import ChangeSummary, ResourceError, ResourceOutcome, RunReport
from docs_indexer.indexing.retry import retry_async

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


def lease_name_for(source_id: str) -> str:
    return f"index-{source_id}"


def _batches(items: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class IndexingOrchestrator:
    """
    Runs indexing passes over one source at a time.

    A run holds the source lease for its whole duration, processes resources in
    bounded concurrent batches and commits cache records only after the
    resource's chunks reached the vector sink.
    """

    def __init__(
        self,
        *,
        store: MetadataStore,
        discovery: Discovery,
        fetcher: Fetcher,
        detector: ChangeDetector,
        extractor: Extractor,
        embedder: EmbeddingClient,
        vector_sink: VectorSink,
        body_store: BodyStore,
        indexing: IndexingSettings,
        embedding: EmbeddingSettings,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store = store
        self._discovery = discovery
        self._fetcher = fetcher
        self._detector = detector
        self._extractor = extractor
        self._embedder = embedder
        self._vector_sink = vector_sink
        self._body_store = body_store
        self._indexing = indexing
        self._embedding = embedding
        self._clock = clock
        self._sleep = sleep
        self._stop_requested = asyncio.Event()

    def request_stop(self) -> None:
        """Stop before the next batch. The in-flight batch is allowed to finish."""
        if not self._stop_requested.is_set():
            logger.info("Stop requested; finishing the current batch.")
        self._stop_requested.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    # Lease handling

    def _acquire_lease(self, name: str) -> str:
        grant = self._store.acquire_lease(name, self._indexing.lease_ttl_seconds)
        if not grant.granted:
            raise LeaseConflict(name, grant.remaining_ttl)
        logger.info("Lease acquired. name=%s holder=%s ttl=%ss", name, grant.holder, self._indexing.lease_ttl_seconds)
        return grant.holder

    def _keep_lease(self, name: str, holder: str) -> None:
        if self._store.renew_lease(name, holder, self._indexing.lease_ttl_seconds):
            return
        # Expired but unclaimed leases can still be taken back by the same holder
        grant = self._store.acquire_lease(name, self._indexing.lease_ttl_seconds, holder=holder)
        if not grant.granted:
            raise LeaseConflict(name, grant.remaining_ttl)
        logger.warning("Lease had expired and was re-acquired. name=%s holder=%s", name, holder)

    def _release_lease(self, name: str, holder: str) -> None:
        try:
            released = self._store.release_lease(name, holder)
        except StoreUnavailable as e:
            logger.error("Failed to release lease; it will expire on its own. name=%s error=%s", name, e)
            return
        if released:
            logger.info("Lease released. name=%s holder=%s", name, holder)
        else:
            logger.warning("Lease was no longer held at release. name=%s holder=%s", name, holder)

    async def _between_batches(self, lease_name: str, holder: str) -> None:
        self._keep_lease(lease_name, holder)
        if self._indexing.batch_delay_seconds > 0:
            await self._sleep(self._indexing.batch_delay_seconds)

    # Indexing run

    async def run(self, source: SourceSettings, *, force_refresh: bool = False) -> RunReport:
        lease_name = lease_name_for(source.id)
        try:
            holder = self._acquire_lease(lease_name)
        except LeaseConflict as e:
            logger.warning(
                "Another run holds the source lease, skipping. source=%s remaining_ttl=%.0fs",
                source.id,
                e.remaining_ttl,
            )
            return RunReport(source=source.id, success=False, lease_remaining_ttl=e.remaining_ttl)

        report = RunReport(source=source.id)
        try:
            await self._run_locked(source, report, lease_name=lease_name, holder=holder, force_refresh=force_refresh)
        except LeaseConflict as e:
            logger.error("Lease lost during run, stopping. source=%s remaining_ttl=%.0fs", source.id, e.remaining_ttl)
            report.cancelled = True
            report.lease_remaining_ttl = e.remaining_ttl
        finally:
            self._release_lease(lease_name, holder)

        report.success = not report.errors and not report.cancelled
        logger.info(
            "Indexing run finished. source=%s success=%s indexed=%d skipped=%d prefiltered=%d errors=%d cancelled=%s",
            source.id,
            report.success,
            report.indexed_count,
            report.skipped_count,
            report.prefiltered_count,
            len(report.errors),
            report.cancelled,
        )
        return report

    async def _run_locked(
        self,
        source: SourceSettings,
        report: RunReport,
        *,
        lease_name: str,
        holder: str,
        force_refresh: bool,
    ) -> None:
        candidates = await self._discovery.discover(source)
        logger.info("Discovered candidates. source=%s count=%d force=%s", source.id, len(candidates), force_refresh)

        if force_refresh:
            survivors = list(candidates)
        else:
            records = {}
            for candidate in candidates:
                record = self._store.get(candidate.url)
                if record is not None:
                    records[candidate.url] = record
            survivors, prefiltered = prefilter_candidates(candidates, records)
            report.prefiltered_count = len(prefiltered)
            report.skipped_count += len(prefiltered)

        for index, batch in enumerate(_batches(survivors, self._indexing.batch_size)):
            if self._stop_requested.is_set():
                report.cancelled = True
                logger.warning("Run cancelled between batches. source=%s remaining=%d", source.id, len(survivors) - index * self._indexing.batch_size)
                break
            if index > 0:
                await self._between_batches(lease_name, holder)

            outcomes = await asyncio.gather(
                *(self._process(source, candidate, force_refresh=force_refresh) for candidate in batch),
                return_exceptions=True,
            )
            self._settle_batch(report, batch, outcomes)

    def _settle_batch(self, report: RunReport, batch: Sequence[CandidateUrl], outcomes: Sequence) -> None:
        touched: list[CacheRecord] = []
        store_error: Optional[StoreUnavailable] = None
        for candidate, outcome in zip(batch, outcomes):
            if isinstance(outcome, StoreUnavailable):
                store_error = store_error or outcome
                continue
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("Unexpected error processing resource. url=%s", candidate.url, exc_info=outcome)
                report.errors.append(ResourceError(resource_id=candidate.url, message=f"Unexpected error: {outcome!r}"))
                continue
            if outcome.kind == "indexed":
                report.indexed_count += 1
            elif outcome.kind == "skipped":
                report.skipped_count += 1
                if outcome.touched is not None:
                    touched.append(outcome.touched)
            elif outcome.error is not None:
                report.errors.append(outcome.error)

        if store_error is not None:
            logger.error("Metadata store unavailable, aborting run. source=%s error=%s", report.source, store_error)
            raise store_error
        if touched:
            self._store.bulk_upsert(touched)

    async def _process(self, source: SourceSettings, candidate: CandidateUrl, *, force_refresh: bool) -> ResourceOutcome:
        url = candidate.url
        record = self._store.get(url)
        try:
            if force_refresh:
                detection = await self._fetch_unconditionally(url, record)
            else:
                detection = await self._detector.check(url, record)

            if not detection.changed and record is not None and record.indexed:
                logger.debug("Resource unchanged. url=%s method=%s", url, detection.method)
                return ResourceOutcome(resource_id=url, kind="skipped", touched=self._touch(record, source, detection))

            body, content_hash, validators = await self._body_for(url, record, detection)
            await self._index_resource(
                source,
                url,
                body=body,
                content_hash=content_hash,
                validators=validators,
                previous=record,
            )
            return ResourceOutcome(resource_id=url, kind="indexed")
        except ResourceFailure as e:
            logger.warning("Resource failed. url=%s error_type=%s error=%s", url, type(e).__name__, e.message)
            return ResourceOutcome(
                resource_id=url,
                kind="failed",
                error=ResourceError(resource_id=url, message=e.message),
            )

    async def _fetch_unconditionally(self, url: str, record: Optional[CacheRecord]) -> Detection:
        result = await self._fetcher.fetch(url)
        body = result.body or ""
        return Detection(
            url=url,
            status="new" if record is None else "changed",
            method="fetch",
            body=body,
            content_hash=hash_text(body),
            validators=result.validators,
        )

    async def _body_for(
        self,
        url: str,
        record: Optional[CacheRecord],
        detection: Detection,
    ) -> tuple[str, str, Validators]:
        if detection.body is not None and detection.content_hash is not None:
            return detection.body, detection.content_hash, detection.validators

        # Unchanged but never indexed: reuse the cached body when it is still on disk
        if record is not None and record.content_hash is not None:
            cached = self._body_store.read(record.body_ref)
            if cached is not None:
                return cached, record.content_hash, detection.validators

        logger.info("Cached body unavailable, fetching again. url=%s", url)
        fresh = await self._fetch_unconditionally(url, record)
        return fresh.body or "", fresh.content_hash or hash_text(""), fresh.validators

    def _touch(self, record: CacheRecord, source: SourceSettings, detection: Detection) -> Optional[CacheRecord]:
        if detection.method == "fallback":
            return None
        return replace(
            record,
            source=record.source or source.id,
            validators=detection.validators.merged_with(record.validators),
            last_checked_at=self._clock(),
        )

    async def _index_resource(
        self,
        source: SourceSettings,
        url: str,
        *,
        body: str,
        content_hash: str,
        validators: Validators,
        previous: Optional[CacheRecord],
    ) -> None:
        document = self._extractor.extract(body)
        chunks = split_into_chunks(document.text, self._indexing.chunk_max_chars)
        if not chunks:
            raise ExtractionFailure("Document produced no chunks", resource_id=url)

        vectors = await retry_async(
            lambda: self._embedder.embed(chunks),
            attempts=self._embedding.max_attempts,
            initial_delay=self._embedding.initial_backoff_seconds,
            retry_on=EmbeddingFailure,
            sleep=self._sleep,
            description=f"embed {url}",
        )

        metadata = {
            "source": source.id,
            "source_name": source.display_name,
            "url": url,
            "title": document.title,
            "content_hash": content_hash,
            "total_chunks": len(chunks),
        }
        try:
            await self._vector_sink.store(url, chunks, vectors, metadata)
        except (OSError, ValueError) as e:
            raise ResourceFailure(f"Vector store write failed: {e}", resource_id=url) from e

        try:
            body_ref = self._body_store.write(url, body)
        except OSError as e:
            raise ResourceFailure(f"Body cache write failed: {e}", resource_id=url) from e

        self._store.upsert(
            CacheRecord(
                id=url,
                source=source.id,
                validators=validators,
                content_hash=content_hash,
                body_ref=body_ref,
                last_checked_at=self._clock(),
                indexed=True,
                created_at=previous.created_at if previous is not None else None,
            )
        )
        logger.info("Indexed resource. url=%s title=%s chunks=%d", url, document.title, len(chunks))

    # Change check without indexing

    async def check_changes(
        self,
        source: SourceSettings,
        *,
        older_than: Optional[timedelta] = None,
        limit: Optional[int] = None,
    ) -> ChangeSummary:
        """
        Run change detection over a source's cached records without indexing anything.

        Only records found unchanged get their last_checked_at refreshed, so
        changed ones are picked up by the next indexing run. Raises
        LeaseConflict when an indexing run holds the source.
        """
        lease_name = lease_name_for(source.id)
        holder = self._acquire_lease(lease_name)
        summary = ChangeSummary(source=source.id)
        try:
            checked_before = self._clock() - older_than if older_than is not None else None
            records = self._store.query(source=source.id, checked_before=checked_before, limit=limit)
            logger.info("Checking cached records for changes. source=%s count=%d", source.id, len(records))

            for index, batch in enumerate(_batches(records, self._indexing.batch_size)):
                if self._stop_requested.is_set():
                    summary.cancelled = True
                    logger.warning("Change check cancelled between batches. source=%s", source.id)
                    break
                if index > 0:
                    await self._between_batches(lease_name, holder)

                outcomes = await asyncio.gather(
                    *(self._check_one(source, record) for record in batch),
                    return_exceptions=True,
                )
                touched: list[CacheRecord] = []
                for record, outcome in zip(batch, outcomes):
                    if isinstance(outcome, BaseException):
                        if not isinstance(outcome, Exception):
                            raise outcome
                        logger.error("Unexpected error checking resource. url=%s", record.id, exc_info=outcome)
                        summary.errors.append(ResourceError(resource_id=record.id, message=f"Unexpected error: {outcome!r}"))
                    elif outcome.kind == "changed":
                        summary.changed.append(outcome.resource_id)
                    elif outcome.kind == "unchanged":
                        summary.unchanged.append(outcome.resource_id)
                        if outcome.touched is not None:
                            touched.append(outcome.touched)
                    elif outcome.error is not None:
                        summary.errors.append(outcome.error)
                if touched:
                    self._store.bulk_upsert(touched)
        finally:
            self._release_lease(lease_name, holder)

        logger.info(
            "Change check finished. source=%s changed=%d unchanged=%d errors=%d",
            source.id,
            len(summary.changed),
            len(summary.unchanged),
            len(summary.errors),
        )
        return summary

    async def _check_one(self, source: SourceSettings, record: CacheRecord) -> ResourceOutcome:
        try:
            detection = await self._detector.check(record.id, record)
        except ResourceFailure as e:
            logger.warning("Change check failed. url=%s error=%s", record.id, e.message)
            return ResourceOutcome(
                resource_id=record.id,
                kind="failed",
                error=ResourceError(resource_id=record.id, message=e.message),
            )
        if detection.changed:
            return ResourceOutcome(resource_id=record.id, kind="changed")
        return ResourceOutcome(resource_id=record.id, kind="unchanged", touched=self._touch(record, source, detection))
