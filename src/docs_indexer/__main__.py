from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from datetime import timedelta
from typing import Sequence

from docs_indexer.cache import BodyStore, SqliteMetadataStore
from docs_indexer.cache.utils import format_rfc3339
from docs_indexer.config import AppConfig, YamlConfigLoader
from docs_indexer.config.models import ConfigLoadRequest, SourceSettings
from docs_indexer.detect import ChangeDetector
from docs_indexer.discovery import SitemapDiscovery
from docs_indexer.embedding import LangChainEmbeddingClient, LocalVectorIndex, build_embeddings
from docs_indexer.errors import LeaseConflict, StoreUnavailable
from docs_indexer.extract import HtmlExtractor
from docs_indexer.fetch import HttpFetcher
from docs_indexer.indexing import IndexingOrchestrator
from docs_indexer.logging import init_logging

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docs-indexer", description="Incremental documentation indexer")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: index
    index_parser = subparsers.add_parser("index", help="Index one source, or every source with 'all'")
    index_parser.add_argument("source", help="Source id from the config, or 'all'")
    index_parser.add_argument("--force", action="store_true", help="Re-process every resource regardless of cache state")

    # Command: check
    check_parser = subparsers.add_parser("check", help="Detect changed resources without indexing")
    check_parser.add_argument("source", help="Source id from the config")
    check_parser.add_argument(
        "--older-than-days",
        type=float,
        default=None,
        help="Only check resources not checked for at least N days",
    )
    check_parser.add_argument("--limit", type=int, default=None, help="Check at most N resources")

    # Commands: maintenance
    subparsers.add_parser("stats", help="Show cache statistics per source")
    subparsers.add_parser("locks", help="List source leases")
    subparsers.add_parser("clear-locks", help="Delete expired leases left behind by crashed runs")

    return parser


def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    return loader.load(ConfigLoadRequest(yaml_path=args.config))


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _install_stop_handlers(orchestrator: IndexingOrchestrator) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.request_stop)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; KeyboardInterrupt still ends the process
            logger.debug("Signal handlers unavailable. signal=%s", sig)


def _selected_sources(config: AppConfig, source_arg: str) -> Sequence[SourceSettings]:
    if source_arg == "all":
        return list(config.sources)
    return [config.get_source(source_arg)]


async def _with_orchestrator(config: AppConfig, store: SqliteMetadataStore, work) -> int:
    async with HttpFetcher(config.fetch) as fetcher:
        orchestrator = IndexingOrchestrator(
            store=store,
            discovery=SitemapDiscovery(config.fetch),
            fetcher=fetcher,
            detector=ChangeDetector(fetcher),
            extractor=HtmlExtractor(),
            embedder=LangChainEmbeddingClient(build_embeddings(config.embedding)),
            vector_sink=LocalVectorIndex(config.indexing.vector_index_dir),
            body_store=BodyStore(config.store.body_dir),
            indexing=config.indexing,
            embedding=config.embedding,
        )
        _install_stop_handlers(orchestrator)
        return await work(orchestrator)


async def _index(args: argparse.Namespace, config: AppConfig, store: SqliteMetadataStore) -> int:
    try:
        sources = _selected_sources(config, args.source)
    except KeyError as e:
        logger.error("Invalid source. error=%s", e)
        return 1

    async def work(orchestrator: IndexingOrchestrator) -> int:
        exit_code = 0
        for source in sources:
            if orchestrator.stop_requested:
                logger.warning("Stop requested, not starting further sources. next_source=%s", source.id)
                exit_code = 1
                break
            logger.info("Indexing source. source=%s name=%s force=%s", source.id, source.display_name, args.force)
            report = await orchestrator.run(source, force_refresh=args.force)
            _print_json(report.to_dict())
            if not report.success:
                exit_code = 1
        return exit_code

    return await _with_orchestrator(config, store, work)


async def _check(args: argparse.Namespace, config: AppConfig, store: SqliteMetadataStore) -> int:
    try:
        source = config.get_source(args.source)
    except KeyError as e:
        logger.error("Invalid source. error=%s", e)
        return 1
    older_than = timedelta(days=args.older_than_days) if args.older_than_days is not None else None

    async def work(orchestrator: IndexingOrchestrator) -> int:
        try:
            summary = await orchestrator.check_changes(source, older_than=older_than, limit=args.limit)
        except LeaseConflict as e:
            logger.warning("Source is being indexed by another run. source=%s remaining_ttl=%.0fs", source.id, e.remaining_ttl)
            return 1
        _print_json(summary.to_dict())
        return 0 if not summary.errors and not summary.cancelled else 1

    return await _with_orchestrator(config, store, work)


def _stats(store: SqliteMetadataStore) -> int:
    _print_json(
        [
            {
                "source": stats.source,
                "total": stats.total,
                "indexed": stats.indexed_count,
                "last_updated": format_rfc3339(stats.last_updated) if stats.last_updated else None,
            }
            for stats in store.aggregate_by_source()
        ]
    )
    return 0


def _locks(store: SqliteMetadataStore) -> int:
    _print_json(
        [
            {
                "name": lease.name,
                "holder": lease.holder,
                "acquired_at": format_rfc3339(lease.acquired_at),
                "expires_at": format_rfc3339(lease.expires_at),
            }
            for lease in store.list_leases()
        ]
    )
    return 0


def _clear_locks(store: SqliteMetadataStore) -> int:
    removed = store.reap_expired_leases()
    logger.info("Expired leases removed. count=%d", removed)
    print(f"Removed {removed} expired lease(s)")
    return 0


async def _main_async() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    config = _load_config(args)
    init_logging(config.logging)

    store = SqliteMetadataStore(config.store.path, busy_timeout_seconds=config.store.busy_timeout_seconds)
    try:
        if args.command == "index":
            return await _index(args, config, store)
        if args.command == "check":
            return await _check(args, config, store)
        if args.command == "stats":
            return _stats(store)
        if args.command == "locks":
            return _locks(store)
        if args.command == "clear-locks":
            return _clear_locks(store)
        parser.error(f"Unknown command: {args.command}")
        return 2
    except StoreUnavailable as e:
        logger.error("Metadata store unavailable. error=%s", e)
        return 1
    finally:
        store.close()


def main() -> None:
    try:
        exit_code = asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        exit_code = 1
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
