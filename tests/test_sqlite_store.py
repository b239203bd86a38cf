import tempfile
import threading
import unittest
from datetime import timedelta
from pathlib import Path

from docs_indexer.cache import CacheRecord, SqliteMetadataStore, Validators
from docs_indexer.errors import StoreUnavailable

from tests.fakes import START, FakeClock


def indexed_record(resource_id: str, *, source: str = "docs", etag: str = '"v1"') -> CacheRecord:
    return CacheRecord(
        id=resource_id,
        source=source,
        validators=Validators(etag=etag, last_modified="Wed, 01 Jan 2025 00:00:00 GMT"),
        content_hash="abc123",
        body_ref=f"/bodies/{resource_id.rsplit('/', 1)[-1]}.html",
        last_checked_at=START,
        indexed=True,
    )


class SqliteStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = Path(self._tmp.name) / "cache" / "index.db"
        self.clock = FakeClock()
        self.store = SqliteMetadataStore(self.db_path, clock=self.clock)

    def tearDown(self) -> None:
        self.store.close()
        self._tmp.cleanup()


class CacheRecordTests(SqliteStoreTestCase):
    def test_get_missing_record_returns_none(self) -> None:
        self.assertIsNone(self.store.get("https://docs.example.com/missing"))

    def test_upsert_then_get_round_trips_fields(self) -> None:
        record = indexed_record("https://docs.example.com/a")
        self.store.upsert(record)

        loaded = self.store.get(record.id)
        self.assertIsNotNone(loaded)
        self.assertEqual(loaded.validators, record.validators)
        self.assertEqual(loaded.content_hash, "abc123")
        self.assertEqual(loaded.last_checked_at, START)
        self.assertTrue(loaded.indexed)
        self.assertEqual(loaded.created_at, START)
        self.assertEqual(loaded.updated_at, START)

    def test_upsert_keeps_created_at_and_refreshes_updated_at(self) -> None:
        url = "https://docs.example.com/a"
        self.store.upsert(CacheRecord(id=url, source="docs"))
        self.clock.advance(60)
        self.store.upsert(indexed_record(url))

        loaded = self.store.get(url)
        self.assertEqual(loaded.created_at, START)
        self.assertEqual(loaded.updated_at, START + timedelta(seconds=60))
        self.assertTrue(loaded.indexed)

    def test_indexed_record_without_hash_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.store.upsert(CacheRecord(id="https://docs.example.com/a", indexed=True))

    def test_hash_without_body_ref_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.store.upsert(CacheRecord(id="https://docs.example.com/a", content_hash="abc"))

    def test_bulk_upsert_is_all_or_nothing(self) -> None:
        records = [
            indexed_record("https://docs.example.com/a"),
            CacheRecord(id="https://docs.example.com/bad", indexed=True),
        ]
        with self.assertRaises(ValueError):
            self.store.bulk_upsert(records)
        self.assertIsNone(self.store.get("https://docs.example.com/a"))

    def test_bulk_upsert_writes_every_record(self) -> None:
        count = self.store.bulk_upsert(indexed_record(f"https://docs.example.com/{i}") for i in range(5))
        self.assertEqual(count, 5)
        self.assertEqual(len(self.store.query(source="docs")), 5)
        self.assertEqual(self.store.bulk_upsert([]), 0)

    def test_query_filters_are_and_combined(self) -> None:
        self.store.upsert(indexed_record("https://docs.example.com/a"))
        self.clock.advance(3600)
        self.store.upsert(CacheRecord(id="https://docs.example.com/b", source="docs"))
        self.store.upsert(indexed_record("https://other.example.com/c", source="other"))

        self.assertEqual({r.id for r in self.store.query(source="docs")}, {"https://docs.example.com/a", "https://docs.example.com/b"})
        self.assertEqual([r.id for r in self.store.query(source="docs", indexed=True)], ["https://docs.example.com/a"])
        self.assertEqual([r.id for r in self.store.query(source="docs", indexed=False)], ["https://docs.example.com/b"])

        later = START + timedelta(seconds=1800)
        self.assertEqual(
            {r.id for r in self.store.query(updated_after=later)},
            {"https://docs.example.com/b", "https://other.example.com/c"},
        )
        self.assertEqual([r.id for r in self.store.query(updated_before=later)], ["https://docs.example.com/a"])
        self.assertEqual(len(self.store.query(limit=2)), 2)

    def test_query_checked_before_includes_never_checked(self) -> None:
        self.store.upsert(indexed_record("https://docs.example.com/a"))
        self.store.upsert(CacheRecord(id="https://docs.example.com/b", source="docs"))

        stale = self.store.query(source="docs", checked_before=START)
        self.assertEqual([r.id for r in stale], ["https://docs.example.com/b"])

    def test_aggregate_by_source(self) -> None:
        self.store.upsert(indexed_record("https://docs.example.com/a"))
        self.store.upsert(CacheRecord(id="https://docs.example.com/b", source="docs"))
        self.clock.advance(10)
        self.store.upsert(indexed_record("https://other.example.com/c", source="other"))
        self.store.upsert(CacheRecord(id="https://loose.example.com/d"))

        stats = {s.source: s for s in self.store.aggregate_by_source()}
        self.assertEqual(set(stats), {"docs", "other"})
        self.assertEqual(stats["docs"].total, 2)
        self.assertEqual(stats["docs"].indexed_count, 1)
        self.assertEqual(stats["docs"].last_updated, START)
        self.assertEqual(stats["other"].last_updated, START + timedelta(seconds=10))

    def test_unopenable_path_raises_store_unavailable(self) -> None:
        blocker = Path(self._tmp.name) / "not-a-dir"
        blocker.write_text("x", encoding="utf-8")
        with self.assertRaises(StoreUnavailable):
            SqliteMetadataStore(blocker / "index.db")


class LeaseTests(SqliteStoreTestCase):
    def test_acquire_grants_when_free(self) -> None:
        grant = self.store.acquire_lease("index-docs", 60)
        self.assertTrue(grant.granted)
        self.assertTrue(grant.holder)
        self.assertEqual(grant.expires_at, START + timedelta(seconds=60))

    def test_second_holder_is_refused_with_remaining_ttl(self) -> None:
        self.store.acquire_lease("index-docs", 60, holder="first")
        self.clock.advance(20)

        grant = self.store.acquire_lease("index-docs", 60, holder="second")
        self.assertFalse(grant.granted)
        self.assertAlmostEqual(grant.remaining_ttl, 40.0)

    def test_same_holder_reacquire_renews(self) -> None:
        self.store.acquire_lease("index-docs", 60, holder="first")
        self.clock.advance(30)
        grant = self.store.acquire_lease("index-docs", 60, holder="first")
        self.assertTrue(grant.granted)
        self.assertEqual(grant.expires_at, START + timedelta(seconds=90))

    def test_expired_lease_can_be_taken_over(self) -> None:
        self.store.acquire_lease("index-docs", 60, holder="first")
        self.clock.advance(60)

        grant = self.store.acquire_lease("index-docs", 60, holder="second")
        self.assertTrue(grant.granted)
        self.assertEqual([lease.holder for lease in self.store.list_leases()], ["second"])

    def test_release_requires_matching_holder(self) -> None:
        self.store.acquire_lease("index-docs", 60, holder="first")

        self.assertFalse(self.store.release_lease("index-docs", "intruder"))
        self.assertEqual(len(self.store.list_leases()), 1)
        self.assertTrue(self.store.release_lease("index-docs", "first"))
        self.assertEqual(self.store.list_leases(), [])
        self.assertFalse(self.store.release_lease("index-docs", "first"))

    def test_renew_only_for_current_unexpired_holder(self) -> None:
        self.store.acquire_lease("index-docs", 60, holder="first")
        self.assertFalse(self.store.renew_lease("index-docs", "second", 60))
        self.clock.advance(30)
        self.assertTrue(self.store.renew_lease("index-docs", "first", 60))
        self.assertEqual(self.store.list_leases()[0].expires_at, START + timedelta(seconds=90))
        self.clock.advance(90)
        self.assertFalse(self.store.renew_lease("index-docs", "first", 60))

    def test_reap_removes_only_expired(self) -> None:
        self.store.acquire_lease("index-a", 10, holder="a")
        self.store.acquire_lease("index-b", 100, holder="b")
        self.clock.advance(50)

        self.assertEqual(self.store.reap_expired_leases(), 1)
        self.assertEqual([lease.name for lease in self.store.list_leases()], ["index-b"])
        self.assertEqual(self.store.reap_expired_leases(), 0)

    def test_leases_are_independent_per_name(self) -> None:
        self.assertTrue(self.store.acquire_lease("index-a", 60, holder="a").granted)
        self.assertTrue(self.store.acquire_lease("index-b", 60, holder="b").granted)

    def test_concurrent_acquire_from_separate_connections_grants_exactly_one(self) -> None:
        stores = [SqliteMetadataStore(self.db_path, clock=self.clock) for _ in range(8)]
        barrier = threading.Barrier(len(stores))
        grants = []
        grants_lock = threading.Lock()

        def contend(index: int) -> None:
            barrier.wait()
            grant = stores[index].acquire_lease("index-docs", 120, holder=f"holder-{index}")
            with grants_lock:
                grants.append(grant)

        threads = [threading.Thread(target=contend, args=(i,)) for i in range(len(stores))]
        try:
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
        finally:
            for store in stores:
                store.close()

        granted = [g for g in grants if g.granted]
        refused = [g for g in grants if not g.granted]
        self.assertEqual(len(granted), 1)
        self.assertEqual(len(refused), len(stores) - 1)
        self.assertTrue(all(g.remaining_ttl > 0 for g in refused))


if __name__ == "__main__":
    unittest.main()
