"""
Concurrency tests for tag resolution.

Many callers resolving the same name at once must all end up with one
tag. Threads share nothing but the database file; processes use separate
ItemStore instances, the real scenario when several ingest commands run
together.
"""

import multiprocessing
import threading
from pathlib import Path

from quizcore.item_store import ItemStore
from quizcore.tag_resolver import TagResolver
from quizcore.types import Visibility


# Worker functions must be top-level for multiprocessing spawn compatibility


def _worker_resolve(db_path: str, name: str, owner: str, visibility: str) -> str:
    """Resolve one name with a fresh store and return the tag id."""
    from quizcore.item_store import ItemStore
    from quizcore.tag_resolver import TagResolver
    from quizcore.types import Visibility

    store = ItemStore(Path(db_path))
    try:
        tag = TagResolver(store).resolve_or_create(
            name, Visibility(visibility), owner, True,
        )
        return tag.id
    finally:
        store.close()


def _worker_ingest(db_path: str, worker_id: int) -> int:
    """Ingest a small batch into a shared category; return created count."""
    from quizcore.ingest import IngestPipeline
    from quizcore.item_store import ItemStore
    from quizcore.types import RecordRequest, Visibility

    store = ItemStore(Path(db_path))
    try:
        records = [
            RecordRequest("Shared", f"Worker {worker_id} question {i}?", "yes")
            for i in range(5)
        ]
        outcome = IngestPipeline(store).ingest(
            records, Visibility.PRIVATE, "alice", False,
        )
        return outcome.created_count
    finally:
        store.close()


class TestThreadedResolve:

    def test_parallel_threads_get_one_tag(self, tmp_path):
        """16 threads with their own stores race on one name."""
        db_path = tmp_path / "items.db"
        ItemStore(db_path).close()

        barrier = threading.Barrier(16)
        results: list[str] = []
        errors: list[Exception] = []
        lock = threading.Lock()

        def run():
            store = ItemStore(db_path)
            try:
                barrier.wait()
                tag = TagResolver(store).resolve_or_create(
                    "Geography", Visibility.PRIVATE, "alice", False,
                )
                with lock:
                    results.append(tag.id)
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                store.close()

        threads = [threading.Thread(target=run) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert len(results) == 16
        assert len(set(results)) == 1

        with ItemStore(db_path) as store:
            assert store.count_tags() == 1

    def test_shared_instance_across_threads(self, store):
        """One store instance shared by threads serializes internally."""
        results: list[str] = []
        lock = threading.Lock()

        def run():
            tag = TagResolver(store).resolve_or_create(
                "History", Visibility.GLOBAL, None, True,
            )
            with lock:
                results.append(tag.id)

        threads = [threading.Thread(target=run) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert len(results) == 8
        assert len(set(results)) == 1
        assert store.count_tags() == 1


class TestProcessResolve:

    def test_parallel_processes_get_one_tag(self, tmp_path):
        """Separate processes resolving one global name converge."""
        db_path = str(tmp_path / "items.db")
        # Pre-create the database so schema setup doesn't race with writes
        ItemStore(Path(db_path)).close()

        ctx = multiprocessing.get_context("spawn")
        with ctx.Pool(4) as pool:
            ids = pool.starmap(
                _worker_resolve,
                [(db_path, "Science", "ignored", "global")] * 8,
            )

        assert len(set(ids)) == 1
        with ItemStore(Path(db_path)) as store:
            assert store.count_tags() == 1

    def test_parallel_ingest_shares_category(self, tmp_path):
        """Concurrent batches for one owner land in one category."""
        db_path = str(tmp_path / "items.db")
        ItemStore(Path(db_path)).close()

        ctx = multiprocessing.get_context("spawn")
        with ctx.Pool(4) as pool:
            created = pool.starmap(_worker_ingest, [(db_path, w) for w in range(4)])

        assert created == [5, 5, 5, 5]
        with ItemStore(Path(db_path)) as store:
            assert store.count_tags("category") == 1
            assert store.count_items("alice") == 20
