"""
Shared pytest fixtures for quizcore tests.

Stores live under tmp_path so every test gets a fresh database.
"""

import pytest

from quizcore.config import IngestLimits
from quizcore.ingest import IngestPipeline
from quizcore.item_store import ItemStore
from quizcore.memory_store import MemoryItemStore
from quizcore.types import RecordRequest


class RecordingAuditSink:
    """Audit sink that keeps every event in memory."""

    def __init__(self, fail: bool = False):
        self.events: list[dict] = []
        self.fail = fail

    def emit(self, action, actor, subject_id, metadata=None):
        if self.fail:
            raise RuntimeError("audit sink unavailable")
        self.events.append({
            "action": action, "actor": actor,
            "subject_id": subject_id, "metadata": metadata,
        })


class FaultyStore:
    """
    Wraps a real store and injects failures into chosen methods.

    Set ``fail_on`` to a method name to make that call raise RuntimeError.
    Everything else passes through to the wrapped store.
    """

    def __init__(self, real_store):
        self._real = real_store
        self.fail_on: set[str] = set()
        self.calls: dict[str, int] = {}

    def __getattr__(self, name):
        attr = getattr(self._real, name)
        if not callable(attr):
            return attr

        def wrapper(*args, **kwargs):
            self.calls[name] = self.calls.get(name, 0) + 1
            if name in self.fail_on:
                raise RuntimeError(f"simulated {name} failure")
            return attr(*args, **kwargs)
        return wrapper


def make_record(
    question: str,
    category: str = "Geography",
    answer: str = "Paris",
    **kwargs,
) -> RecordRequest:
    """Build a valid RecordRequest with sensible defaults."""
    kwargs.setdefault("incorrect_answers", ["Lyon", "Nice", "Lille"])
    return RecordRequest(
        category=category, question=question, correct_answer=answer, **kwargs,
    )


@pytest.fixture
def store(tmp_path):
    """SQLite item store in a temporary directory."""
    s = ItemStore(tmp_path / "items.db")
    yield s
    s.close()


@pytest.fixture
def memory_store():
    """In-process store without transactions or filtered lookups."""
    return MemoryItemStore()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def pipeline(store, audit_sink):
    """Ingest pipeline over the SQLite store with recorded audits."""
    return IngestPipeline(store, limits=IngestLimits(), audit_sink=audit_sink)
