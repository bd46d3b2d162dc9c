"""
quizcore

Near-duplicate detection and resolve-or-create tagging for quiz items,
orchestrated by a transactional bulk-ingestion pipeline.

Quick Start:
    from quizcore import IngestPipeline, ItemStore, RecordRequest, Visibility

    store = ItemStore(Path("items.db"))
    pipeline = IngestPipeline(store)
    outcome = pipeline.ingest(
        [RecordRequest("Geography", "Capital of France?", "Paris")],
        Visibility.PRIVATE, owner="alice", is_privileged=False,
    )

CLI Usage:
    quizcore fingerprint "Capital of France?"
    quizcore ingest items.json --owner alice
    quizcore --json stats

Environment Variables:
    QUIZCORE_STORE_PATH  - Override default store location (~/.quizcore)
    QUIZCORE_VERBOSE     - Set to 1 for debug logging from the CLI
"""

from .cancellation import CancellationToken
from .errors import (
    ConflictError,
    IngestCancelled,
    NotFoundError,
    ProblemError,
    QuizCoreError,
    ValidationError,
)
from .fingerprint import compute_fingerprint, get_bucket, hamming_distance
from .ingest import IngestPipeline, ingest_async
from .item_store import ItemStore
from .memory_store import MemoryItemStore
from .tag_resolver import TagResolver
from .types import (
    BatchOutcome,
    LabelRequest,
    QuizRecord,
    RecordRequest,
    Tag,
    Visibility,
)

__version__ = "0.1.0"
__all__ = [
    "BatchOutcome",
    "CancellationToken",
    "ConflictError",
    "IngestCancelled",
    "IngestPipeline",
    "ItemStore",
    "LabelRequest",
    "MemoryItemStore",
    "NotFoundError",
    "ProblemError",
    "QuizCoreError",
    "QuizRecord",
    "RecordRequest",
    "Tag",
    "TagResolver",
    "ValidationError",
    "Visibility",
    "compute_fingerprint",
    "get_bucket",
    "hamming_distance",
    "ingest_async",
]
