"""
Protocol definitions for quizcore storage backends and audit sinks.

Implemented by:
- ItemStore (local SQLite, transactional)
- MemoryItemStore (in-process, no transactions, no case-insensitive filter)
- External backends registered under the ``quizcore.backends`` entry point
"""

from typing import Any, Optional, Protocol, runtime_checkable

from .types import QuizRecord, Tag, Visibility


@runtime_checkable
class ItemStoreProtocol(Protocol):
    """
    Transactional store for tags and quiz records.

    Backends raise ``errors.UniqueViolation`` when an insert collides with
    a uniqueness constraint and ``errors.UnsupportedOperation`` when a
    capability (transactions, case-insensitive filtering) is missing.
    """

    # -- Transactions (optional capability) --

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    # -- Tags --

    def find_tag(
        self,
        kind: str,
        name: str,
        visibility: Visibility,
        owner: Optional[str],
    ) -> Optional[Tag]: ...

    def get_tag(self, tag_id: str) -> Optional[Tag]: ...

    def insert_tag(self, tag: Tag) -> None: ...

    def count_tags(self, kind: Optional[str] = None) -> int: ...

    # -- Records --

    def find_duplicate(
        self,
        owner: str,
        tag_id: str,
        bucket: int,
        question: str,
        fingerprint: str,
    ) -> Optional[str]: ...

    def list_bucket(
        self,
        owner: str,
        tag_id: str,
        bucket: int,
    ) -> list[QuizRecord]: ...

    def find_similar(
        self,
        fingerprint: str,
        max_distance: int = 3,
        *,
        owner: Optional[str] = None,
        tag_id: Optional[str] = None,
    ) -> list[QuizRecord]: ...

    def insert_items(self, records: list[QuizRecord]) -> None: ...

    def attach_labels(self, pairs: list[tuple[str, str]]) -> None: ...

    def get_item(self, item_id: str) -> Optional[QuizRecord]: ...

    def update_item(self, record: QuizRecord) -> bool: ...

    def count_items(self, owner: Optional[str] = None) -> int: ...

    def stats(self) -> dict[str, Any]: ...

    # -- Audit --

    def record_audit(
        self,
        action: str,
        actor: str,
        subject_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class AuditSinkProtocol(Protocol):
    """Fire-and-forget receiver of (action, actor, subject) events."""

    def emit(
        self,
        action: str,
        actor: str,
        subject_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None: ...
