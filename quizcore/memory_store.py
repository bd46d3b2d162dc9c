"""
In-process item store.

A lightweight backend for tests and throwaway runs. It enforces the same
tag uniqueness as the SQLite store but provides neither transactions nor
case-insensitive filtering: begin() and find_duplicate() raise
UnsupportedOperation, and callers fall back accordingly. Writes are
visible immediately and cannot be rolled back.
"""

import copy
import threading
from typing import Any, Optional

from .errors import UniqueViolation, UnsupportedOperation
from .fingerprint import get_bucket, hamming_distance
from .types import QuizRecord, Tag, Visibility, utc_now


class MemoryItemStore:
    """Dict-backed store; thread-safe per call, no isolation across calls."""

    def __init__(self):
        self._lock = threading.Lock()
        self._tags: dict[str, Tag] = {}
        self._tag_keys: dict[tuple, str] = {}
        self._items: dict[str, QuizRecord] = {}
        self._labels: dict[str, list[str]] = {}
        self._audits: list[dict] = []

    @staticmethod
    def _key(kind: str, name: str, visibility: Visibility, owner: Optional[str]) -> tuple:
        owner_key = (owner or "") if visibility is Visibility.PRIVATE else ""
        return (kind, visibility.value, owner_key, name)

    # -- Transactions --

    def begin(self) -> None:
        raise UnsupportedOperation("transactions")

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass

    # -- Tags --

    def find_tag(
        self,
        kind: str,
        name: str,
        visibility: Visibility,
        owner: Optional[str],
    ) -> Optional[Tag]:
        with self._lock:
            tag_id = self._tag_keys.get(self._key(kind, name, visibility, owner))
            return self._tags.get(tag_id) if tag_id else None

    def get_tag(self, tag_id: str) -> Optional[Tag]:
        with self._lock:
            return self._tags.get(tag_id)

    def insert_tag(self, tag: Tag) -> None:
        key = self._key(tag.kind, tag.name, tag.visibility, tag.owner)
        with self._lock:
            if key in self._tag_keys:
                raise UniqueViolation(f"tag already exists: {key}")
            self._tag_keys[key] = tag.id
            self._tags[tag.id] = tag

    def count_tags(self, kind: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for t in self._tags.values() if kind is None or t.kind == kind)

    def list_tags(self, kind: Optional[str] = None) -> list[Tag]:
        with self._lock:
            tags = [t for t in self._tags.values() if kind is None or t.kind == kind]
        return sorted(tags, key=lambda t: (t.kind, t.name))

    # -- Records --

    def find_duplicate(
        self,
        owner: str,
        tag_id: str,
        bucket: int,
        question: str,
        fingerprint: str,
    ) -> Optional[str]:
        raise UnsupportedOperation("case-insensitive filtering")

    def list_bucket(self, owner: str, tag_id: str, bucket: int) -> list[QuizRecord]:
        with self._lock:
            return [
                copy.deepcopy(r) for r in self._items.values()
                if r.owner == owner and r.tag_id == tag_id and r.bucket == bucket
            ]

    def find_similar(
        self,
        fingerprint: str,
        max_distance: int = 3,
        *,
        owner: Optional[str] = None,
        tag_id: Optional[str] = None,
    ) -> list[QuizRecord]:
        bucket = get_bucket(fingerprint)
        with self._lock:
            candidates = [
                copy.deepcopy(r) for r in self._items.values()
                if r.bucket == bucket
                and (owner is None or r.owner == owner)
                and (tag_id is None or r.tag_id == tag_id)
            ]
        scored = sorted(
            ((hamming_distance(fingerprint, r.fingerprint), r) for r in candidates),
            key=lambda p: p[0],
        )
        return [r for dist, r in scored if dist <= max_distance]

    def insert_items(self, records: list[QuizRecord]) -> None:
        with self._lock:
            for record in records:
                if record.id in self._items:
                    raise UniqueViolation(f"item already exists: {record.id}")
            for record in records:
                self._items[record.id] = copy.deepcopy(record)

    def attach_labels(self, pairs: list[tuple[str, str]]) -> None:
        with self._lock:
            for item_id, tag_id in pairs:
                links = self._labels.setdefault(item_id, [])
                if tag_id not in links:
                    links.append(tag_id)

    def get_item(self, item_id: str) -> Optional[QuizRecord]:
        with self._lock:
            record = self._items.get(item_id)
            if record is None:
                return None
            result = copy.deepcopy(record)
            result.label_ids = list(self._labels.get(item_id, []))
            return result

    def update_item(self, record: QuizRecord) -> bool:
        with self._lock:
            existing = self._items.get(record.id)
            if existing is None:
                return False
            existing.question = record.question
            existing.correct_answer = record.correct_answer
            existing.incorrect_answers = list(record.incorrect_answers)
            existing.explanation = record.explanation
            existing.fingerprint = record.fingerprint
            existing.bucket = record.bucket
            return True

    def count_items(self, owner: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for r in self._items.values() if owner is None or r.owner == owner)

    def stats(self) -> dict:
        with self._lock:
            buckets = len({r.bucket for r in self._items.values()})
            audits = len(self._audits)
        return {
            "items": self.count_items(),
            "categories": self.count_tags("category"),
            "labels": self.count_tags("label"),
            "buckets_used": buckets,
            "audits": audits,
            "db_path": None,
        }

    # -- Audit --

    def record_audit(
        self,
        action: str,
        actor: str,
        subject_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        with self._lock:
            self._audits.append({
                "action": action, "actor": actor, "subject_id": subject_id,
                "metadata": dict(metadata or {}), "created_at": utc_now(),
            })

    def list_audits(self, action: Optional[str] = None) -> list[dict]:
        with self._lock:
            return [dict(a) for a in self._audits if action is None or a["action"] == action]

    def close(self) -> None:
        pass
