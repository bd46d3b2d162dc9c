"""
Item store using SQLite.

Source of truth for:
- Tags (categories and labels), unique per (kind, visibility, owner, name)
- Quiz records with their stored fingerprint and bucket
- Record-to-label links
- Audit rows

Transactions are explicit: begin() issues BEGIN IMMEDIATE so a batch holds
the write lock from its first read, and commit()/rollback() end it. The
connection runs with isolation_level=None; outside a transaction every
statement autocommits.

Duplicate lookups compare questions with a registered ``casefold`` SQL
function, so case-insensitive matching is Unicode-aware rather than
limited to SQLite's ASCII lower().
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from .errors import UniqueViolation
from .fingerprint import get_bucket, hamming_distance
from .types import QuizRecord, Tag, Visibility, utc_now

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_RECORD_COLUMNS = """
    id, question, correct_answer, incorrect_answers_json, explanation, source,
    fingerprint, bucket, tag_id, owner, visibility, created_at
"""


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


def _owner_key(visibility: Visibility, owner: Optional[str]) -> str:
    """Uniqueness key for the owner column: owner for private, '' for global."""
    if visibility is Visibility.PRIVATE:
        return owner or ""
    return ""


class ItemStore:
    """
    SQLite-backed store for tags and quiz records.

    One connection per instance. An internal re-entrant lock serializes
    statements and is held for the whole span of a transaction, so two
    threads sharing an instance never interleave inside one transaction.
    Separate instances on the same file coordinate through SQLite locking
    (WAL mode, 5s busy timeout).
    """

    def __init__(self, store_path: Path):
        """
        Args:
            store_path: Path to SQLite database file
        """
        self._db_path = Path(store_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._in_transaction = False
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None gives us manual transaction control
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.create_function("casefold", 1, _casefold, deterministic=True)

        # Wait up to 5 seconds for locks instead of failing immediately
        self._conn.execute("PRAGMA busy_timeout=5000")
        # Enable WAL mode for better concurrent access across processes
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if version >= SCHEMA_VERSION:
            return

        self._conn.execute("BEGIN IMMEDIATE")
        try:
            self._create_schema()
            self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            self._conn.execute("COMMIT")
        except Exception:
            self._conn.execute("ROLLBACK")
            raise

    def _create_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS tags (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                name TEXT NOT NULL,
                display_name TEXT NOT NULL,
                visibility TEXT NOT NULL,
                owner TEXT,
                owner_key TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE (kind, visibility, owner_key, name)
            )
        """)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS items (
                id TEXT PRIMARY KEY,
                question TEXT NOT NULL,
                correct_answer TEXT NOT NULL,
                incorrect_answers_json TEXT NOT NULL DEFAULT '[]',
                explanation TEXT NOT NULL DEFAULT '',
                source TEXT,
                fingerprint TEXT NOT NULL,
                bucket INTEGER NOT NULL,
                tag_id TEXT NOT NULL REFERENCES tags(id),
                owner TEXT NOT NULL,
                visibility TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Candidate retrieval for duplicate checks
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_items_candidates
            ON items(owner, tag_id, bucket)
        """)

        # Cross-scope similarity scans
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_items_bucket
            ON items(bucket)
        """)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS item_labels (
                item_id TEXT NOT NULL REFERENCES items(id),
                tag_id TEXT NOT NULL REFERENCES tags(id),
                added_at TEXT NOT NULL,
                PRIMARY KEY (item_id, tag_id)
            )
        """)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS audits (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                action TEXT NOT NULL,
                actor TEXT NOT NULL,
                subject_id TEXT,
                metadata_json TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL
            )
        """)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def begin(self) -> None:
        """Start a write transaction and hold the instance lock until it ends."""
        self._lock.acquire()
        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except Exception:
            self._lock.release()
            raise
        self._in_transaction = True

    def commit(self) -> None:
        if not self._in_transaction:
            return
        try:
            self._conn.execute("COMMIT")
        except Exception:
            # A failed COMMIT can leave the transaction open
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise
        finally:
            self._in_transaction = False
            self._lock.release()

    def rollback(self) -> None:
        if not self._in_transaction:
            return
        try:
            self._conn.execute("ROLLBACK")
        finally:
            self._in_transaction = False
            self._lock.release()

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    def find_tag(
        self,
        kind: str,
        name: str,
        visibility: Visibility,
        owner: Optional[str],
    ) -> Optional[Tag]:
        """
        Look up a tag by its scope key.

        Args:
            kind: Tag kind (category or label)
            name: Normalized tag name
            visibility: Private or global partition
            owner: Owner for private tags (ignored for global)

        Returns:
            The Tag if present, None otherwise
        """
        with self._lock:
            row = self._conn.execute("""
                SELECT id, kind, name, display_name, visibility, owner, created_at
                FROM tags
                WHERE kind = ? AND visibility = ? AND owner_key = ? AND name = ?
            """, (kind, visibility.value, _owner_key(visibility, owner), name)).fetchone()
        return self._row_to_tag(row) if row is not None else None

    def get_tag(self, tag_id: str) -> Optional[Tag]:
        with self._lock:
            row = self._conn.execute("""
                SELECT id, kind, name, display_name, visibility, owner, created_at
                FROM tags WHERE id = ?
            """, (tag_id,)).fetchone()
        return self._row_to_tag(row) if row is not None else None

    def insert_tag(self, tag: Tag) -> None:
        """
        Insert a new tag.

        Inside a transaction the insert runs under a savepoint so a
        uniqueness rejection leaves the surrounding transaction usable.

        Raises:
            UniqueViolation: a tag with the same scope key already exists
        """
        with self._lock:
            use_savepoint = self._in_transaction
            if use_savepoint:
                self._conn.execute("SAVEPOINT tag_insert")
            try:
                self._conn.execute("""
                    INSERT INTO tags
                    (id, kind, name, display_name, visibility, owner, owner_key, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    tag.id, tag.kind, tag.name, tag.display_name,
                    tag.visibility.value, tag.owner,
                    _owner_key(tag.visibility, tag.owner), tag.created_at,
                ))
            except sqlite3.IntegrityError as e:
                if use_savepoint:
                    self._conn.execute("ROLLBACK TO tag_insert")
                    self._conn.execute("RELEASE tag_insert")
                if "UNIQUE" in str(e):
                    raise UniqueViolation(str(e)) from e
                raise
            if use_savepoint:
                self._conn.execute("RELEASE tag_insert")

    def count_tags(self, kind: Optional[str] = None) -> int:
        with self._lock:
            if kind is None:
                cursor = self._conn.execute("SELECT COUNT(*) FROM tags")
            else:
                cursor = self._conn.execute(
                    "SELECT COUNT(*) FROM tags WHERE kind = ?", (kind,)
                )
            return cursor.fetchone()[0]

    def list_tags(self, kind: Optional[str] = None) -> list[Tag]:
        with self._lock:
            if kind is None:
                cursor = self._conn.execute("""
                    SELECT id, kind, name, display_name, visibility, owner, created_at
                    FROM tags ORDER BY kind, name
                """)
            else:
                cursor = self._conn.execute("""
                    SELECT id, kind, name, display_name, visibility, owner, created_at
                    FROM tags WHERE kind = ? ORDER BY name
                """, (kind,))
            return [self._row_to_tag(row) for row in cursor]

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def find_duplicate(
        self,
        owner: str,
        tag_id: str,
        bucket: int,
        question: str,
        fingerprint: str,
    ) -> Optional[str]:
        """
        Find a persisted record that duplicates the given one.

        Scoped to (owner, tag, bucket), then matched on case-insensitive
        question text or identical fingerprint.

        Returns:
            ID of the earliest matching record, or None
        """
        with self._lock:
            row = self._conn.execute("""
                SELECT id FROM items
                WHERE owner = ? AND tag_id = ? AND bucket = ?
                  AND (casefold(question) = ? OR fingerprint = ?)
                ORDER BY created_at
                LIMIT 1
            """, (owner, tag_id, bucket, question.casefold(), fingerprint)).fetchone()
        return row["id"] if row is not None else None

    def list_bucket(self, owner: str, tag_id: str, bucket: int) -> list[QuizRecord]:
        """All records in one (owner, tag, bucket) candidate slice."""
        with self._lock:
            cursor = self._conn.execute(f"""
                SELECT {_RECORD_COLUMNS} FROM items
                WHERE owner = ? AND tag_id = ? AND bucket = ?
                ORDER BY created_at
            """, (owner, tag_id, bucket))
            return [self._row_to_record(row) for row in cursor]

    def find_similar(
        self,
        fingerprint: str,
        max_distance: int = 3,
        *,
        owner: Optional[str] = None,
        tag_id: Optional[str] = None,
    ) -> list[QuizRecord]:
        """
        Records in the fingerprint's bucket within max_distance bits.

        Results are sorted by Hamming distance, closest first. Near
        duplicates that fall in another bucket are not found.
        """
        clauses = ["bucket = ?"]
        params: list[Any] = [get_bucket(fingerprint)]
        if owner is not None:
            clauses.append("owner = ?")
            params.append(owner)
        if tag_id is not None:
            clauses.append("tag_id = ?")
            params.append(tag_id)

        with self._lock:
            cursor = self._conn.execute(f"""
                SELECT {_RECORD_COLUMNS} FROM items
                WHERE {' AND '.join(clauses)}
            """, params)
            candidates = [self._row_to_record(row) for row in cursor]

        scored = [
            (hamming_distance(fingerprint, rec.fingerprint), rec)
            for rec in candidates
        ]
        return [rec for dist, rec in sorted(scored, key=lambda p: p[0]) if dist <= max_distance]

    def insert_items(self, records: list[QuizRecord]) -> None:
        """Insert records in one executemany call."""
        if not records:
            return
        rows = [
            (
                r.id, r.question, r.correct_answer,
                json.dumps(r.incorrect_answers, ensure_ascii=False),
                r.explanation, r.source, r.fingerprint, r.bucket, r.tag_id,
                r.owner, r.visibility.value, r.created_at, r.created_at,
            )
            for r in records
        ]
        with self._lock:
            self._conn.executemany("""
                INSERT INTO items
                (id, question, correct_answer, incorrect_answers_json, explanation,
                 source, fingerprint, bucket, tag_id, owner, visibility,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, rows)

    def attach_labels(self, pairs: list[tuple[str, str]]) -> None:
        """Link (item_id, label_tag_id) pairs. Existing links are kept."""
        if not pairs:
            return
        now = utc_now()
        with self._lock:
            self._conn.executemany("""
                INSERT OR IGNORE INTO item_labels (item_id, tag_id, added_at)
                VALUES (?, ?, ?)
            """, [(item_id, tag_id, now) for item_id, tag_id in pairs])

    def get_item(self, item_id: str) -> Optional[QuizRecord]:
        with self._lock:
            row = self._conn.execute(f"""
                SELECT {_RECORD_COLUMNS} FROM items WHERE id = ?
            """, (item_id,)).fetchone()
            if row is None:
                return None
            record = self._row_to_record(row)
            record.label_ids = [
                r["tag_id"] for r in self._conn.execute(
                    "SELECT tag_id FROM item_labels WHERE item_id = ? ORDER BY added_at, tag_id",
                    (item_id,),
                )
            ]
        return record

    def update_item(self, record: QuizRecord) -> bool:
        """
        Replace the content fields of an existing record.

        Returns:
            True if the record was found and updated
        """
        with self._lock:
            cursor = self._conn.execute("""
                UPDATE items
                SET question = ?, correct_answer = ?, incorrect_answers_json = ?,
                    explanation = ?, fingerprint = ?, bucket = ?, updated_at = ?
                WHERE id = ?
            """, (
                record.question, record.correct_answer,
                json.dumps(record.incorrect_answers, ensure_ascii=False),
                record.explanation, record.fingerprint, record.bucket,
                utc_now(), record.id,
            ))
            return cursor.rowcount > 0

    def count_items(self, owner: Optional[str] = None) -> int:
        with self._lock:
            if owner is None:
                cursor = self._conn.execute("SELECT COUNT(*) FROM items")
            else:
                cursor = self._conn.execute(
                    "SELECT COUNT(*) FROM items WHERE owner = ?", (owner,)
                )
            return cursor.fetchone()[0]

    def stats(self) -> dict:
        """Store statistics for display."""
        with self._lock:
            buckets = self._conn.execute(
                "SELECT COUNT(DISTINCT bucket) FROM items"
            ).fetchone()[0]
            audits = self._conn.execute("SELECT COUNT(*) FROM audits").fetchone()[0]
        return {
            "items": self.count_items(),
            "categories": self.count_tags("category"),
            "labels": self.count_tags("label"),
            "buckets_used": buckets,
            "audits": audits,
            "db_path": str(self._db_path),
        }

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    def record_audit(
        self,
        action: str,
        actor: str,
        subject_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        with self._lock:
            self._conn.execute("""
                INSERT INTO audits (action, actor, subject_id, metadata_json, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (action, actor, subject_id, json.dumps(metadata or {}), utc_now()))

    def list_audits(self, action: Optional[str] = None) -> list[dict]:
        with self._lock:
            if action is None:
                cursor = self._conn.execute(
                    "SELECT action, actor, subject_id, metadata_json, created_at "
                    "FROM audits ORDER BY id"
                )
            else:
                cursor = self._conn.execute(
                    "SELECT action, actor, subject_id, metadata_json, created_at "
                    "FROM audits WHERE action = ? ORDER BY id",
                    (action,),
                )
            return [
                {
                    "action": row[0], "actor": row[1], "subject_id": row[2],
                    "metadata": json.loads(row[3]), "created_at": row[4],
                }
                for row in cursor
            ]

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_tag(row: sqlite3.Row) -> Tag:
        return Tag(
            id=row["id"],
            kind=row["kind"],
            name=row["name"],
            display_name=row["display_name"],
            visibility=Visibility(row["visibility"]),
            owner=row["owner"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> QuizRecord:
        return QuizRecord(
            id=row["id"],
            question=row["question"],
            correct_answer=row["correct_answer"],
            incorrect_answers=json.loads(row["incorrect_answers_json"]),
            explanation=row["explanation"],
            source=row["source"],
            fingerprint=row["fingerprint"],
            bucket=row["bucket"],
            tag_id=row["tag_id"],
            owner=row["owner"],
            visibility=Visibility(row["visibility"]),
            created_at=row["created_at"],
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            if self._in_transaction:
                self.rollback()
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
