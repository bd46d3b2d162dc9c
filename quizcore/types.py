"""
Data types for quiz items, tags, and ingestion outcomes.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# Tag kinds share one table and one resolver; uniqueness is per kind
TAG_KIND_CATEGORY = "category"
TAG_KIND_LABEL = "label"


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS.ffffff.

    All timestamps are UTC, stored without timezone suffix.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")


class Visibility(str, Enum):
    """Visibility partition for tags and records."""
    PRIVATE = "private"
    GLOBAL = "global"

    @classmethod
    def parse(cls, value: "str | Visibility | None") -> "Visibility":
        if isinstance(value, Visibility):
            return value
        if not value:
            return cls.PRIVATE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown visibility: {value!r} (expected 'private' or 'global')")


@dataclass(frozen=True)
class Tag:
    """
    A named category or label.

    `name` is the normalized lookup key (trimmed, lowercased, single-spaced);
    `display_name` keeps the spelling first used to create it. Private tags
    have an owner; global tags have none.
    """
    id: str
    kind: str
    name: str
    display_name: str
    visibility: Visibility
    owner: Optional[str]
    created_at: str

    @property
    def is_private(self) -> bool:
        return self.visibility is Visibility.PRIVATE


@dataclass
class LabelRequest:
    """A free-form label requested for a record."""
    name: str
    visibility: Visibility = Visibility.PRIVATE

    @classmethod
    def from_dict(cls, data: "dict[str, Any] | str") -> "LabelRequest":
        if isinstance(data, str):
            return cls(name=data)
        if "visibility" in data:
            visibility = Visibility.parse(data.get("visibility"))
        else:
            is_private = data.get("is_private", data.get("isPrivate", True))
            visibility = Visibility.PRIVATE if is_private else Visibility.GLOBAL
        return cls(name=str(data.get("name", "")), visibility=visibility)


@dataclass
class RecordRequest:
    """One candidate record submitted for ingestion."""
    category: str
    question: str
    correct_answer: str
    incorrect_answers: list[str] = field(default_factory=list)
    explanation: str = ""
    labels: list[LabelRequest] = field(default_factory=list)
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecordRequest":
        """Build from a JSON object. Accepts snake_case or camelCase keys."""
        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        labels = pick("labels", "keywords", default=[]) or []
        return cls(
            category=str(pick("category", default="")),
            question=str(pick("question", default="")),
            correct_answer=str(pick("correct_answer", "correctAnswer", default="")),
            incorrect_answers=[
                str(a) for a in pick("incorrect_answers", "incorrectAnswers", default=[])
            ],
            explanation=str(pick("explanation", default="")),
            labels=[LabelRequest.from_dict(label) for label in labels],
            source=pick("source"),
        )


@dataclass
class QuizRecord:
    """A persisted quiz item with its stored fingerprint and bucket."""
    id: str
    question: str
    correct_answer: str
    incorrect_answers: list[str]
    explanation: str
    fingerprint: str
    bucket: int
    tag_id: str
    owner: str
    visibility: Visibility
    created_at: str
    source: Optional[str] = None
    label_ids: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Batch outcome
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CreatedItem:
    index: int
    item_id: str


@dataclass(frozen=True)
class ItemDuplicate:
    """A record classified as duplicate.

    `matched` is "batch" when an earlier record in the same call matched,
    "store" when a persisted record matched (then `existing_id` is set).
    """
    index: int
    question: str
    matched: str
    existing_id: Optional[str] = None


@dataclass(frozen=True)
class ItemError:
    index: int
    question: str
    message: str


@dataclass
class BatchOutcome:
    """
    Per-call ingestion summary. Never persisted.

    Every submitted record appears in exactly one of created, duplicates,
    errors; each list keeps input order and the original index.
    """
    total: int
    created: list[CreatedItem] = field(default_factory=list)
    duplicates: list[ItemDuplicate] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)

    @property
    def failed_count(self) -> int:
        return len(self.errors)

    @property
    def duplicate_questions(self) -> list[str]:
        return [d.question for d in self.duplicates]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "created_count": self.created_count,
            "duplicate_count": self.duplicate_count,
            "failed_count": self.failed_count,
            "created": [asdict(c) for c in self.created],
            "duplicate_questions": self.duplicate_questions,
            "duplicates": [asdict(d) for d in self.duplicates],
            "errors": [asdict(e) for e in self.errors],
        }
