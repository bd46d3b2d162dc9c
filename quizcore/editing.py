"""
Editing persisted quiz records.

Edits recompute the fingerprint over the question and all answers, while
bulk ingestion fingerprints the question alone. The two inputs are kept
apart on purpose; see fingerprint.update_fingerprint_text.
"""

import logging
from typing import Optional

from .audit import AuditAction, NullAuditSink, emit_audit
from .errors import NotFoundError, ValidationError
from .fingerprint import compute_fingerprint, get_bucket, update_fingerprint_text
from .protocol import AuditSinkProtocol, ItemStoreProtocol
from .types import QuizRecord

logger = logging.getLogger(__name__)


def update_record(
    store: ItemStoreProtocol,
    item_id: str,
    owner: str,
    *,
    question: str,
    correct_answer: str,
    incorrect_answers: list[str],
    explanation: str = "",
    audit_sink: Optional[AuditSinkProtocol] = None,
) -> QuizRecord:
    """
    Replace a record's content and refresh its fingerprint and bucket.

    Raises:
        NotFoundError: no record with that id belongs to owner
        ValidationError: question or correct answer empty
    """
    if not question or not question.strip():
        raise ValidationError("Item.InvalidQuestion", "Question is required")
    if not correct_answer or not correct_answer.strip():
        raise ValidationError("Item.InvalidAnswer", "CorrectAnswer is required")

    record = store.get_item(item_id)
    if record is None or record.owner != owner:
        raise NotFoundError("Item.NotFound", f"Item {item_id} not found")

    fingerprint = compute_fingerprint(
        update_fingerprint_text(question, correct_answer, incorrect_answers)
    )
    record.question = question
    record.correct_answer = correct_answer
    record.incorrect_answers = list(incorrect_answers)
    record.explanation = explanation
    record.fingerprint = fingerprint
    record.bucket = get_bucket(fingerprint)

    if not store.update_item(record):
        raise NotFoundError("Item.NotFound", f"Item {item_id} not found")

    logger.info("Updated item %s (bucket %d)", item_id, record.bucket)
    emit_audit(audit_sink or NullAuditSink(), AuditAction.ITEM_UPDATED, owner, item_id)
    return record
