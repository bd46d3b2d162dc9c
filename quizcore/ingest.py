"""
Bulk ingestion of quiz records.

For each submitted record, in input order:

1. validate the record's fields,
2. fingerprint the question and derive its bucket,
3. resolve the record's category (resolve-or-create),
4. check for duplicates, first against records accepted earlier in this
   call, then against persisted records in the same (owner, category,
   bucket) slice,
5. stage it for insert if it is new.

Per-record failures are captured in the outcome and never stop the batch.
After classification, all staged records are inserted in one call, their
labels are resolved and attached, and the transaction commits. A failure
in that phase fails the whole call and rolls back.

Processing is strictly sequential: a record's duplicate check must see
every record accepted before it.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .audit import AuditAction, NullAuditSink, emit_audit
from .cancellation import CancellationToken
from .config import IngestLimits
from .errors import (
    IngestCancelled,
    ProblemError,
    UnsupportedOperation,
    ValidationError,
)
from .fingerprint import compute_fingerprint, get_bucket, record_fingerprint_text
from .protocol import AuditSinkProtocol, ItemStoreProtocol
from .tag_resolver import TagResolver
from .types import (
    TAG_KIND_CATEGORY,
    TAG_KIND_LABEL,
    BatchOutcome,
    CreatedItem,
    ItemDuplicate,
    ItemError,
    LabelRequest,
    QuizRecord,
    RecordRequest,
    Visibility,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass
class _Staged:
    index: int
    record: QuizRecord
    labels: list[LabelRequest]


@dataclass
class _BatchState:
    """Accumulator for one ingest call. Discarded when the call returns."""
    outcome: BatchOutcome
    # (owner, tag_id, casefolded question) -> id of the accepted record
    seen: dict[tuple[str, str, str], str] = field(default_factory=dict)
    staged: list[_Staged] = field(default_factory=list)
    # Set once the store reports it cannot filter duplicates itself
    filter_unsupported: bool = False


class IngestPipeline:
    """
    Classifies and persists batches of quiz records.

    Holds no per-call state, so one instance can serve concurrent calls;
    isolation between them is whatever the store provides.
    """

    def __init__(
        self,
        store: ItemStoreProtocol,
        *,
        limits: Optional[IngestLimits] = None,
        audit_sink: Optional[AuditSinkProtocol] = None,
    ):
        self._store = store
        self._limits = limits or IngestLimits()
        self._audit = audit_sink or NullAuditSink()
        self._categories = TagResolver(
            store, kind=TAG_KIND_CATEGORY,
            max_name_length=self._limits.max_category_length,
        )
        self._labels = TagResolver(
            store, kind=TAG_KIND_LABEL,
            max_name_length=self._limits.max_label_length,
        )

    @property
    def limits(self) -> IngestLimits:
        return self._limits

    def ingest(
        self,
        records: Iterable[RecordRequest],
        visibility: Visibility,
        owner: str,
        is_privileged: bool,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> BatchOutcome:
        """
        Ingest a batch of records for one owner.

        Non-privileged callers always get private records, categories, and
        labels, whatever visibility they asked for.

        Args:
            records: Candidate records, in submission order
            visibility: Requested visibility for every record in the batch
            owner: Owning user id
            is_privileged: Whether the caller may create global content
            cancel: Optional token; honoured until the commit phase starts

        Returns:
            BatchOutcome with every record classified as created,
            duplicate, or failed

        Raises:
            ValidationError: request shape invalid (no records, too many,
                no owner, unknown visibility)
            IngestCancelled: cancelled before commit; nothing persisted
            ProblemError: the transaction could not be opened, or the commit
                phase failed; nothing persisted when the store supports
                transactions
        """
        records = list(records)
        self._validate_request(records, owner, is_privileged)

        try:
            effective = Visibility.parse(visibility)
        except ValueError as e:
            raise ValidationError("Items.InvalidVisibility", str(e)) from e
        if effective is Visibility.GLOBAL and not is_privileged:
            logger.debug("Downgrading global request from %s to private", owner)
            effective = Visibility.PRIVATE

        state = _BatchState(outcome=BatchOutcome(total=len(records)))
        in_transaction = False
        committed = False
        try:
            in_transaction = self._begin()
            for index, request in enumerate(records):
                if cancel is not None and cancel.is_cancelled():
                    raise IngestCancelled()
                self._process_record(state, index, request, owner, effective, is_privileged)

            if cancel is not None and cancel.is_cancelled():
                raise IngestCancelled()

            # Commit phase: no per-record recovery and no cancellation past here
            self._write_batch(state, owner, effective, is_privileged)
            if in_transaction:
                self._store.commit()
            committed = True
        except IngestCancelled:
            logger.info("Ingestion for %s cancelled before commit", owner)
            raise
        except Exception as e:
            logger.error("Bulk ingestion for %s failed: %s", owner, e)
            raise ProblemError(
                "Items.BulkCreateFailed", f"Failed to create items: {e}"
            ) from e
        finally:
            if in_transaction and not committed:
                self._rollback(owner)

        outcome = state.outcome
        for created in outcome.created:
            emit_audit(
                self._audit, AuditAction.ITEM_CREATED, owner, created.item_id,
                {"bulk": "true"},
            )

        logger.info(
            "Ingested batch for %s: total=%d created=%d duplicate=%d failed=%d",
            owner, outcome.total, outcome.created_count,
            outcome.duplicate_count, outcome.failed_count,
        )
        return outcome

    # -------------------------------------------------------------------------
    # Request and record validation
    # -------------------------------------------------------------------------

    def _validate_request(
        self,
        records: list[RecordRequest],
        owner: str,
        is_privileged: bool,
    ) -> None:
        if not owner or not owner.strip():
            raise ValidationError("Items.MissingOwner", "Owner is required")
        if not records:
            raise ValidationError("Items.Empty", "At least one item is required")
        cap = self._limits.max_batch(is_privileged)
        if len(records) > cap:
            raise ValidationError(
                "Items.BatchTooLarge", f"Cannot create more than {cap} items at once"
            )

    def _validate_record(self, request: RecordRequest) -> None:
        """Raise ValidationError for the first field that breaks a limit."""
        lim = self._limits

        def fail(message: str) -> None:
            raise ValidationError("Items.InvalidItem", message)

        if not request.question or not request.question.strip():
            fail("Question is required")
        if len(request.question) > lim.max_question_length:
            fail(f"Question must not exceed {lim.max_question_length} characters")
        if not request.correct_answer or not request.correct_answer.strip():
            fail("CorrectAnswer is required")
        if len(request.correct_answer) > lim.max_answer_length:
            fail(f"CorrectAnswer must not exceed {lim.max_answer_length} characters")
        if len(request.incorrect_answers) > lim.max_incorrect_answers:
            fail(f"IncorrectAnswers must have between 0 and {lim.max_incorrect_answers} answers")
        for answer in request.incorrect_answers:
            if len(answer) > lim.max_answer_length:
                fail(f"Each incorrect answer must not exceed {lim.max_answer_length} characters")
        if len(request.explanation or "") > lim.max_explanation_length:
            fail(f"Explanation must not exceed {lim.max_explanation_length} characters")
        if request.source is not None and len(request.source) > lim.max_source_length:
            fail(f"Source must not exceed {lim.max_source_length} characters")
        if len(request.labels) > lim.max_labels:
            fail(f"Cannot assign more than {lim.max_labels} labels to an item")
        for label in request.labels:
            name = (label.name or "").strip()
            if not name:
                fail("Label name is required")
            if len(name) > lim.max_label_length:
                fail(f"Label name must not exceed {lim.max_label_length} characters")

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def _process_record(
        self,
        state: _BatchState,
        index: int,
        request: RecordRequest,
        owner: str,
        visibility: Visibility,
        is_privileged: bool,
    ) -> None:
        outcome = state.outcome
        try:
            self._validate_record(request)
            fingerprint = compute_fingerprint(record_fingerprint_text(request.question))
            bucket = get_bucket(fingerprint)
            tag = self._categories.resolve_or_create(
                request.category, visibility, owner, is_privileged,
            )

            seen_key = (owner, tag.id, request.question.casefold())
            if seen_key in state.seen:
                outcome.duplicates.append(ItemDuplicate(index, request.question, "batch"))
                return

            existing_id = self._find_persisted_duplicate(
                state, owner, tag.id, bucket, request.question, fingerprint,
            )
            if existing_id is not None:
                outcome.duplicates.append(
                    ItemDuplicate(index, request.question, "store", existing_id)
                )
                return
        except Exception as e:
            logger.warning("Item %d rejected: %s", index, e)
            outcome.errors.append(ItemError(index, request.question, str(e)))
            return

        record = QuizRecord(
            id=uuid.uuid4().hex,
            question=request.question,
            correct_answer=request.correct_answer,
            incorrect_answers=list(request.incorrect_answers),
            explanation=request.explanation or "",
            source=request.source,
            fingerprint=fingerprint,
            bucket=bucket,
            tag_id=tag.id,
            owner=owner,
            visibility=visibility,
            created_at=utc_now(),
        )
        state.seen[seen_key] = record.id
        state.staged.append(_Staged(index, record, list(request.labels)))
        outcome.created.append(CreatedItem(index, record.id))

    def _find_persisted_duplicate(
        self,
        state: _BatchState,
        owner: str,
        tag_id: str,
        bucket: int,
        question: str,
        fingerprint: str,
    ) -> Optional[str]:
        """
        ID of a persisted duplicate, or None.

        Asks the store to filter the candidate slice. A store that cannot
        filter case-insensitively gets the slice loaded and compared here;
        that decision sticks for the rest of the call.
        """
        if not state.filter_unsupported:
            try:
                return self._store.find_duplicate(owner, tag_id, bucket, question, fingerprint)
            except UnsupportedOperation as e:
                logger.warning(
                    "Store lacks %s; comparing bucket candidates in memory", e.capability,
                )
                state.filter_unsupported = True

        folded = question.casefold()
        for candidate in self._store.list_bucket(owner, tag_id, bucket):
            if candidate.question.casefold() == folded or candidate.fingerprint == fingerprint:
                return candidate.id
        return None

    # -------------------------------------------------------------------------
    # Commit phase
    # -------------------------------------------------------------------------

    def _begin(self) -> bool:
        """Start a transaction if the store supports one."""
        try:
            self._store.begin()
        except UnsupportedOperation:
            logger.warning("Store does not support transactions; ingesting without one")
            return False
        return True

    def _rollback(self, owner: str) -> None:
        """Roll back without masking the error that triggered it."""
        try:
            self._store.rollback()
        except Exception:
            logger.error("Rollback of batch for %s failed", owner, exc_info=True)

    def _write_batch(
        self,
        state: _BatchState,
        owner: str,
        visibility: Visibility,
        is_privileged: bool,
    ) -> None:
        if not state.staged:
            return
        self._store.insert_items([s.record for s in state.staged])

        pairs: list[tuple[str, str]] = []
        for staged in state.staged:
            label_ids: list[str] = []
            for label in staged.labels:
                label_visibility = label.visibility if is_privileged else Visibility.PRIVATE
                tag = self._labels.resolve_or_create(
                    label.name, label_visibility, owner, is_privileged,
                )
                if tag.id not in label_ids:
                    label_ids.append(tag.id)
            pairs.extend((staged.record.id, tag_id) for tag_id in label_ids)
        self._store.attach_labels(pairs)


async def ingest_async(
    pipeline: IngestPipeline,
    records: Iterable[RecordRequest],
    visibility: Visibility,
    owner: str,
    is_privileged: bool,
) -> BatchOutcome:
    """
    Run ``pipeline.ingest`` on a worker thread.

    Cancelling the awaiting task trips the pipeline's cancellation token
    and waits for the worker to settle before re-raising, so a cancelled
    call has rolled back by the time CancelledError propagates. If the
    worker had already entered the commit phase, the batch is persisted
    anyway.
    """
    token = CancellationToken()
    records = list(records)
    task = asyncio.ensure_future(asyncio.to_thread(
        pipeline.ingest, records, visibility, owner, is_privileged, cancel=token,
    ))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        token.cancel()
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is None:
            logger.info("Cancellation for %s arrived after commit; batch persisted", owner)
        raise
