"""Tests for editing persisted records."""

import pytest

from conftest import RecordingAuditSink, make_record
from quizcore.audit import AuditAction
from quizcore.editing import update_record
from quizcore.errors import NotFoundError, ValidationError
from quizcore.fingerprint import compute_fingerprint, get_bucket, update_fingerprint_text
from quizcore.ingest import IngestPipeline
from quizcore.types import Visibility


@pytest.fixture
def item_id(pipeline):
    outcome = pipeline.ingest(
        [make_record("Capital of France?")], Visibility.PRIVATE, "alice", False,
    )
    return outcome.created[0].item_id


class TestUpdateRecord:

    def test_update_refreshes_fingerprint_from_all_fields(self, store, item_id):
        record = update_record(
            store, item_id, "alice",
            question="Capital city of France?",
            correct_answer="Paris",
            incorrect_answers=["Lyon", "Marseille"],
            explanation="Paris has been the capital since 987.",
        )
        expected = compute_fingerprint(update_fingerprint_text(
            "Capital city of France?", "Paris", ["Lyon", "Marseille"],
        ))
        assert record.fingerprint == expected
        assert record.bucket == get_bucket(expected)

        stored = store.get_item(item_id)
        assert stored.question == "Capital city of France?"
        assert stored.incorrect_answers == ["Lyon", "Marseille"]
        assert stored.explanation == "Paris has been the capital since 987."
        assert stored.fingerprint == expected

    def test_unchanged_edit_still_moves_fingerprint(self, store, item_id):
        """Edits fingerprint question plus answers; ingestion used the question alone."""
        before = store.get_item(item_id).fingerprint
        update_record(
            store, item_id, "alice",
            question="Capital of France?", correct_answer="Paris",
            incorrect_answers=["Lyon", "Nice", "Lille"],
        )
        assert store.get_item(item_id).fingerprint != before

    def test_other_owner_cannot_edit(self, store, item_id):
        with pytest.raises(NotFoundError):
            update_record(
                store, item_id, "mallory",
                question="Hacked?", correct_answer="yes", incorrect_answers=[],
            )
        assert store.get_item(item_id).question == "Capital of France?"

    def test_missing_item(self, store):
        with pytest.raises(NotFoundError) as exc:
            update_record(
                store, "no-such-id", "alice",
                question="Q?", correct_answer="A", incorrect_answers=[],
            )
        assert exc.value.code == "Item.NotFound"

    @pytest.mark.parametrize("question,answer", [("", "A"), ("Q?", "  ")])
    def test_required_fields(self, store, item_id, question, answer):
        with pytest.raises(ValidationError):
            update_record(
                store, item_id, "alice",
                question=question, correct_answer=answer, incorrect_answers=[],
            )

    def test_update_is_audited(self, store, item_id):
        sink = RecordingAuditSink()
        update_record(
            store, item_id, "alice",
            question="Q?", correct_answer="A", incorrect_answers=[], audit_sink=sink,
        )
        assert sink.events[0]["action"] == AuditAction.ITEM_UPDATED.value
        assert sink.events[0]["subject_id"] == item_id

    def test_works_on_memory_store(self, memory_store):
        outcome = IngestPipeline(memory_store).ingest(
            [make_record("Capital of France?")], Visibility.PRIVATE, "alice", False,
        )
        item_id = outcome.created[0].item_id
        update_record(
            memory_store, item_id, "alice",
            question="Capital of Peru?", correct_answer="Lima", incorrect_answers=[],
        )
        assert memory_store.get_item(item_id).question == "Capital of Peru?"
