"""Tests for the error taxonomy and the CLI error log."""

import os

from quizcore.errors import (
    ERROR_LOG_NAME,
    IngestCancelled,
    ProblemError,
    QuizCoreError,
    UnsupportedOperation,
    ValidationError,
    log_exception,
)


def _raised(exc):
    """Return exc with a traceback attached."""
    try:
        raise exc
    except Exception as e:
        return e


class TestTaxonomy:

    def test_code_and_message(self):
        err = ValidationError("Items.Empty", "At least one item is required")
        assert isinstance(err, QuizCoreError)
        assert err.code == "Items.Empty"
        assert str(err) == "At least one item is required"
        assert err.kind == "validation"

    def test_cancelled_has_fixed_code(self):
        assert IngestCancelled().code == "Items.Cancelled"

    def test_unsupported_operation_names_capability(self):
        err = UnsupportedOperation("transactions")
        assert err.capability == "transactions"
        assert "transactions" in str(err)


class TestLogException:

    def test_writes_code_and_traceback(self, tmp_path):
        err = _raised(ProblemError("Items.BulkCreateFailed", "Failed to create items: boom"))
        path = log_exception(err, context="quizcore CLI", store_path=tmp_path)

        assert path == tmp_path / ERROR_LOG_NAME
        text = path.read_text(encoding="utf-8")
        assert "quizcore CLI ProblemError (Items.BulkCreateFailed): Failed to create items: boom" in text
        assert "Traceback (most recent call last)" in text
        assert "_raised" in text

    def test_plain_exception_has_no_code(self, tmp_path):
        path = log_exception(_raised(RuntimeError("disk on fire")), store_path=tmp_path)
        assert "RuntimeError: disk on fire" in path.read_text(encoding="utf-8")

    def test_appends_entries(self, tmp_path):
        log_exception(_raised(RuntimeError("first")), store_path=tmp_path)
        path = log_exception(_raised(RuntimeError("second")), store_path=tmp_path)
        text = path.read_text(encoding="utf-8")
        assert text.index("first") < text.index("second")

    def test_file_is_private(self, tmp_path):
        path = log_exception(_raised(RuntimeError("x")), store_path=tmp_path)
        assert (os.stat(path).st_mode & 0o777) == 0o600

    def test_defaults_to_env_store(self, tmp_path, monkeypatch):
        monkeypatch.setenv("QUIZCORE_STORE_PATH", str(tmp_path / "env-store"))
        path = log_exception(_raised(RuntimeError("x")))
        assert path == tmp_path / "env-store" / ERROR_LOG_NAME
        assert path.exists()
