"""
Error types for quizcore, plus error logging for the CLI.

Caller-visible failures derive from QuizCoreError and carry a stable
dotted code. Store adapters raise StoreError subclasses to signal the two
conditions callers recover from: a uniqueness rejection and a missing
capability. Anything else a store raises is a plain failure.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class QuizCoreError(Exception):
    """Base class for errors surfaced to quizcore callers."""

    kind = "problem"

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(QuizCoreError):
    """Malformed input: empty names, oversize fields, oversize batches."""
    kind = "validation"


class NotFoundError(QuizCoreError):
    """A referenced record or tag does not exist."""
    kind = "not_found"


class ConflictError(QuizCoreError):
    """State conflict that cannot be absorbed internally."""
    kind = "conflict"


class ProblemError(QuizCoreError):
    """Store unavailable, transaction failure, or unexpected exception."""
    kind = "problem"


class IngestCancelled(QuizCoreError):
    """Ingestion was cancelled before the commit phase; nothing persisted."""
    kind = "cancelled"

    def __init__(self, message: str = "Ingestion cancelled before commit"):
        super().__init__("Items.Cancelled", message)


# ---------------------------------------------------------------------------
# Store adapter signals
# ---------------------------------------------------------------------------

class StoreError(Exception):
    """Base for signals raised by store adapters."""


class UniqueViolation(StoreError):
    """An insert was rejected by a uniqueness constraint."""


class UnsupportedOperation(StoreError):
    """The backend does not provide the requested capability."""

    def __init__(self, capability: str):
        super().__init__(f"Store does not support {capability}")
        self.capability = capability


# ---------------------------------------------------------------------------
# CLI error log
# ---------------------------------------------------------------------------

ERROR_LOG_NAME = "quizcore-errors.log"


def _error_log_path(store_path: Optional[Path] = None) -> Path:
    """The error log lives in the store directory the CLI was pointed at."""
    if store_path is None:
        env = os.environ.get("QUIZCORE_STORE_PATH")
        store_path = Path(env).expanduser() if env else Path.home() / ".quizcore"
    return Path(store_path) / ERROR_LOG_NAME


def _format_entry(exc: BaseException, context: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    code = exc.code if isinstance(exc, QuizCoreError) else None
    header = " ".join(part for part in (
        f"[{stamp}]",
        context,
        f"{type(exc).__name__}{f' ({code})' if code else ''}: {exc}",
    ) if part)
    body = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return f"\n{'-' * 72}\n{header}\n{body}"


def log_exception(
    exc: BaseException,
    context: str = "",
    store_path: Optional[Path] = None,
) -> Path:
    """
    Append an exception and its traceback to the store's error log.

    QuizCoreError entries carry their dotted code in the header line. The
    file is created owner-readable only. Failure to write is ignored so the
    caller can still report the original error.

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(store_path)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(_format_entry(exc, context))
    except OSError:
        pass
    return log_path
