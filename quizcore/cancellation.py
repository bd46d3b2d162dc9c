"""Cooperative cancellation for ingestion calls.

The pipeline checks a token between records and once more before it
enters the commit phase. Past that point the token is ignored.
"""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe, one-shot cancellation signal.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()
