"""
Audit sinks.

Audit events are fire-and-forget: emit_audit() logs and swallows sink
failures so an audit outage never undoes committed work.
"""

import logging
from enum import Enum
from typing import Any, Optional

from .protocol import AuditSinkProtocol, ItemStoreProtocol

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    ITEM_CREATED = "ItemCreated"
    ITEM_UPDATED = "ItemUpdated"


class StoreAuditSink:
    """Writes audit rows to the item store's audits table."""

    def __init__(self, store: ItemStoreProtocol):
        self._store = store

    def emit(
        self,
        action: str,
        actor: str,
        subject_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        self._store.record_audit(str(action), actor, subject_id, metadata)


class NullAuditSink:
    """No-op sink for when auditing is disabled."""

    def emit(self, action, actor, subject_id, metadata=None) -> None:
        pass


def emit_audit(
    sink: AuditSinkProtocol,
    action: AuditAction,
    actor: str,
    subject_id: Optional[str],
    metadata: Optional[dict[str, Any]] = None,
) -> bool:
    """Best-effort emit. Returns False if the sink raised."""
    try:
        sink.emit(action.value, actor, subject_id, metadata)
        return True
    except Exception:
        logger.warning(
            "Failed to record audit entry %s for %s", action.value, subject_id,
            exc_info=True,
        )
        return False
