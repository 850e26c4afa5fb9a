import logging
from dataclasses import dataclass, field
from datetime import datetime

from app.edutrack.core.context import Identity
from app.edutrack.db.models import TransferAuditEntry
from app.edutrack.repos.audit import AuditRepository
from app.edutrack.services.state_machine import (
    AMEND,
    CANCEL,
    CREATE,
    DELIVER,
    DISCREPANCY,
    DISPATCH,
    MARK_IN_TRANSIT,
    RECEIVE,
    VALIDATE,
)

logger = logging.getLogger(__name__)


CREATED = "CREATED"
UPDATED = "UPDATED"
DISPATCHED = "DISPATCHED"
IN_TRANSIT = "IN_TRANSIT"
DELIVERED = "DELIVERED"
RECEIVED = "RECEIVED"
VALIDATED = "VALIDATED"
DISCREPANCY_RAISED = "DISCREPANCY_RAISED"
CANCELLED = "CANCELLED"

_EVENT_TYPES = {
    CREATE: CREATED,
    AMEND: UPDATED,
    DISPATCH: DISPATCHED,
    MARK_IN_TRANSIT: IN_TRANSIT,
    DELIVER: DELIVERED,
    RECEIVE: RECEIVED,
    VALIDATE: VALIDATED,
    CANCEL: CANCELLED,
}


def audit_event_type(event: str, to_status: str) -> str:
    if to_status == DISCREPANCY and event in (RECEIVE, VALIDATE):
        return DISCREPANCY_RAISED
    return _EVENT_TYPES[event]


@dataclass
class AuditEntryPayload:
    transfer_id: object
    event_type: str
    actor: Identity
    from_status: str | None
    to_status: str
    notes: str | None = None
    attachment_ids: list[str] = field(default_factory=list)
    quality_check_ids: list[str] = field(default_factory=list)
    trace_id: str | None = None


class AuditTrailRecorder:
    """Append-only transfer history.

    Entries are flushed inside the caller's transaction and never committed
    here, so a transfer change and its entry land together or not at all.
    Failures propagate to the caller, which rolls back the whole operation.
    """

    def __init__(self, db):
        self.repo = AuditRepository(db)

    def append(self, payload: AuditEntryPayload) -> TransferAuditEntry:
        entry = TransferAuditEntry(
            transfer_id=payload.transfer_id,
            sequence_number=self.repo.next_sequence_number(payload.transfer_id),
            event_type=payload.event_type,
            actor_id=payload.actor.user_id,
            actor_role=payload.actor.role,
            from_status=payload.from_status,
            to_status=payload.to_status,
            notes=payload.notes,
            attachment_ids=list(payload.attachment_ids) or None,
            quality_check_ids=list(payload.quality_check_ids) or None,
            trace_id=payload.trace_id,
            timestamp=datetime.utcnow(),
        )
        self.repo.create(entry)
        logger.debug(
            "Audit entry appended",
            extra={
                "transfer_id": str(payload.transfer_id),
                "sequence_number": entry.sequence_number,
                "event_type": payload.event_type,
                "trace_id": payload.trace_id,
            },
        )
        return entry

    def list(self, transfer_id, *, limit: int | None = None, offset: int = 0) -> tuple[list[TransferAuditEntry], int]:
        return self.repo.list_for_transfer(transfer_id, limit=limit, offset=offset)
