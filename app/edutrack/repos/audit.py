from sqlalchemy import func, select

from app.edutrack.db.models import TransferAuditEntry


class AuditRepository:
    def __init__(self, db):
        self.db = db

    def next_sequence_number(self, transfer_id) -> int:
        stmt = select(func.coalesce(func.max(TransferAuditEntry.sequence_number), 0)).where(
            TransferAuditEntry.transfer_id == transfer_id
        )
        return int(self.db.execute(stmt).scalar_one()) + 1

    def create(self, entry: TransferAuditEntry) -> TransferAuditEntry:
        # Flush only: the orchestrator commits the entry together with the transfer change.
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_for_transfer(self, transfer_id, *, limit: int | None = None, offset: int = 0):
        stmt = (
            select(TransferAuditEntry)
            .where(TransferAuditEntry.transfer_id == transfer_id)
            .order_by(TransferAuditEntry.sequence_number.asc())
        )
        count_stmt = (
            select(func.count()).select_from(TransferAuditEntry).where(TransferAuditEntry.transfer_id == transfer_id)
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)
        rows = self.db.execute(stmt).scalars().all()
        total = self.db.execute(count_stmt).scalar_one()
        return rows, int(total)
