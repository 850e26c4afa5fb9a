from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time

from sqlalchemy import and_, false, func, or_, select

from app.edutrack.db.models import Transfer, TransferLineItem


@dataclass(frozen=True)
class VisibilityRule:
    """Transfers of ``kinds`` whose ``side`` reference equals ``ref``."""

    kinds: frozenset[str]
    side: str
    ref: str


@dataclass(frozen=True)
class TransferQueryFilters:
    kind: str | None = None
    status: str | None = None
    origin_ref: str | None = None
    destination_ref: str | None = None
    org_ref: str | None = None
    created_from: date | None = None
    created_to: date | None = None
    search: str | None = None
    limit: int = 50
    offset: int = 0


class TransferRepository:
    def __init__(self, db):
        self.db = db

    def get_transfer(self, transfer_id: str) -> Transfer | None:
        return self.db.get(Transfer, transfer_id)

    def get_lines(self, transfer_id: str) -> list[TransferLineItem]:
        return (
            self.db.execute(
                select(TransferLineItem)
                .where(TransferLineItem.transfer_id == transfer_id)
                .order_by(TransferLineItem.position.asc())
            )
            .scalars()
            .all()
        )

    def reference_number_exists(self, kind: str, reference_number: str) -> bool:
        stmt = select(Transfer.id).where(Transfer.kind == kind, Transfer.reference_number == reference_number)
        return self.db.execute(stmt).first() is not None

    def count_created_on(self, kind: str, day: date) -> int:
        start = datetime.combine(day, time.min)
        end = datetime.combine(day, time.max)
        stmt = (
            select(func.count())
            .select_from(Transfer)
            .where(Transfer.kind == kind, Transfer.created_at >= start, Transfer.created_at <= end)
        )
        return int(self.db.execute(stmt).scalar_one())

    def add(self, transfer: Transfer, lines: list[TransferLineItem]) -> Transfer:
        self.db.add(transfer)
        self.db.flush()
        for line in lines:
            line.transfer_id = transfer.id
        self.db.add_all(lines)
        self.db.flush()
        return transfer

    def replace_lines(self, transfer: Transfer, lines: list[TransferLineItem]) -> None:
        for existing in self.get_lines(str(transfer.id)):
            self.db.delete(existing)
        self.db.flush()
        for line in lines:
            line.transfer_id = transfer.id
        self.db.add_all(lines)

    def list_transfers(
        self,
        filters: TransferQueryFilters,
        visibility: list[VisibilityRule] | None,
    ) -> tuple[list[Transfer], int]:
        conditions = self._filter_conditions(filters, visibility)
        stmt = select(Transfer).where(*conditions)
        count_stmt = select(func.count()).select_from(Transfer).where(*conditions)
        stmt = stmt.order_by(Transfer.created_at.desc(), Transfer.reference_number.desc())
        if filters.offset:
            stmt = stmt.offset(filters.offset)
        if filters.limit:
            stmt = stmt.limit(filters.limit)
        rows = self.db.execute(stmt).scalars().all()
        total = self.db.execute(count_stmt).scalar_one()
        return rows, int(total)

    def list_awaiting_receipt(
        self,
        statuses_by_kind: dict[str, frozenset[str]],
        visibility: list[VisibilityRule] | None,
    ) -> list[Transfer]:
        status_clauses = [
            and_(Transfer.kind == kind, Transfer.status.in_(statuses))
            for kind, statuses in statuses_by_kind.items()
            if statuses
        ]
        if not status_clauses:
            return []
        conditions = [or_(*status_clauses)]
        visibility_clause = self._visibility_clause(visibility)
        if visibility_clause is not None:
            conditions.append(visibility_clause)
        stmt = select(Transfer).where(*conditions).order_by(Transfer.created_at.asc())
        return self.db.execute(stmt).scalars().all()

    def _filter_conditions(self, filters: TransferQueryFilters, visibility: list[VisibilityRule] | None) -> list:
        conditions = []
        if filters.kind:
            conditions.append(Transfer.kind == filters.kind)
        if filters.status:
            conditions.append(Transfer.status == filters.status)
        if filters.origin_ref:
            conditions.append(Transfer.origin_ref == filters.origin_ref)
        if filters.destination_ref:
            conditions.append(Transfer.destination_ref == filters.destination_ref)
        if filters.org_ref:
            conditions.append(or_(Transfer.origin_ref == filters.org_ref, Transfer.destination_ref == filters.org_ref))
        if filters.created_from:
            conditions.append(Transfer.created_at >= datetime.combine(filters.created_from, time.min))
        if filters.created_to:
            conditions.append(Transfer.created_at <= datetime.combine(filters.created_to, time.max))
        if filters.search:
            conditions.append(Transfer.reference_number.ilike(f"%{filters.search.strip()}%"))
        visibility_clause = self._visibility_clause(visibility)
        if visibility_clause is not None:
            conditions.append(visibility_clause)
        return conditions

    @staticmethod
    def _visibility_clause(visibility: list[VisibilityRule] | None):
        # None means unrestricted; an empty list means nothing is visible.
        if visibility is None:
            return None
        if not visibility:
            return false()
        clauses = []
        for rule in visibility:
            column = Transfer.origin_ref if rule.side == "origin" else Transfer.destination_ref
            clauses.append(and_(Transfer.kind.in_(sorted(rule.kinds)), column == rule.ref))
        return or_(*clauses)
