from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.edutrack.core.config import settings
from app.edutrack.core.context import Identity
from app.edutrack.core.error_catalog import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.edutrack.core.logging import log_json
from app.edutrack.core.metrics import metrics
from app.edutrack.db.models import Transfer, TransferAuditEntry, TransferLineItem
from app.edutrack.repos.transfers import TransferQueryFilters, TransferRepository
from app.edutrack.schemas.transfers import (
    AuditEntryResponse,
    AuditTrailResponse,
    DispatchDetails,
    Evidence,
    LineItemCreate,
    LineItemResult,
    LineItemSnapshot,
    StuckTransferListResponse,
    StuckTransferResponse,
    TransferListResponse,
    TransferResponse,
    TransferSnapshot,
)
from app.edutrack.services.audit import AuditEntryPayload, AuditTrailRecorder, audit_event_type
from app.edutrack.services.authorization import AuthorizationGate, TransferRefs
from app.edutrack.services.catalog import ItemCatalogService
from app.edutrack.services.reconciliation import LineQuantities, check_bounds, reconcile, require_notes
from app.edutrack.services.state_machine import (
    AMEND,
    CANCEL,
    CREATE,
    DELIVER,
    DISCREPANCY,
    DISPATCH,
    KIND_DEFINITIONS,
    MARK_IN_TRANSIT,
    RECEIVE,
    VALIDATE,
    VALIDATED,
    TransitionDecision,
    check_transition,
    get_kind,
    reconciliation_target,
    resolve_target,
)

logger = logging.getLogger(__name__)

URGENCY_CRITICAL_DAYS = 14
URGENCY_HIGH_DAYS = 10


@dataclass
class _Guard:
    transfer_id: str | None
    expected_status: str | None = None


def _parse_uuid(value, resource: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise NotFoundError(resource, value) from exc


def _clean_ref(value: str | None, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} is required", field=field_name)
    return str(value).strip()


def _join_notes(*parts: str | None) -> str | None:
    cleaned = [part.strip() for part in parts if part and part.strip()]
    return "\n".join(cleaned) if cleaned else None


def urgency_for(days_waiting: int) -> str:
    if days_waiting > URGENCY_CRITICAL_DAYS:
        return "critical"
    if days_waiting > URGENCY_HIGH_DAYS:
        return "high"
    return "medium"


def transfer_snapshot(transfer: Transfer) -> TransferSnapshot:
    return TransferSnapshot(
        id=str(transfer.id),
        kind=transfer.kind,
        status=transfer.status,
        reference_number=transfer.reference_number,
        origin_ref=transfer.origin_ref,
        destination_ref=transfer.destination_ref,
        expected_arrival_date=transfer.expected_arrival_date,
        actual_arrival_date=transfer.actual_arrival_date,
        tracking_number=transfer.tracking_number,
        transport_method=transfer.transport_method,
        notes=transfer.notes,
        discrepancy_notes=transfer.discrepancy_notes,
        created_by=transfer.created_by,
        dispatched_by=transfer.dispatched_by,
        received_by=transfer.received_by,
        validated_by=transfer.validated_by,
        cancelled_by=transfer.cancelled_by,
        created_at=transfer.created_at,
        updated_at=transfer.updated_at,
        dispatched_at=transfer.dispatched_at,
        received_at=transfer.received_at,
        validated_at=transfer.validated_at,
        cancelled_at=transfer.cancelled_at,
        version=transfer.version,
    )


def line_snapshot(line: TransferLineItem) -> LineItemSnapshot:
    return LineItemSnapshot(
        id=str(line.id),
        position=line.position,
        item_id=str(line.item_id),
        unit_of_measure=line.unit_of_measure,
        quantity_expected=line.quantity_expected,
        quantity_received=line.quantity_received,
        quantity_damaged=line.quantity_damaged,
        condition_on_receipt=line.condition_on_receipt,
        batch_number=line.batch_number,
        expiry_date=line.expiry_date,
        notes=line.notes,
        discrepancy_quantity=line.discrepancy_quantity,
        has_discrepancy=line.has_discrepancy,
    )


def audit_entry_response(entry: TransferAuditEntry) -> AuditEntryResponse:
    return AuditEntryResponse(
        id=str(entry.id),
        transfer_id=str(entry.transfer_id),
        sequence_number=entry.sequence_number,
        event_type=entry.event_type,
        actor_id=entry.actor_id,
        actor_role=entry.actor_role,
        from_status=entry.from_status,
        to_status=entry.to_status,
        notes=entry.notes,
        attachment_ids=list(entry.attachment_ids or []),
        quality_check_ids=list(entry.quality_check_ids or []),
        trace_id=entry.trace_id,
        timestamp=entry.timestamp,
    )


class TransferService:
    """The only entry point for transfer mutations.

    Each operation authorizes, checks the transition, reconciles where the
    event needs it, writes the transfer with its audit entry and commits once.
    Any failure rolls the whole operation back.
    """

    def __init__(
        self,
        db,
        *,
        catalog: ItemCatalogService | None = None,
        gate: AuthorizationGate | None = None,
        recorder: AuditTrailRecorder | None = None,
        trace_id: str | None = None,
    ):
        self.db = db
        self.transfers = TransferRepository(db)
        self.catalog = catalog or ItemCatalogService(db)
        self.gate = gate or AuthorizationGate()
        self.recorder = recorder or AuditTrailRecorder(db)
        self.trace_id = trace_id

    @contextmanager
    def _unit_of_work(self, transfer_id=None):
        guard = _Guard(transfer_id=str(transfer_id) if transfer_id else None)
        try:
            yield guard
            self.db.commit()
        except (StaleDataError, IntegrityError) as exc:
            self.db.rollback()
            metrics.increment_concurrency_conflict()
            log_json(
                logger,
                {
                    "event": "transfer_concurrency_conflict",
                    "trace_id": self.trace_id,
                    "transfer_id": guard.transfer_id,
                    "expected_status": guard.expected_status,
                    "error": exc.__class__.__name__,
                },
                level=logging.WARNING,
            )
            raise ConcurrencyConflictError(
                transfer_id=guard.transfer_id,
                expected_status=guard.expected_status,
            ) from exc
        except Exception:
            self.db.rollback()
            raise

    def _load(self, transfer_id) -> Transfer:
        transfer = self.transfers.get_transfer(_parse_uuid(transfer_id, "transfer"))
        if transfer is None:
            raise NotFoundError("transfer", transfer_id)
        return transfer

    def _begin(self, guard: _Guard, transfer_id, event: str, actor: Identity) -> tuple[Transfer, TransitionDecision]:
        transfer = self._load(transfer_id)
        guard.expected_status = transfer.status
        self.gate.authorize(actor, transfer.kind, event, transfer)
        try:
            decision = check_transition(transfer.kind, transfer.status, event, transfer_id=str(transfer.id))
        except InvalidTransitionError:
            log_json(
                logger,
                {
                    "event": "transfer_transition_rejected",
                    "trace_id": self.trace_id,
                    "transfer_id": str(transfer.id),
                    "kind": transfer.kind,
                    "transfer_event": event,
                    "current_status": transfer.status,
                    "actor_id": actor.user_id,
                },
                level=logging.WARNING,
            )
            raise
        if decision.noop:
            metrics.record_noop(kind=transfer.kind, event=event)
        return transfer, decision

    def _record(
        self,
        transfer: Transfer,
        event: str,
        actor: Identity,
        from_status: str | None,
        to_status: str,
        *,
        notes: str | None = None,
        evidence: Evidence | None = None,
    ) -> None:
        self.recorder.append(
            AuditEntryPayload(
                transfer_id=transfer.id,
                event_type=audit_event_type(event, to_status),
                actor=actor,
                from_status=from_status,
                to_status=to_status,
                notes=notes,
                attachment_ids=list(evidence.attachment_ids) if evidence else [],
                quality_check_ids=list(evidence.quality_check_ids) if evidence else [],
                trace_id=self.trace_id,
            )
        )
        metrics.record_transition(kind=transfer.kind, event=event, to_status=to_status)
        if to_status == DISCREPANCY:
            metrics.increment_discrepancy_raised(transfer.kind)
        log_json(
            logger,
            {
                "event": "transfer_transition",
                "trace_id": self.trace_id,
                "transfer_id": str(transfer.id),
                "reference_number": transfer.reference_number,
                "kind": transfer.kind,
                "transfer_event": event,
                "from_status": from_status,
                "to_status": to_status,
                "actor_id": actor.user_id,
                "actor_role": actor.role,
            },
        )

    def _move(self, transfer: Transfer, to_status: str, now: datetime) -> str:
        """Set the new status and stamp the row, which bumps its version."""
        from_status = transfer.status
        transfer.status = to_status
        transfer.updated_at = now
        return from_status

    def _response(self, transfer: Transfer, *, noop: bool = False) -> TransferResponse:
        lines = self.transfers.get_lines(transfer.id)
        return TransferResponse(
            transfer=transfer_snapshot(transfer),
            line_items=[line_snapshot(line) for line in lines],
            noop=noop,
        )

    def _build_lines(self, line_items: list[LineItemCreate]) -> list[TransferLineItem]:
        if not line_items:
            raise ValidationError("at least one line item is required")
        items = self.catalog.resolve([line.item_id for line in line_items])
        lines = []
        for position, line in enumerate(line_items):
            if line.quantity_expected < 0:
                raise ValidationError(
                    "quantity_expected must be non-negative",
                    item_id=line.item_id,
                    quantity_expected=line.quantity_expected,
                )
            item = items[str(line.item_id)]
            lines.append(
                TransferLineItem(
                    id=uuid.uuid4(),
                    position=position,
                    item_id=item.id,
                    unit_of_measure=line.unit_of_measure or item.unit_of_measure,
                    quantity_expected=line.quantity_expected,
                    batch_number=line.batch_number,
                    expiry_date=line.expiry_date,
                    notes=line.notes,
                )
            )
        return lines

    @staticmethod
    def _index_results(
        transfer: Transfer,
        lines: list[TransferLineItem],
        results: Iterable[LineItemResult] | None,
        *,
        require_all: bool,
    ) -> dict[str, LineItemResult]:
        known = {str(line.id) for line in lines}
        indexed: dict[str, LineItemResult] = {}
        for result in results or []:
            key = str(result.line_item_id)
            if key not in known:
                raise ValidationError(
                    "unknown line item",
                    transfer_id=str(transfer.id),
                    current_status=transfer.status,
                    line_item_id=key,
                )
            if key in indexed:
                raise ValidationError(
                    "line item submitted more than once",
                    transfer_id=str(transfer.id),
                    current_status=transfer.status,
                    line_item_id=key,
                )
            indexed[key] = result
        missing = sorted(known - set(indexed))
        if require_all and missing:
            raise ValidationError(
                "results are required for every line item",
                transfer_id=str(transfer.id),
                current_status=transfer.status,
                line_item_ids=missing,
            )
        return indexed

    @staticmethod
    def _proposed_quantities(
        lines: list[TransferLineItem], results: dict[str, LineItemResult]
    ) -> list[LineQuantities]:
        proposed = []
        for line in lines:
            result = results.get(str(line.id))
            proposed.append(
                LineQuantities(
                    line_item_id=str(line.id),
                    item_id=str(line.item_id),
                    quantity_expected=line.quantity_expected,
                    quantity_received=result.quantity_received if result else line.quantity_received,
                    quantity_damaged=result.quantity_damaged if result else line.quantity_damaged,
                )
            )
        return proposed

    @staticmethod
    def _apply_results(lines: list[TransferLineItem], results: dict[str, LineItemResult], now: datetime) -> None:
        for line in lines:
            result = results.get(str(line.id))
            if result is None:
                continue
            line.quantity_received = result.quantity_received
            line.quantity_damaged = result.quantity_damaged
            if result.condition_on_receipt is not None:
                line.condition_on_receipt = result.condition_on_receipt
            if result.batch_number is not None:
                line.batch_number = result.batch_number
            if result.expiry_date is not None:
                line.expiry_date = result.expiry_date
            if result.notes is not None:
                line.notes = result.notes
            line.updated_at = now

    def _reference_number(self, kind: str, supplied: str | None, now: datetime) -> str:
        if supplied is not None and supplied.strip():
            reference = supplied.strip()
            if self.transfers.reference_number_exists(kind, reference):
                raise ValidationError("reference_number already exists", kind=kind, reference_number=reference)
            return reference
        prefix = get_kind(kind).reference_prefix
        sequence = self.transfers.count_created_on(kind, now.date()) + 1
        while True:
            reference = f"{prefix}-{now:%Y%m%d}-{sequence:04d}"
            if not self.transfers.reference_number_exists(kind, reference):
                return reference
            sequence += 1

    def create(
        self,
        kind: str,
        origin_ref: str,
        destination_ref: str,
        line_items: list[LineItemCreate],
        actor: Identity,
        *,
        reference_number: str | None = None,
        expected_arrival_date: date | None = None,
        notes: str | None = None,
    ) -> TransferResponse:
        definition = get_kind(kind)
        refs = TransferRefs(
            origin_ref=_clean_ref(origin_ref, "origin_ref"),
            destination_ref=_clean_ref(destination_ref, "destination_ref"),
        )
        self.gate.authorize(actor, kind, CREATE, refs)
        with self._unit_of_work():
            now = datetime.utcnow()
            lines = self._build_lines(line_items)
            transfer = Transfer(
                id=uuid.uuid4(),
                kind=kind,
                status=definition.initial_status,
                reference_number=self._reference_number(kind, reference_number, now),
                origin_ref=refs.origin_ref,
                destination_ref=refs.destination_ref,
                expected_arrival_date=expected_arrival_date,
                notes=notes,
                created_by=actor.user_id,
                created_at=now,
                updated_at=now,
            )
            self.transfers.add(transfer, lines)
            self._record(transfer, CREATE, actor, None, definition.initial_status, notes=notes)
        return self._response(transfer)

    def amend(
        self,
        transfer_id,
        actor: Identity,
        *,
        line_items: list[LineItemCreate] | None = None,
        expected_arrival_date: date | None = None,
        notes: str | None = None,
    ) -> TransferResponse:
        if line_items is None and expected_arrival_date is None and notes is None:
            raise ValidationError("amend requires at least one field to change")
        with self._unit_of_work(transfer_id) as guard:
            transfer, _ = self._begin(guard, transfer_id, AMEND, actor)
            now = datetime.utcnow()
            if line_items is not None:
                self.transfers.replace_lines(transfer, self._build_lines(line_items))
            if expected_arrival_date is not None:
                transfer.expected_arrival_date = expected_arrival_date
            if notes is not None:
                transfer.notes = notes
            from_status = self._move(transfer, transfer.status, now)
            self._record(transfer, AMEND, actor, from_status, transfer.status, notes=notes)
        return self._response(transfer)

    def dispatch(self, transfer_id, dispatch_details: DispatchDetails | None, actor: Identity) -> TransferResponse:
        details = dispatch_details or DispatchDetails()
        with self._unit_of_work(transfer_id) as guard:
            transfer, decision = self._begin(guard, transfer_id, DISPATCH, actor)
            if not decision.noop:
                now = datetime.utcnow()
                (to_status,) = decision.targets
                if details.expected_arrival_date is not None:
                    transfer.expected_arrival_date = details.expected_arrival_date
                transfer.tracking_number = details.tracking_number or transfer.tracking_number
                transfer.transport_method = details.transport_method or transfer.transport_method
                transfer.dispatched_by = actor.user_id
                transfer.dispatched_at = now
                from_status = self._move(transfer, to_status, now)
                self._record(transfer, DISPATCH, actor, from_status, to_status, notes=details.notes)
        return self._response(transfer, noop=decision.noop)

    def _simple_step(self, transfer_id, event: str, actor: Identity, *, notes: str | None = None) -> TransferResponse:
        with self._unit_of_work(transfer_id) as guard:
            transfer, decision = self._begin(guard, transfer_id, event, actor)
            if not decision.noop:
                (to_status,) = decision.targets
                from_status = self._move(transfer, to_status, datetime.utcnow())
                self._record(transfer, event, actor, from_status, to_status, notes=notes)
        return self._response(transfer, noop=decision.noop)

    def mark_in_transit(self, transfer_id, actor: Identity) -> TransferResponse:
        return self._simple_step(transfer_id, MARK_IN_TRANSIT, actor)

    def mark_delivered(self, transfer_id, actor: Identity) -> TransferResponse:
        return self._simple_step(transfer_id, DELIVER, actor)

    def cancel(self, transfer_id, actor: Identity, *, reason: str | None = None) -> TransferResponse:
        with self._unit_of_work(transfer_id) as guard:
            transfer, decision = self._begin(guard, transfer_id, CANCEL, actor)
            if not decision.noop:
                now = datetime.utcnow()
                (to_status,) = decision.targets
                transfer.cancelled_by = actor.user_id
                transfer.cancelled_at = now
                from_status = self._move(transfer, to_status, now)
                self._record(transfer, CANCEL, actor, from_status, to_status, notes=reason)
        return self._response(transfer, noop=decision.noop)

    def receive(
        self,
        transfer_id,
        actual_arrival_date: date | None,
        line_item_results: list[LineItemResult],
        notes: str | None,
        actor: Identity,
        *,
        discrepancy_notes: str | None = None,
        evidence: Evidence | None = None,
    ) -> TransferResponse:
        with self._unit_of_work(transfer_id) as guard:
            transfer, decision = self._begin(guard, transfer_id, RECEIVE, actor)
            if not decision.noop:
                definition = KIND_DEFINITIONS[transfer.kind]
                lines = self.transfers.get_lines(transfer.id)
                results = self._index_results(transfer, lines, line_item_results, require_all=True)
                proposed = self._proposed_quantities(lines, results)
                transfer_key = str(transfer.id)
                if definition.reconcile_on_receive:
                    outcome = reconcile(
                        proposed,
                        discrepancy_notes,
                        damage_is_discrepancy=transfer.status != DISCREPANCY,
                        transfer_id=transfer_key,
                        current_status=transfer.status,
                    )
                    to_status = resolve_target(
                        decision,
                        reconciliation_target(transfer.kind, outcome.has_discrepancy),
                        kind=transfer.kind,
                        transfer_id=transfer_key,
                    )
                else:
                    # Recorded only; reconciliation happens at validation.
                    for line in proposed:
                        check_bounds(line, transfer_id=transfer_key, current_status=transfer.status)
                    (to_status,) = decision.targets
                now = datetime.utcnow()
                self._apply_results(lines, results, now)
                receipt_notes = _join_notes(discrepancy_notes)
                if receipt_notes is not None:
                    transfer.discrepancy_notes = receipt_notes
                transfer.actual_arrival_date = actual_arrival_date or now.date()
                transfer.received_by = actor.user_id
                transfer.received_at = now
                from_status = self._move(transfer, to_status, now)
                audit_notes = _join_notes(notes, receipt_notes)
                self._record(transfer, RECEIVE, actor, from_status, to_status, notes=audit_notes, evidence=evidence)
        return self._response(transfer, noop=decision.noop)

    def validate(
        self,
        transfer_id,
        decision: str,
        discrepancy_notes: str | None,
        actor: Identity,
        *,
        line_item_results: list[LineItemResult] | None = None,
        evidence: Evidence | None = None,
    ) -> TransferResponse:
        if decision not in (VALIDATED, DISCREPANCY):
            raise ValidationError("decision must be VALIDATED or DISCREPANCY", decision=decision)
        with self._unit_of_work(transfer_id) as guard:
            transfer, transition = self._begin(guard, transfer_id, VALIDATE, actor)
            if not transition.noop:
                lines = self.transfers.get_lines(transfer.id)
                results = self._index_results(transfer, lines, line_item_results, require_all=False)
                transfer_key = str(transfer.id)
                outcome = reconcile(
                    self._proposed_quantities(lines, results),
                    discrepancy_notes,
                    damage_is_discrepancy=transfer.status != DISCREPANCY,
                    transfer_id=transfer_key,
                    current_status=transfer.status,
                )
                has_discrepancy = outcome.has_discrepancy
                if decision == DISCREPANCY:
                    require_notes(
                        discrepancy_notes,
                        outcome.discrepant_line_ids,
                        transfer_id=transfer_key,
                        current_status=transfer.status,
                    )
                    has_discrepancy = True
                to_status = resolve_target(
                    transition,
                    reconciliation_target(transfer.kind, has_discrepancy),
                    kind=transfer.kind,
                    transfer_id=transfer_key,
                )
                now = datetime.utcnow()
                self._apply_results(lines, results, now)
                if to_status == DISCREPANCY:
                    transfer.discrepancy_notes = discrepancy_notes.strip()
                transfer.validated_by = actor.user_id
                transfer.validated_at = now
                from_status = self._move(transfer, to_status, now)
                self._record(
                    transfer,
                    VALIDATE,
                    actor,
                    from_status,
                    to_status,
                    notes=_join_notes(discrepancy_notes),
                    evidence=evidence,
                )
        return self._response(transfer, noop=transition.noop)

    def get(self, transfer_id, actor: Identity) -> TransferResponse:
        transfer = self._load(transfer_id)
        self.gate.ensure_can_view(actor, transfer)
        return self._response(transfer)

    def list_audit_trail(
        self,
        transfer_id,
        actor: Identity,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> AuditTrailResponse:
        transfer = self._load(transfer_id)
        self.gate.ensure_can_view(actor, transfer)
        if limit is not None:
            limit = max(1, min(limit, settings.AUDIT_TRAIL_MAX_PAGE_SIZE))
        entries, total = self.recorder.list(transfer.id, limit=limit, offset=max(offset, 0))
        return AuditTrailResponse(
            transfer_id=str(transfer.id),
            entries=[audit_entry_response(entry) for entry in entries],
            total=total,
            limit=limit,
            offset=max(offset, 0),
        )

    def list_transfers(self, actor: Identity, filters: TransferQueryFilters | None = None) -> TransferListResponse:
        filters = filters or TransferQueryFilters()
        if filters.kind is not None:
            get_kind(filters.kind)
        limit = max(1, min(filters.limit, settings.TRANSFERS_LIST_MAX_PAGE_SIZE))
        offset = max(filters.offset, 0)
        filters = TransferQueryFilters(
            kind=filters.kind,
            status=filters.status,
            origin_ref=filters.origin_ref,
            destination_ref=filters.destination_ref,
            org_ref=filters.org_ref,
            created_from=filters.created_from,
            created_to=filters.created_to,
            search=filters.search,
            limit=limit,
            offset=offset,
        )
        rows, total = self.transfers.list_transfers(filters, self.gate.visibility_rules(actor))
        return TransferListResponse(
            rows=[transfer_snapshot(row) for row in rows],
            total=total,
            limit=limit,
            offset=offset,
        )

    def list_stuck(
        self,
        actor: Identity,
        *,
        older_than_days: int | None = None,
        now: datetime | None = None,
    ) -> StuckTransferListResponse:
        threshold = settings.STUCK_TRANSFER_DAYS if older_than_days is None else older_than_days
        if threshold < 0:
            raise ValidationError("older_than_days must be non-negative", older_than_days=threshold)
        now = now or datetime.utcnow()
        waiting = self.transfers.list_awaiting_receipt(
            {kind: definition.awaiting_receipt for kind, definition in KIND_DEFINITIONS.items()},
            self.gate.visibility_rules(actor),
        )
        rows = []
        for transfer in waiting:
            since = transfer.dispatched_at or transfer.created_at
            days_waiting = (now - since).days
            if days_waiting <= threshold:
                continue
            rows.append(
                StuckTransferResponse(
                    transfer=transfer_snapshot(transfer),
                    days_waiting=days_waiting,
                    urgency=urgency_for(days_waiting),
                )
            )
        rows.sort(key=lambda row: row.days_waiting, reverse=True)
        return StuckTransferListResponse(rows=rows, older_than_days=threshold)
