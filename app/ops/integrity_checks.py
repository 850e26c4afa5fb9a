from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select

from app.edutrack.core.error_catalog import AppError
from app.edutrack.core.metrics import metrics
from app.edutrack.db.models import Transfer, TransferAuditEntry, TransferLineItem
from app.edutrack.services.state_machine import (
    CANCELLED,
    DISCREPANCY,
    KIND_DEFINITIONS,
    TRANSFER_KINDS,
    replay,
)


SEVERITY_CRITICAL = "CRITICAL"
SEVERITY_WARN = "WARN"


@dataclass(frozen=True)
class IntegrityFinding:
    check_id: str
    severity: str
    kind: str
    message: str
    entity: str
    entity_id: str | None
    details: dict


def resolve_kinds(kind: str) -> list[str]:
    if kind.lower() == "all":
        return list(TRANSFER_KINDS)
    if kind not in KIND_DEFINITIONS:
        raise ValueError(f"unknown transfer kind: {kind}")
    return [kind]


def _transfers(db, kind: str) -> list[Transfer]:
    return db.execute(select(Transfer).where(Transfer.kind == kind)).scalars().all()


def _record(findings: list[IntegrityFinding], check_id: str) -> list[IntegrityFinding]:
    if findings:
        metrics.increment_invariant_violation(check_id, len(findings))
    return findings


def check_status_in_kind(db, kind: str) -> list[IntegrityFinding]:
    statuses = KIND_DEFINITIONS[kind].statuses
    findings = [
        IntegrityFinding(
            check_id="status_in_kind",
            severity=SEVERITY_CRITICAL,
            kind=kind,
            message="Transfer status is not legal for its kind.",
            entity="transfers",
            entity_id=str(transfer.id),
            details={"status": transfer.status},
        )
        for transfer in _transfers(db, kind)
        if transfer.status not in statuses
    ]
    return _record(findings, "status_in_kind")


def check_audit_replay(db, kind: str) -> list[IntegrityFinding]:
    findings = []
    for transfer in _transfers(db, kind):
        entries = (
            db.execute(
                select(TransferAuditEntry)
                .where(TransferAuditEntry.transfer_id == transfer.id)
                .order_by(TransferAuditEntry.sequence_number.asc())
            )
            .scalars()
            .all()
        )
        steps = [(entry.sequence_number, entry.from_status, entry.to_status) for entry in entries]
        try:
            replayed = replay(kind, steps)
        except AppError as exc:
            findings.append(
                IntegrityFinding(
                    check_id="audit_replay",
                    severity=SEVERITY_CRITICAL,
                    kind=kind,
                    message="Audit trail does not replay through legal transitions.",
                    entity="transfers",
                    entity_id=str(transfer.id),
                    details={"status": transfer.status, "entries": len(entries), "error": exc.details},
                )
            )
            continue
        if replayed != transfer.status:
            findings.append(
                IntegrityFinding(
                    check_id="audit_replay",
                    severity=SEVERITY_CRITICAL,
                    kind=kind,
                    message="Audit trail replays to a different status.",
                    entity="transfers",
                    entity_id=str(transfer.id),
                    details={"status": transfer.status, "replayed_status": replayed},
                )
            )
    return _record(findings, "audit_replay")


def check_discrepancy_notes(db, kind: str) -> list[IntegrityFinding]:
    findings = [
        IntegrityFinding(
            check_id="discrepancy_notes",
            severity=SEVERITY_CRITICAL,
            kind=kind,
            message="Transfer in DISCREPANCY has no discrepancy notes.",
            entity="transfers",
            entity_id=str(transfer.id),
            details={"status": transfer.status},
        )
        for transfer in _transfers(db, kind)
        if transfer.status == DISCREPANCY and not (transfer.discrepancy_notes or "").strip()
    ]
    return _record(findings, "discrepancy_notes")


def check_line_quantities(db, kind: str) -> list[IntegrityFinding]:
    rows = db.execute(
        select(TransferLineItem, Transfer.id)
        .join(Transfer, TransferLineItem.transfer_id == Transfer.id)
        .where(Transfer.kind == kind)
        .where(TransferLineItem.quantity_received.is_not(None))
    ).all()
    findings = []
    for line, transfer_id in rows:
        received = line.quantity_received or 0
        damaged = line.quantity_damaged or 0
        if received < 0 or damaged < 0 or received + damaged > line.quantity_expected:
            findings.append(
                IntegrityFinding(
                    check_id="line_quantities",
                    severity=SEVERITY_CRITICAL,
                    kind=kind,
                    message="Line item quantities are negative or exceed the expected quantity.",
                    entity="transfer_line_items",
                    entity_id=str(line.id),
                    details={
                        "transfer_id": str(transfer_id),
                        "quantity_expected": line.quantity_expected,
                        "quantity_received": line.quantity_received,
                        "quantity_damaged": line.quantity_damaged,
                    },
                )
            )
    return _record(findings, "line_quantities")


def check_cancel_timestamps(db, kind: str) -> list[IntegrityFinding]:
    findings = []
    for transfer in _transfers(db, kind):
        cancelled = transfer.status == CANCELLED
        if cancelled == (transfer.cancelled_at is not None):
            continue
        findings.append(
            IntegrityFinding(
                check_id="cancel_timestamps",
                severity=SEVERITY_WARN,
                kind=kind,
                message="Cancellation timestamp disagrees with status.",
                entity="transfers",
                entity_id=str(transfer.id),
                details={"status": transfer.status, "cancelled_at": _format_datetime(transfer.cancelled_at)},
            )
        )
    return _record(findings, "cancel_timestamps")


def _format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def run_integrity_checks(db, kind: str) -> list[IntegrityFinding]:
    findings: list[IntegrityFinding] = []
    findings.extend(check_status_in_kind(db, kind))
    findings.extend(check_audit_replay(db, kind))
    findings.extend(check_discrepancy_notes(db, kind))
    findings.extend(check_line_quantities(db, kind))
    findings.extend(check_cancel_timestamps(db, kind))
    return findings
