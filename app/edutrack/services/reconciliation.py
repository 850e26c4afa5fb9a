from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from app.edutrack.core.error_catalog import DiscrepancyRequiresNotesError, ValidationError


@dataclass(frozen=True)
class LineQuantities:
    line_item_id: str
    item_id: str
    quantity_expected: int
    quantity_received: int | None
    quantity_damaged: int | None = 0


@dataclass(frozen=True)
class LineReconciliation:
    line_item_id: str
    item_id: str
    quantity_expected: int
    quantity_received: int
    quantity_damaged: int
    discrepancy_quantity: int
    has_discrepancy: bool


@dataclass(frozen=True)
class ReconciliationResult:
    lines: tuple[LineReconciliation, ...]
    has_discrepancy: bool

    @property
    def discrepant_line_ids(self) -> list[str]:
        return [line.line_item_id for line in self.lines if line.has_discrepancy]

    @property
    def total_discrepancy(self) -> int:
        return sum(line.discrepancy_quantity for line in self.lines)


def _line_context(line: LineQuantities, transfer_id: str | None, current_status: str | None) -> dict:
    return {
        "transfer_id": transfer_id,
        "current_status": current_status,
        "line_item_id": line.line_item_id,
        "item_id": line.item_id,
        "quantity_expected": line.quantity_expected,
        "quantity_received": line.quantity_received,
        "quantity_damaged": line.quantity_damaged,
    }


def check_bounds(
    line: LineQuantities,
    *,
    transfer_id: str | None = None,
    current_status: str | None = None,
) -> tuple[int, int]:
    """Return ``(received, damaged)`` or raise ``ValidationError``.

    Over-delivery is rejected outright rather than recorded as a negative
    discrepancy.
    """
    if line.quantity_received is None:
        raise ValidationError(
            "quantity_received is required", **_line_context(line, transfer_id, current_status)
        )
    received = line.quantity_received
    damaged = line.quantity_damaged or 0
    if received < 0 or damaged < 0:
        raise ValidationError(
            "quantities must be non-negative", **_line_context(line, transfer_id, current_status)
        )
    if received + damaged > line.quantity_expected:
        raise ValidationError(
            "quantity_received + quantity_damaged exceeds quantity_expected",
            **_line_context(line, transfer_id, current_status),
        )
    return received, damaged


def reconcile(
    lines: Iterable[LineQuantities],
    discrepancy_notes: str | None,
    *,
    damage_is_discrepancy: bool = True,
    transfer_id: str | None = None,
    current_status: str | None = None,
) -> ReconciliationResult:
    """Score submitted quantities against expectations.

    ``damage_is_discrepancy`` is turned off on a resolve pass: the transfer
    already sits in DISCREPANCY with the damage explained, so damage that
    balances the quantities no longer keeps it there.
    """
    scored: list[LineReconciliation] = []
    for line in lines:
        received, damaged = check_bounds(line, transfer_id=transfer_id, current_status=current_status)
        discrepancy = line.quantity_expected - received - damaged
        flagged = discrepancy != 0 or (damage_is_discrepancy and damaged > 0)
        scored.append(
            LineReconciliation(
                line_item_id=line.line_item_id,
                item_id=line.item_id,
                quantity_expected=line.quantity_expected,
                quantity_received=received,
                quantity_damaged=damaged,
                discrepancy_quantity=discrepancy,
                has_discrepancy=flagged,
            )
        )
    if not scored:
        raise ValidationError("at least one line item is required", transfer_id=transfer_id, current_status=current_status)

    result = ReconciliationResult(lines=tuple(scored), has_discrepancy=any(line.has_discrepancy for line in scored))
    if result.has_discrepancy:
        require_notes(discrepancy_notes, result.discrepant_line_ids, transfer_id=transfer_id, current_status=current_status)
    return result


def require_notes(
    discrepancy_notes: str | None,
    line_item_ids: list[str],
    *,
    transfer_id: str | None = None,
    current_status: str | None = None,
) -> str:
    if discrepancy_notes is None or not discrepancy_notes.strip():
        raise DiscrepancyRequiresNotesError(
            transfer_id=transfer_id,
            current_status=current_status,
            line_item_ids=line_item_ids,
        )
    return discrepancy_notes.strip()
