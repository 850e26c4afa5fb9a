import pytest

from app.edutrack.core.error_catalog import DiscrepancyRequiresNotesError, ValidationError
from app.edutrack.services.reconciliation import LineQuantities, reconcile


def _line(received, damaged=0, expected=100, line_id="line-1"):
    return LineQuantities(
        line_item_id=line_id,
        item_id="item-1",
        quantity_expected=expected,
        quantity_received=received,
        quantity_damaged=damaged,
    )


def test_clean_reconciliation():
    result = reconcile([_line(100)], None)
    assert not result.has_discrepancy
    assert result.lines[0].discrepancy_quantity == 0


def test_shortage_and_damage_require_notes():
    with pytest.raises(DiscrepancyRequiresNotesError) as exc:
        reconcile([_line(90, 5)], None, transfer_id="t-1", current_status="DISPATCHED")
    assert exc.value.details["line_item_ids"] == ["line-1"]
    assert exc.value.details["transfer_id"] == "t-1"

    with pytest.raises(DiscrepancyRequiresNotesError):
        reconcile([_line(90, 5)], "   ")

    result = reconcile([_line(90, 5)], "5 boxes missing, 5 water damaged")
    assert result.has_discrepancy
    assert result.lines[0].discrepancy_quantity == 5


def test_discrepancy_quantity_identity():
    result = reconcile(
        [_line(40, 10, expected=60, line_id="a"), _line(30, 0, expected=30, line_id="b")],
        "short on line a",
    )
    for line in result.lines:
        assert line.quantity_expected - line.quantity_received - line.quantity_damaged == line.discrepancy_quantity
    assert result.discrepant_line_ids == ["a"]
    assert result.total_discrepancy == 10


def test_damage_alone_counts_on_first_pass():
    result = reconcile([_line(95, 5)], "damaged in transit")
    assert result.has_discrepancy
    assert result.lines[0].discrepancy_quantity == 0


def test_balanced_damage_clears_on_resolve_pass():
    result = reconcile([_line(95, 5)], None, damage_is_discrepancy=False)
    assert not result.has_discrepancy


@pytest.mark.parametrize("received,damaged", [(-1, 0), (10, -2)])
def test_negative_quantities_rejected(received, damaged):
    with pytest.raises(ValidationError) as exc:
        reconcile([_line(received, damaged)], "notes")
    assert exc.value.details["line_item_id"] == "line-1"


def test_over_delivery_rejected():
    with pytest.raises(ValidationError) as exc:
        reconcile([_line(100, 1)], "notes")
    assert exc.value.details["quantity_expected"] == 100
    assert "exceeds" in exc.value.details["message"]


def test_missing_received_quantity_rejected():
    with pytest.raises(ValidationError):
        reconcile([_line(None)], None)
