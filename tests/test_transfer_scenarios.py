import pytest

from app.edutrack.core.error_catalog import (
    AuthorizationError,
    DiscrepancyRequiresNotesError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.edutrack.schemas.transfers import DispatchDetails, LineItemCreate
from app.edutrack.services.transfers import TransferService
from tests.transfer_helpers import (
    SCHOOL_A,
    SCHOOL_B,
    WAREHOUSE_A,
    council_officer,
    create_council_shipment,
    create_direct_shipment,
    create_distribution,
    create_supplier_receipt,
    national_manager,
    results_for,
    school_rep,
    warehouse_manager,
)


def test_direct_shipment_clean_confirmation(db_session, catalog_items):
    dispatched = create_direct_shipment(db_session, catalog_items["MATH-G1"], 100)
    assert dispatched.transfer.status == "DISPATCHED"
    assert dispatched.transfer.reference_number.startswith("DS-")

    service = TransferService(db_session)
    confirmed = service.receive(
        dispatched.transfer.id, None, results_for(dispatched, 100), None, school_rep(SCHOOL_A)
    )

    assert confirmed.transfer.status == "CONFIRMED"
    assert confirmed.transfer.received_by == "sr-1"
    assert confirmed.transfer.actual_arrival_date is not None
    line = confirmed.line_items[0]
    assert line.quantity_received == 100
    assert line.discrepancy_quantity == 0
    assert not line.has_discrepancy

    trail = service.list_audit_trail(confirmed.transfer.id, school_rep(SCHOOL_A))
    assert [entry.event_type for entry in trail.entries] == ["CREATED", "DISPATCHED", "RECEIVED"]
    assert [entry.sequence_number for entry in trail.entries] == [1, 2, 3]


def test_direct_shipment_shortage_requires_notes(db_session, catalog_items):
    dispatched = create_direct_shipment(db_session, catalog_items["MATH-G1"], 100)
    service = TransferService(db_session)

    with pytest.raises(DiscrepancyRequiresNotesError) as exc:
        service.receive(dispatched.transfer.id, None, results_for(dispatched, 90, 5), None, school_rep(SCHOOL_A))
    assert exc.value.details["transfer_id"] == dispatched.transfer.id
    assert exc.value.details["current_status"] == "DISPATCHED"

    unchanged = service.get(dispatched.transfer.id, school_rep(SCHOOL_A))
    assert unchanged.transfer.status == "DISPATCHED"
    assert unchanged.line_items[0].quantity_received is None
    assert service.list_audit_trail(dispatched.transfer.id, school_rep(SCHOOL_A)).total == 2

    flagged = service.receive(
        dispatched.transfer.id,
        None,
        results_for(dispatched, 90, 5),
        None,
        school_rep(SCHOOL_A),
        discrepancy_notes="5 missing, 5 water damaged",
    )
    assert flagged.transfer.status == "DISCREPANCY"
    assert flagged.transfer.discrepancy_notes == "5 missing, 5 water damaged"
    assert flagged.line_items[0].discrepancy_quantity == 5
    assert flagged.line_items[0].has_discrepancy

    trail = service.list_audit_trail(dispatched.transfer.id, school_rep(SCHOOL_A))
    last = trail.entries[-1]
    assert last.event_type == "DISCREPANCY_RAISED"
    assert last.from_status == "DISPATCHED"
    assert last.to_status == "DISCREPANCY"
    assert "water damaged" in last.notes


def test_direct_shipment_discrepancy_resolved_by_sender(db_session, catalog_items):
    dispatched = create_direct_shipment(db_session, catalog_items["ENG-G1"], 100)
    service = TransferService(db_session)
    service.receive(
        dispatched.transfer.id,
        None,
        results_for(dispatched, 90, 5),
        None,
        school_rep(SCHOOL_A),
        discrepancy_notes="short delivery",
    )

    resolved = service.validate(
        dispatched.transfer.id,
        "VALIDATED",
        None,
        warehouse_manager(),
        line_item_results=results_for(dispatched, 95, 5),
    )
    assert resolved.transfer.status == "CONFIRMED"
    assert resolved.transfer.validated_by == "wm-1"
    assert resolved.line_items[0].discrepancy_quantity == 0


def test_supplier_receipt_validation_flow(db_session, catalog_items):
    draft = create_supplier_receipt(db_session, catalog_items["SCI-G4"], 100)
    assert draft.transfer.status == "DRAFT"
    assert draft.transfer.reference_number.startswith("SR-")
    service = TransferService(db_session)

    received = service.receive(
        draft.transfer.id, None, results_for(draft, 90, 5), "counted at gate", warehouse_manager()
    )
    assert received.transfer.status == "RECEIVED"

    with pytest.raises(DiscrepancyRequiresNotesError):
        service.validate(draft.transfer.id, "VALIDATED", None, national_manager(WAREHOUSE_A))

    flagged = service.validate(draft.transfer.id, "VALIDATED", "supplier short by 5", national_manager(WAREHOUSE_A))
    assert flagged.transfer.status == "DISCREPANCY"

    validated = service.validate(
        draft.transfer.id,
        "VALIDATED",
        None,
        national_manager(WAREHOUSE_A),
        line_item_results=results_for(draft, 95, 5),
    )
    assert validated.transfer.status == "VALIDATED"
    assert validated.transfer.validated_by == "nm-1"

    trail = service.list_audit_trail(draft.transfer.id, national_manager())
    assert [entry.to_status for entry in trail.entries] == [
        "DRAFT",
        "RECEIVED",
        "DISCREPANCY",
        "VALIDATED",
    ]


def test_supplier_receipt_keeps_receiver_notes_for_validation(db_session, catalog_items):
    draft = create_supplier_receipt(db_session, catalog_items["SCI-G4"], 100)
    service = TransferService(db_session)

    received = service.receive(
        draft.transfer.id,
        None,
        results_for(draft, 90),
        "counted at gate",
        warehouse_manager(),
        discrepancy_notes="10 boxes short from supplier",
    )
    assert received.transfer.status == "RECEIVED"
    assert received.transfer.discrepancy_notes == "10 boxes short from supplier"

    trail = service.list_audit_trail(draft.transfer.id, national_manager())
    assert trail.entries[-1].notes.splitlines() == ["counted at gate", "10 boxes short from supplier"]


def test_supplier_receipt_forced_discrepancy_needs_notes(db_session, catalog_items):
    draft = create_supplier_receipt(db_session, catalog_items["SCI-G4"], 10)
    service = TransferService(db_session)
    service.receive(draft.transfer.id, None, results_for(draft, 10), None, warehouse_manager())

    with pytest.raises(DiscrepancyRequiresNotesError):
        service.validate(draft.transfer.id, "DISCREPANCY", None, national_manager())

    flagged = service.validate(draft.transfer.id, "DISCREPANCY", "wrong edition delivered", national_manager())
    assert flagged.transfer.status == "DISCREPANCY"

    with pytest.raises(ValidationError):
        service.validate(draft.transfer.id, "MAYBE", None, national_manager())


def test_council_shipment_dispatch_lands_in_transit(db_session, catalog_items):
    shipment = create_council_shipment(db_session, catalog_items["EXB-A4"], 80)
    assert shipment.transfer.status == "IN_TRANSIT"
    assert shipment.transfer.reference_number.startswith("SH-")
    service = TransferService(db_session)

    repeat = service.mark_in_transit(shipment.transfer.id, warehouse_manager())
    assert repeat.noop
    assert repeat.transfer.status == "IN_TRANSIT"

    received = service.receive(shipment.transfer.id, None, results_for(shipment, 80), None, council_officer())
    assert received.transfer.status == "RECEIVED"


def test_distribution_wrong_school_is_denied(db_session, catalog_items):
    distribution = create_distribution(db_session, catalog_items["CHALK-W"], 50, destination=SCHOOL_B)
    assert distribution.transfer.status == "CREATED"
    service = TransferService(db_session)

    with pytest.raises(AuthorizationError) as exc:
        service.receive(distribution.transfer.id, None, results_for(distribution, 50), None, school_rep(SCHOOL_A))
    assert exc.value.details["transfer_id"] == distribution.transfer.id
    assert exc.value.details["current_status"] == "CREATED"

    after = service.get(distribution.transfer.id, council_officer())
    assert after.transfer.status == "CREATED"
    assert after.line_items[0].quantity_received is None
    assert service.list_audit_trail(distribution.transfer.id, council_officer()).total == 1

    confirmed = service.receive(
        distribution.transfer.id, None, results_for(distribution, 50), None, school_rep(SCHOOL_B)
    )
    assert confirmed.transfer.status == "CONFIRMED"


def test_direct_shipment_full_tracking_path(db_session, catalog_items):
    dispatched = create_direct_shipment(db_session, catalog_items["MATH-G1"], 20)
    service = TransferService(db_session)

    in_transit = service.mark_in_transit(dispatched.transfer.id, warehouse_manager())
    assert in_transit.transfer.status == "IN_TRANSIT"
    delivered = service.mark_delivered(dispatched.transfer.id, warehouse_manager())
    assert delivered.transfer.status == "DELIVERED"
    confirmed = service.receive(dispatched.transfer.id, None, results_for(dispatched, 20), None, school_rep())
    assert confirmed.transfer.status == "CONFIRMED"

    trail = service.list_audit_trail(dispatched.transfer.id, warehouse_manager())
    assert [entry.event_type for entry in trail.entries] == [
        "CREATED",
        "DISPATCHED",
        "IN_TRANSIT",
        "DELIVERED",
        "RECEIVED",
    ]


def test_cancel_before_and_after_dispatch(db_session, catalog_items):
    pending = create_direct_shipment(db_session, catalog_items["MATH-G1"], 10, dispatch=False)
    service = TransferService(db_session)

    cancelled = service.cancel(pending.transfer.id, warehouse_manager(), reason="order withdrawn")
    assert cancelled.transfer.status == "CANCELLED"
    assert cancelled.transfer.cancelled_by == "wm-1"
    assert cancelled.transfer.cancelled_at is not None

    again = service.cancel(pending.transfer.id, warehouse_manager())
    assert again.noop
    assert service.list_audit_trail(pending.transfer.id, warehouse_manager()).total == 2

    with pytest.raises(InvalidTransitionError):
        service.dispatch(pending.transfer.id, None, warehouse_manager())

    dispatched = create_direct_shipment(db_session, catalog_items["MATH-G1"], 10)
    with pytest.raises(InvalidTransitionError) as exc:
        service.cancel(dispatched.transfer.id, warehouse_manager())
    assert exc.value.details["current_status"] == "DISPATCHED"


def test_delivered_shipment_cannot_be_cancelled(db_session, catalog_items):
    dispatched = create_direct_shipment(db_session, catalog_items["MATH-G1"], 10)
    service = TransferService(db_session)
    service.mark_in_transit(dispatched.transfer.id, warehouse_manager())
    service.mark_delivered(dispatched.transfer.id, warehouse_manager())

    with pytest.raises(InvalidTransitionError):
        service.cancel(dispatched.transfer.id, warehouse_manager())
    assert service.get(dispatched.transfer.id, warehouse_manager()).transfer.status == "DELIVERED"


def test_repeated_dispatch_and_receive_are_noops(db_session, catalog_items):
    dispatched = create_direct_shipment(db_session, catalog_items["MATH-G1"], 10)
    service = TransferService(db_session)

    again = service.dispatch(dispatched.transfer.id, DispatchDetails(tracking_number="TRK-2"), warehouse_manager())
    assert again.noop
    assert again.transfer.tracking_number is None

    service.receive(dispatched.transfer.id, None, results_for(dispatched, 10), None, school_rep())
    repeat = service.receive(dispatched.transfer.id, None, results_for(dispatched, 10), None, school_rep())
    assert repeat.noop
    assert repeat.transfer.status == "CONFIRMED"
    assert service.list_audit_trail(dispatched.transfer.id, school_rep()).total == 3


def test_dispatch_records_tracking_details(db_session, catalog_items):
    pending = create_direct_shipment(db_session, catalog_items["MATH-G1"], 10, dispatch=False)
    service = TransferService(db_session)

    dispatched = service.dispatch(
        pending.transfer.id,
        DispatchDetails(tracking_number="TRK-1", transport_method="truck"),
        warehouse_manager(),
    )
    assert dispatched.transfer.status == "DISPATCHED"
    assert dispatched.transfer.tracking_number == "TRK-1"
    assert dispatched.transfer.transport_method == "truck"
    assert dispatched.transfer.dispatched_by == "wm-1"
    assert dispatched.transfer.dispatched_at is not None


def test_amend_before_dispatch_only(db_session, catalog_items):
    pending = create_direct_shipment(db_session, catalog_items["MATH-G1"], 10, dispatch=False)
    service = TransferService(db_session)

    amended = service.amend(
        pending.transfer.id,
        warehouse_manager(),
        line_items=[
            LineItemCreate(item_id=catalog_items["MATH-G1"], quantity_expected=12),
            LineItemCreate(item_id=catalog_items["CHALK-W"], quantity_expected=3),
        ],
        notes="added chalk",
    )
    assert amended.transfer.status == "PENDING"
    assert [line.quantity_expected for line in amended.line_items] == [12, 3]
    assert amended.line_items[1].unit_of_measure == "box"
    assert amended.transfer.version > pending.transfer.version

    with pytest.raises(ValidationError):
        service.amend(pending.transfer.id, warehouse_manager())
    unchanged = service.get(pending.transfer.id, warehouse_manager())
    assert unchanged.transfer.version == amended.transfer.version
    assert service.list_audit_trail(pending.transfer.id, warehouse_manager()).total == 2

    service.dispatch(pending.transfer.id, None, warehouse_manager())
    with pytest.raises(InvalidTransitionError):
        service.amend(pending.transfer.id, warehouse_manager(), notes="too late")


def test_receive_rejects_bad_quantities(db_session, catalog_items):
    dispatched = create_direct_shipment(db_session, catalog_items["MATH-G1"], 10)
    service = TransferService(db_session)

    with pytest.raises(ValidationError):
        service.receive(dispatched.transfer.id, None, results_for(dispatched, 11), None, school_rep())
    with pytest.raises(ValidationError):
        service.receive(dispatched.transfer.id, None, results_for(dispatched, -1), None, school_rep())
    with pytest.raises(ValidationError):
        service.receive(dispatched.transfer.id, None, [], None, school_rep())
    assert service.get(dispatched.transfer.id, school_rep()).transfer.status == "DISPATCHED"


def test_create_validation(db_session, catalog_items):
    service = TransferService(db_session)

    with pytest.raises(ValidationError):
        service.create("DIRECT_SHIPMENT", WAREHOUSE_A, SCHOOL_A, [], warehouse_manager())
    with pytest.raises(ValidationError):
        service.create(
            "DIRECT_SHIPMENT",
            WAREHOUSE_A,
            SCHOOL_A,
            [LineItemCreate(item_id=catalog_items["MATH-G1"], quantity_expected=-1)],
            warehouse_manager(),
        )
    with pytest.raises(NotFoundError):
        service.create(
            "DIRECT_SHIPMENT",
            WAREHOUSE_A,
            SCHOOL_A,
            [LineItemCreate(item_id="00000000-0000-0000-0000-000000000000", quantity_expected=1)],
            warehouse_manager(),
        )
    with pytest.raises(ValidationError):
        service.create("TELEPORT", WAREHOUSE_A, SCHOOL_A, [], warehouse_manager())
    with pytest.raises(AuthorizationError):
        service.create(
            "DIRECT_SHIPMENT",
            WAREHOUSE_A,
            SCHOOL_A,
            [LineItemCreate(item_id=catalog_items["MATH-G1"], quantity_expected=1)],
            school_rep(),
        )


def test_reference_numbers_are_unique_per_kind(db_session, catalog_items):
    first = create_direct_shipment(db_session, catalog_items["MATH-G1"], 1, dispatch=False)
    second = create_direct_shipment(db_session, catalog_items["MATH-G1"], 1, dispatch=False)
    assert first.transfer.reference_number != second.transfer.reference_number
    assert first.transfer.reference_number.endswith("-0001")
    assert second.transfer.reference_number.endswith("-0002")

    service = TransferService(db_session)
    with pytest.raises(ValidationError):
        service.create(
            "DIRECT_SHIPMENT",
            WAREHOUSE_A,
            SCHOOL_A,
            [LineItemCreate(item_id=catalog_items["MATH-G1"], quantity_expected=1)],
            warehouse_manager(),
            reference_number=first.transfer.reference_number,
        )


def test_unknown_transfer_is_not_found(db_session, catalog_items):
    service = TransferService(db_session)
    with pytest.raises(NotFoundError):
        service.get("not-a-uuid", warehouse_manager())
    with pytest.raises(NotFoundError):
        service.dispatch("00000000-0000-0000-0000-000000000000", None, warehouse_manager())
