import pytest

from app.edutrack.core.error_catalog import AuthorizationError, InvalidTransitionError
from app.edutrack.db.models import TransferAuditEntry
from app.edutrack.schemas.transfers import Evidence
from app.edutrack.services.audit import AuditEntryPayload, AuditTrailRecorder
from app.edutrack.services.state_machine import replay
from app.edutrack.services.transfers import TransferService
from tests.transfer_helpers import (
    SCHOOL_B,
    council_officer,
    create_direct_shipment,
    create_distribution,
    results_for,
    school_rep,
    warehouse_manager,
)


def test_audit_length_matches_successful_operations(db_session, catalog_items):
    dispatched = create_direct_shipment(db_session, catalog_items["MATH-G1"], 100)
    service = TransferService(db_session)

    # Rejections and no-ops leave no trace.
    with pytest.raises(InvalidTransitionError):
        service.cancel(dispatched.transfer.id, warehouse_manager())
    service.dispatch(dispatched.transfer.id, None, warehouse_manager())
    with pytest.raises(AuthorizationError):
        service.mark_in_transit(dispatched.transfer.id, school_rep())

    service.mark_in_transit(dispatched.transfer.id, warehouse_manager())
    service.receive(
        dispatched.transfer.id,
        None,
        results_for(dispatched, 98),
        "two boxes missing",
        school_rep(),
        discrepancy_notes="2 missing",
        evidence=Evidence(attachment_ids=["photo-1"], quality_check_ids=["qc-9"]),
    )

    trail = service.list_audit_trail(dispatched.transfer.id, warehouse_manager())
    assert trail.total == 4
    assert [entry.sequence_number for entry in trail.entries] == [1, 2, 3, 4]
    received = trail.entries[-1]
    assert received.actor_id == "sr-1"
    assert received.actor_role == "school_rep"
    assert received.attachment_ids == ["photo-1"]
    assert received.quality_check_ids == ["qc-9"]
    assert received.notes.splitlines() == ["two boxes missing", "2 missing"]

    for previous, current in zip(trail.entries, trail.entries[1:]):
        assert current.from_status == previous.to_status
        assert current.timestamp >= previous.timestamp


def test_audit_replay_matches_current_status(db_session, catalog_items):
    dispatched = create_direct_shipment(db_session, catalog_items["ENG-G1"], 40)
    service = TransferService(db_session)
    service.receive(
        dispatched.transfer.id, None, results_for(dispatched, 30), None, school_rep(), discrepancy_notes="short 10"
    )
    current = service.validate(
        dispatched.transfer.id,
        "VALIDATED",
        None,
        warehouse_manager(),
        line_item_results=results_for(dispatched, 40),
    )

    trail = service.list_audit_trail(dispatched.transfer.id, warehouse_manager())
    steps = [(entry.sequence_number, entry.from_status, entry.to_status) for entry in trail.entries]
    assert replay("DIRECT_SHIPMENT", steps) == current.transfer.status == "CONFIRMED"


def test_audit_trail_pagination_and_visibility(db_session, catalog_items):
    distribution = create_distribution(db_session, catalog_items["CHALK-W"], 5, destination=SCHOOL_B)
    service = TransferService(db_session)
    service.receive(distribution.transfer.id, None, results_for(distribution, 5), None, school_rep(SCHOOL_B))

    page = service.list_audit_trail(distribution.transfer.id, council_officer(), limit=1, offset=1)
    assert page.total == 2
    assert page.limit == 1
    assert [entry.event_type for entry in page.entries] == ["RECEIVED"]

    with pytest.raises(AuthorizationError):
        service.list_audit_trail(distribution.transfer.id, school_rep())


def test_recorder_assigns_sequence_numbers(db_session, catalog_items):
    pending = create_direct_shipment(db_session, catalog_items["MATH-G1"], 1, dispatch=False)
    recorder = AuditTrailRecorder(db_session)

    entry = recorder.append(
        AuditEntryPayload(
            transfer_id=pending.transfer.id,
            event_type="UPDATED",
            actor=warehouse_manager(),
            from_status="PENDING",
            to_status="PENDING",
            trace_id="trace-1",
        )
    )
    db_session.rollback()

    assert entry.sequence_number == 2
    entries, total = recorder.list(pending.transfer.id)
    assert total == 1
    assert entries[0].event_type == "CREATED"


class _RejectingRecorder(AuditTrailRecorder):
    def append(self, payload: AuditEntryPayload) -> TransferAuditEntry:
        super().append(payload)
        raise RuntimeError("audit store unavailable")


def test_failed_audit_write_rolls_back_the_change(db_session, catalog_items):
    dispatched = create_direct_shipment(db_session, catalog_items["MATH-G1"], 20)
    failing = TransferService(db_session, recorder=_RejectingRecorder(db_session))

    with pytest.raises(RuntimeError):
        failing.receive(
            dispatched.transfer.id,
            None,
            results_for(dispatched, 15),
            None,
            school_rep(),
            discrepancy_notes="5 missing",
        )

    service = TransferService(db_session)
    current = service.get(dispatched.transfer.id, warehouse_manager())
    assert current.transfer.status == "DISPATCHED"
    assert current.transfer.version == dispatched.transfer.version
    assert current.transfer.discrepancy_notes is None
    assert current.line_items[0].quantity_received is None
    trail = service.list_audit_trail(dispatched.transfer.id, warehouse_manager())
    assert trail.total == 2
    assert [entry.to_status for entry in trail.entries] == ["PENDING", "DISPATCHED"]
