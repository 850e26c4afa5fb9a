from datetime import datetime, timedelta

import pytest

from app.edutrack.core.error_catalog import ValidationError
from app.edutrack.services.transfers import TransferService, urgency_for
from tests.transfer_helpers import (
    SCHOOL_B,
    auth_headers,
    council_officer,
    create_direct_shipment,
    create_distribution,
    results_for,
    school_rep,
    view_only,
    warehouse_manager,
)


@pytest.mark.parametrize(
    "days,expected",
    [(8, "medium"), (10, "medium"), (11, "high"), (14, "high"), (15, "critical"), (40, "critical")],
)
def test_urgency_bands(days, expected):
    assert urgency_for(days) == expected


def test_stuck_lists_only_transfers_awaiting_receipt(db_session, catalog_items):
    waiting = create_direct_shipment(db_session, catalog_items["MATH-G1"], 10)
    done = create_direct_shipment(db_session, catalog_items["MATH-G1"], 10)
    create_direct_shipment(db_session, catalog_items["MATH-G1"], 10, dispatch=False)
    distribution = create_distribution(db_session, catalog_items["CHALK-W"], 5, destination=SCHOOL_B)
    service = TransferService(db_session)
    service.receive(done.transfer.id, None, results_for(done, 10), None, school_rep())

    later = datetime.utcnow() + timedelta(days=12)
    stuck = service.list_stuck(view_only(), now=later)

    assert stuck.older_than_days == 7
    ids = {row.transfer.id for row in stuck.rows}
    assert ids == {waiting.transfer.id, distribution.transfer.id}
    assert {row.urgency for row in stuck.rows} == {"high"}
    assert all(row.days_waiting >= 11 for row in stuck.rows)

    assert service.list_stuck(view_only(), now=datetime.utcnow()).rows == []
    assert service.list_stuck(view_only(), older_than_days=20, now=later).rows == []

    scoped = service.list_stuck(council_officer(), now=later)
    assert [row.transfer.id for row in scoped.rows] == [distribution.transfer.id]

    with pytest.raises(ValidationError):
        service.list_stuck(view_only(), older_than_days=-1)


def test_stuck_endpoint(client, db_session, catalog_items):
    create_direct_shipment(db_session, catalog_items["MATH-G1"], 10)

    response = client.get(
        "/edutrack/transfers/stuck",
        params={"older_than_days": 0},
        headers=auth_headers(warehouse_manager()),
    )
    assert response.status_code == 200
    assert response.json()["older_than_days"] == 0
    # A shipment dispatched moments ago has waited zero whole days.
    assert response.json()["rows"] == []
