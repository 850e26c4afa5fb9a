import json
import logging
from types import SimpleNamespace

from starlette.requests import Request
from starlette.responses import Response

from app.edutrack.core.db_timing import db_timer, get_db_time_ms
from app.edutrack.middleware.observability import build_request_log_payload
from tests.transfer_helpers import auth_headers, create_direct_shipment, warehouse_manager


def test_build_request_log_payload():
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/edutrack/transfers/abc/actions",
        "headers": [],
        "route": SimpleNamespace(path="/edutrack/transfers/{transfer_id}/actions"),
    }
    request = Request(scope)
    request.state.trace_id = "trace-1"
    request.state.user_id = "user-1"
    request.state.role = "warehouse_manager"
    request.state.error_code = "INVALID_TRANSITION"
    response = Response(status_code=409)

    payload = build_request_log_payload(
        request=request,
        response=response,
        latency_ms=12.3456,
        db_time_ms=4.5678,
    )

    assert payload["trace_id"] == "trace-1"
    assert payload["user_id"] == "user-1"
    assert payload["role"] == "warehouse_manager"
    assert payload["route"] == "/edutrack/transfers/{transfer_id}/actions"
    assert payload["method"] == "POST"
    assert payload["status_code"] == 409
    assert payload["error_code"] == "INVALID_TRANSITION"
    assert payload["latency_ms"] == 12.35
    assert payload["db_time_ms"] == 4.57


def test_db_timer_scopes_accumulation():
    assert get_db_time_ms() is None
    with db_timer() as timer:
        assert get_db_time_ms() == 0.0
        assert timer.elapsed_ms == 0.0
    assert get_db_time_ms() is None


def test_request_log_line_carries_identity(client, caplog):
    with caplog.at_level(logging.INFO, logger="edutrack.request"):
        response = client.get(
            "/edutrack/transfers",
            headers=auth_headers(warehouse_manager(), **{"X-Trace-ID": "trace-log"}),
        )
    assert response.status_code == 200

    payloads = [json.loads(record.getMessage()) for record in caplog.records if record.name == "edutrack.request"]
    entry = next(payload for payload in payloads if payload["trace_id"] == "trace-log")
    assert entry["user_id"] == "wm-1"
    assert entry["role"] == "warehouse_manager"
    assert entry["route"] == "/edutrack/transfers"
    assert entry["status_code"] == 200
    assert entry["db_time_ms"] is not None


def test_transition_log_line(db_session, catalog_items, caplog):
    with caplog.at_level(logging.INFO, logger="app.edutrack.services.transfers"):
        dispatched = create_direct_shipment(db_session, catalog_items["MATH-G1"], 5)

    events = [json.loads(record.getMessage()) for record in caplog.records if record.name == "app.edutrack.services.transfers"]
    transitions = [event for event in events if event["event"] == "transfer_transition"]
    assert [event["to_status"] for event in transitions] == ["PENDING", "DISPATCHED"]
    assert all(event["transfer_id"] == dispatched.transfer.id for event in transitions)
