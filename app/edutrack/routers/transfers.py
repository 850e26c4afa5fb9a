from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.edutrack.core.context import Identity
from app.edutrack.core.deps import require_identity
from app.edutrack.core.error_catalog import ErrorCatalog, ValidationError
from app.edutrack.core.metrics import metrics
from app.edutrack.db.session import get_db
from app.edutrack.repos.transfers import TransferQueryFilters
from app.edutrack.schemas.errors import TRANSFER_ERROR_RESPONSES
from app.edutrack.schemas.transfers import (
    AmendTransferRequest,
    AuditTrailResponse,
    CreateTransferRequest,
    StuckTransferListResponse,
    TransferActionRequest,
    TransferListResponse,
    TransferResponse,
)
from app.edutrack.services.idempotency import IdempotencyService, extract_idempotency_key
from app.edutrack.services.transfers import TransferService


router = APIRouter(responses=TRANSFER_ERROR_RESPONSES)


def _service(request: Request, db) -> TransferService:
    return TransferService(db, trace_id=getattr(request.state, "trace_id", "") or None)


def _start_idempotency(request: Request, db, identity: Identity, payload: dict) -> JSONResponse | None:
    idempotency_key = extract_idempotency_key(request.headers)
    if idempotency_key is None:
        return None
    context, replay = IdempotencyService(db).start(
        actor_id=identity.user_id,
        endpoint=str(request.url.path),
        method=request.method,
        idempotency_key=idempotency_key,
        request_hash=IdempotencyService.fingerprint(payload),
    )
    if replay:
        metrics.increment_idempotency_replay()
        return JSONResponse(
            status_code=replay.status_code,
            content=replay.response_body,
            headers={"X-Idempotency-Result": ErrorCatalog.IDEMPOTENCY_REPLAY.code},
        )
    request.state.idempotency = context
    return None


def _finish_idempotency(request: Request, status_code: int, response: TransferResponse) -> None:
    context = getattr(request.state, "idempotency", None)
    if context is not None:
        context.record_success(status_code=status_code, response_body=response.model_dump(mode="json"))


@router.post("/edutrack/transfers", response_model=TransferResponse, status_code=201)
def create_transfer(
    request: Request,
    payload: CreateTransferRequest,
    identity: Identity = Depends(require_identity),
    db=Depends(get_db),
):
    replay = _start_idempotency(request, db, identity, payload.model_dump(mode="json"))
    if replay:
        return replay
    response = _service(request, db).create(
        payload.kind,
        payload.origin_ref,
        payload.destination_ref,
        payload.line_items,
        identity,
        reference_number=payload.reference_number,
        expected_arrival_date=payload.expected_arrival_date,
        notes=payload.notes,
    )
    _finish_idempotency(request, 201, response)
    return response


@router.get("/edutrack/transfers", response_model=TransferListResponse)
def list_transfers(
    kind: str | None = None,
    status: str | None = None,
    origin_ref: str | None = None,
    destination_ref: str | None = None,
    org_ref: str | None = None,
    created_from: date | None = None,
    created_to: date | None = None,
    search: str | None = None,
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(require_identity),
    db=Depends(get_db),
):
    filters = TransferQueryFilters(
        kind=kind,
        status=status,
        origin_ref=origin_ref,
        destination_ref=destination_ref,
        org_ref=org_ref,
        created_from=created_from,
        created_to=created_to,
        search=search,
        limit=limit,
        offset=offset,
    )
    return TransferService(db).list_transfers(identity, filters)


@router.get("/edutrack/transfers/stuck", response_model=StuckTransferListResponse)
def list_stuck_transfers(
    older_than_days: int | None = Query(None, ge=0),
    identity: Identity = Depends(require_identity),
    db=Depends(get_db),
):
    return TransferService(db).list_stuck(identity, older_than_days=older_than_days)


@router.get("/edutrack/transfers/{transfer_id}", response_model=TransferResponse)
def get_transfer(
    transfer_id: str,
    identity: Identity = Depends(require_identity),
    db=Depends(get_db),
):
    return TransferService(db).get(transfer_id, identity)


@router.get("/edutrack/transfers/{transfer_id}/audit", response_model=AuditTrailResponse)
def get_transfer_audit_trail(
    transfer_id: str,
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(require_identity),
    db=Depends(get_db),
):
    return TransferService(db).list_audit_trail(transfer_id, identity, limit=limit, offset=offset)


@router.patch("/edutrack/transfers/{transfer_id}", response_model=TransferResponse)
def amend_transfer(
    transfer_id: str,
    request: Request,
    payload: AmendTransferRequest,
    identity: Identity = Depends(require_identity),
    db=Depends(get_db),
):
    replay = _start_idempotency(request, db, identity, payload.model_dump(mode="json"))
    if replay:
        return replay
    response = _service(request, db).amend(
        transfer_id,
        identity,
        line_items=payload.line_items,
        expected_arrival_date=payload.expected_arrival_date,
        notes=payload.notes,
    )
    _finish_idempotency(request, 200, response)
    return response


@router.post("/edutrack/transfers/{transfer_id}/actions", response_model=TransferResponse)
def transfer_actions(
    transfer_id: str,
    request: Request,
    payload: TransferActionRequest,
    identity: Identity = Depends(require_identity),
    db=Depends(get_db),
):
    replay = _start_idempotency(request, db, identity, payload.model_dump(mode="json", by_alias=True))
    if replay:
        return replay
    service = _service(request, db)
    action = payload.action
    if action == "dispatch":
        response = service.dispatch(transfer_id, payload.dispatch, identity)
    elif action == "mark_in_transit":
        response = service.mark_in_transit(transfer_id, identity)
    elif action == "mark_delivered":
        response = service.mark_delivered(transfer_id, identity)
    elif action == "receive":
        receive = payload.receive
        if receive is None:
            raise ValidationError("receive payload is required", action=action)
        response = service.receive(
            transfer_id,
            receive.actual_arrival_date,
            receive.line_items,
            receive.notes,
            identity,
            discrepancy_notes=receive.discrepancy_notes,
            evidence=receive.evidence,
        )
    elif action == "validate":
        validate = payload.validate_
        if validate is None:
            raise ValidationError("validate payload is required", action=action)
        response = service.validate(
            transfer_id,
            validate.decision,
            validate.discrepancy_notes,
            identity,
            line_item_results=validate.line_items,
            evidence=validate.evidence,
        )
    else:
        reason = payload.cancel.reason if payload.cancel else None
        response = service.cancel(transfer_id, identity, reason=reason)
    _finish_idempotency(request, 200, response)
    return response
