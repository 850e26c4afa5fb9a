from pydantic import BaseModel


class ApiErrorResponse(BaseModel):
    code: str
    message: str
    details: dict | None = None
    trace_id: str | None = None


class TransferErrorDetails(BaseModel):
    """Context attached to every transfer rejection."""

    transfer_id: str | None = None
    current_status: str | None = None
    kind: str | None = None
    event: str | None = None
    line_item_ids: list[str] | None = None
    message: str | None = None

    model_config = {"extra": "allow"}


class TransferErrorResponse(ApiErrorResponse):
    details: TransferErrorDetails | None = None


TRANSFER_ERROR_RESPONSES = {
    403: {"model": TransferErrorResponse, "description": "AUTHORIZATION_DENIED"},
    404: {"model": TransferErrorResponse, "description": "NOT_FOUND"},
    409: {
        "model": TransferErrorResponse,
        "description": "INVALID_TRANSITION, CONCURRENCY_CONFLICT or an idempotency conflict",
    },
    422: {
        "model": TransferErrorResponse,
        "description": "VALIDATION_ERROR or DISCREPANCY_REQUIRES_NOTES",
    },
}
