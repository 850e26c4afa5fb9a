from dataclasses import dataclass
from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    INVALID_TOKEN = ErrorDefinition("INVALID_TOKEN", "Invalid token", status.HTTP_401_UNAUTHORIZED)
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INVALID_TRANSITION = ErrorDefinition(
        "INVALID_TRANSITION",
        "Transition not allowed from current status",
        status.HTTP_409_CONFLICT,
    )
    AUTHORIZATION_DENIED = ErrorDefinition(
        "AUTHORIZATION_DENIED",
        "Role or organizational scope does not permit this action",
        status.HTTP_403_FORBIDDEN,
    )
    NOT_FOUND = ErrorDefinition(
        "NOT_FOUND",
        "Resource not found",
        status.HTTP_404_NOT_FOUND,
    )
    DISCREPANCY_REQUIRES_NOTES = ErrorDefinition(
        "DISCREPANCY_REQUIRES_NOTES",
        "Discrepancy notes are required when quantities disagree",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    CONCURRENCY_CONFLICT = ErrorDefinition(
        "CONCURRENCY_CONFLICT",
        "Transfer was modified concurrently; reload and retry",
        status.HTTP_409_CONFLICT,
    )
    DB_UNAVAILABLE = ErrorDefinition(
        "DB_UNAVAILABLE",
        "Database unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    LOCK_TIMEOUT = ErrorDefinition(
        "LOCK_TIMEOUT",
        "Lock wait timeout",
        status.HTTP_409_CONFLICT,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD = ErrorDefinition(
        "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD",
        "Idempotency key reused with different payload",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REQUEST_IN_PROGRESS = ErrorDefinition(
        "IDEMPOTENCY_REQUEST_IN_PROGRESS",
        "Idempotency request already in progress",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REPLAY = ErrorDefinition(
        "IDEMPOTENCY_REPLAY",
        "Idempotent replay",
        status.HTTP_200_OK,
    )


class AppError(Exception):
    default_error: ErrorDefinition | None = None

    def __init__(self, error: ErrorDefinition | None = None, details: object | None = None):
        self.error = error or self.default_error or ErrorCatalog.INTERNAL_ERROR
        self.details = details
        super().__init__(self.error.message)


class ValidationError(AppError):
    """Malformed input: negative quantity, missing field, unknown line item."""

    default_error = ErrorCatalog.VALIDATION_ERROR

    def __init__(self, message: str, **details):
        super().__init__(details={"message": message, **details})


class InvalidTransitionError(AppError):
    default_error = ErrorCatalog.INVALID_TRANSITION

    def __init__(self, *, kind: str, event: str, current_status: str | None, transfer_id: str | None = None):
        self.kind = kind
        self.event = event
        self.current_status = current_status
        super().__init__(
            details={
                "transfer_id": transfer_id,
                "kind": kind,
                "event": event,
                "current_status": current_status,
            }
        )


class AuthorizationError(AppError):
    default_error = ErrorCatalog.AUTHORIZATION_DENIED

    def __init__(self, message: str, **details):
        super().__init__(details={"message": message, **details})


class NotFoundError(AppError):
    default_error = ErrorCatalog.NOT_FOUND

    def __init__(self, resource: str, resource_id: object):
        super().__init__(details={"resource": resource, "id": str(resource_id)})


class DiscrepancyRequiresNotesError(AppError):
    default_error = ErrorCatalog.DISCREPANCY_REQUIRES_NOTES

    def __init__(self, *, transfer_id: str | None, current_status: str | None, line_item_ids: list[str]):
        super().__init__(
            details={
                "transfer_id": transfer_id,
                "current_status": current_status,
                "line_item_ids": line_item_ids,
            }
        )


class ConcurrencyConflictError(AppError):
    default_error = ErrorCatalog.CONCURRENCY_CONFLICT

    def __init__(self, *, transfer_id: str | None, expected_status: str | None = None):
        super().__init__(details={"transfer_id": transfer_id, "expected_status": expected_status})
