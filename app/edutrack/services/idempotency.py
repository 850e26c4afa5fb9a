import hashlib
import json
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from app.edutrack.core.error_catalog import AppError, ErrorCatalog
from app.edutrack.db.models import IdempotencyRecord
from app.edutrack.repos.idempotency import IdempotencyRepository


IDEMPOTENCY_HEADER = "Idempotency-Key"

STATE_IN_PROGRESS = "in_progress"
STATE_SUCCEEDED = "succeeded"
STATE_FAILED = "failed"


@dataclass(frozen=True)
class IdempotencyScope:
    actor_id: str
    endpoint: str
    method: str
    idempotency_key: str


@dataclass
class IdempotencyReplay:
    status_code: int
    response_body: dict


class IdempotencyContext:
    """Handle on an in-progress record; the request outcome is written back through it."""

    def __init__(self, record: IdempotencyRecord, repo: IdempotencyRepository):
        self._record = record
        self._repo = repo

    def _finish(self, state: str, status_code: int, response_body: dict) -> None:
        record = self._record
        record.state = state
        record.status_code = status_code
        record.response_body = json.dumps(response_body, default=str)
        record.updated_at = datetime.utcnow()
        self._repo.save(record)

    def record_success(self, *, status_code: int, response_body: dict) -> None:
        self._finish(STATE_SUCCEEDED, status_code, response_body)

    def record_failure(self, *, status_code: int, response_body: dict) -> None:
        self._finish(STATE_FAILED, status_code, response_body)


def _replay_of(record: IdempotencyRecord | None, request_hash: str) -> IdempotencyReplay:
    if record is None:
        raise AppError(ErrorCatalog.IDEMPOTENCY_REQUEST_IN_PROGRESS)
    if record.request_hash != request_hash:
        raise AppError(ErrorCatalog.IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD)
    if record.state == STATE_IN_PROGRESS or record.response_body is None or record.status_code is None:
        raise AppError(ErrorCatalog.IDEMPOTENCY_REQUEST_IN_PROGRESS)
    return IdempotencyReplay(status_code=record.status_code, response_body=json.loads(record.response_body))


class IdempotencyService:
    """Replays the stored response when an actor repeats a key with the same payload.

    Complements the state machine's no-op rule: a replayed call never reaches
    the transfer at all.
    """

    def __init__(self, db):
        self.repo = IdempotencyRepository(db)

    @staticmethod
    def fingerprint(payload: object) -> str:
        encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    def start(
        self,
        *,
        actor_id: str,
        endpoint: str,
        method: str,
        idempotency_key: str,
        request_hash: str,
    ) -> tuple[IdempotencyContext | None, IdempotencyReplay | None]:
        scope = asdict(IdempotencyScope(actor_id, endpoint, method, idempotency_key))
        existing = self.repo.get_by_key(**scope)
        if existing is not None:
            return None, _replay_of(existing, request_hash)

        try:
            record = self.repo.save(IdempotencyRecord(**scope, request_hash=request_hash, state=STATE_IN_PROGRESS))
        except IntegrityError:
            # Another request claimed the key between lookup and insert.
            self.repo.db.rollback()
            return None, _replay_of(self.repo.get_by_key(**scope), request_hash)
        return IdempotencyContext(record, self.repo), None


def extract_idempotency_key(headers) -> str | None:
    key = (headers.get(IDEMPOTENCY_HEADER) or "").strip()
    return key or None
