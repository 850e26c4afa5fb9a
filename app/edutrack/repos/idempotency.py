from sqlalchemy import select

from app.edutrack.db.models import IdempotencyRecord


class IdempotencyRepository:
    """Persists replay records; each write commits on its own so a rolled back transfer keeps its record."""

    def __init__(self, db):
        self.db = db

    def get_by_key(self, *, actor_id: str, endpoint: str, method: str, idempotency_key: str) -> IdempotencyRecord | None:
        return self.db.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.actor_id == actor_id,
                IdempotencyRecord.endpoint == endpoint,
                IdempotencyRecord.method == method,
                IdempotencyRecord.idempotency_key == idempotency_key,
            )
        ).scalars().first()

    def save(self, record: IdempotencyRecord) -> IdempotencyRecord:
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record
