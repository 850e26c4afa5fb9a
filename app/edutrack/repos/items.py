from sqlalchemy import select

from app.edutrack.db.models import Item


class ItemRepository:
    def __init__(self, db):
        self.db = db

    def get_many(self, item_ids: list[str]) -> dict[str, Item]:
        if not item_ids:
            return {}
        rows = self.db.execute(select(Item).where(Item.id.in_(item_ids))).scalars().all()
        return {str(row.id): row for row in rows}
