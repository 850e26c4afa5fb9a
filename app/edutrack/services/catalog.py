import uuid

from app.edutrack.core.error_catalog import NotFoundError, ValidationError
from app.edutrack.db.models import Item
from app.edutrack.repos.items import ItemRepository


class ItemCatalogService:
    """Read-only lookups against the external item catalog."""

    def __init__(self, db):
        self.repo = ItemRepository(db)

    def resolve(self, item_ids) -> dict[str, Item]:
        parsed: dict[str, uuid.UUID] = {}
        for item_id in item_ids:
            try:
                parsed[str(item_id)] = uuid.UUID(str(item_id))
            except ValueError as exc:
                raise ValidationError("item_id must be a UUID", item_id=str(item_id)) from exc
        found = self.repo.get_many(list(set(parsed.values())))
        items: dict[str, Item] = {}
        for raw_id, item_uuid in parsed.items():
            item = found.get(str(item_uuid))
            if item is None or not item.is_active:
                raise NotFoundError("item", raw_id)
            items[raw_id] = item
        return items
