from sqlalchemy import select

from app.edutrack.db.models import Item


DEFAULT_ITEMS = [
    ("MATH-G1", "Mathematics Textbook Grade 1", "book"),
    ("ENG-G1", "English Reader Grade 1", "book"),
    ("SCI-G4", "Science Textbook Grade 4", "book"),
    ("EXB-A4", "Exercise Books A4 (pack of 10)", "pack"),
    ("CHALK-W", "White Chalk", "box"),
]


def _get_or_create_items(db) -> list[Item]:
    existing = {item.code: item for item in db.execute(select(Item)).scalars().all()}
    items = []
    for code, name, unit in DEFAULT_ITEMS:
        item = existing.get(code)
        if item is None:
            item = Item(code=code, name=name, unit_of_measure=unit, is_active=True)
            db.add(item)
        items.append(item)
    return items


def run_seed(db) -> list[Item]:
    items = _get_or_create_items(db)
    db.commit()
    return items


if __name__ == "__main__":
    from app.edutrack.db.session import SessionLocal

    with SessionLocal() as session:
        run_seed(session)
