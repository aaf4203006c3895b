import logging

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from restaurant_pos.db import Base
from restaurant_pos.models import Category, DiningTable

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("Appetizers", "#ef4444", "Starters and appetizers"),
    ("Main Course", "#f59e0b", "Main dishes and entrees"),
    ("Drinks", "#3b82f6", "Beverages and drinks"),
    ("Desserts", "#ec4899", "Sweet treats and desserts"),
    ("Sides", "#10b981", "Side dishes and extras"),
]

DEFAULT_TABLE_COUNT = 12


def _table_layout(number: int) -> tuple[str, int]:
    if number <= 4:
        return "Main Hall", 2
    if number <= 8:
        return "VIP", 4
    return "Outdoor", 6


def _is_empty(db: Session, model) -> bool:
    return db.scalar(select(func.count()).select_from(model)) == 0


def seed_defaults(db: Session) -> dict:
    """Insert the default categories and dining tables into empty tables.

    Each group is seeded only when its table has no rows at all, so running
    this repeatedly never duplicates data and never re-adds rows an operator
    deleted on purpose while others remain.
    """
    inserted = {"categories": 0, "tables": 0}
    if _is_empty(db, Category):
        for name, color, description in DEFAULT_CATEGORIES:
            db.add(Category(name=name, color=color, description=description))
        inserted["categories"] = len(DEFAULT_CATEGORIES)
    if _is_empty(db, DiningTable):
        for number in range(1, DEFAULT_TABLE_COUNT + 1):
            section, capacity = _table_layout(number)
            db.add(DiningTable(number=number, name=f"Table {number}", capacity=capacity, section=section))
        inserted["tables"] = DEFAULT_TABLE_COUNT
    db.commit()
    return inserted


def init_db(engine: Engine) -> None:
    """Create the schema if needed and seed defaults. Errors are fatal."""
    try:
        Base.metadata.create_all(bind=engine)
        session_factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
        with session_factory() as db:
            inserted = seed_defaults(db)
    except SQLAlchemyError:
        logger.exception("Database initialization failed")
        raise
    logger.info(
        "Database ready (seeded %d categories, %d tables)",
        inserted["categories"],
        inserted["tables"],
    )
