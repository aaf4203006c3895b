from sqlalchemy import func, select

from restaurant_pos import crud
from restaurant_pos.models import Category, DiningTable
from restaurant_pos.seed import init_db, seed_defaults


def _count(db, model) -> int:
    return db.scalar(select(func.count()).select_from(model))


def test_init_db_twice_does_not_duplicate_seed_data(db_engine, db_session) -> None:
    init_db(db_engine)
    init_db(db_engine)

    assert _count(db_session, Category) == 5
    assert _count(db_session, DiningTable) == 12


def test_default_table_layout(seeded_db) -> None:
    tables = {table.number: table for table in crud.list_tables(seeded_db)}

    assert sorted(tables) == list(range(1, 13))
    assert {(t.section, t.capacity) for n, t in tables.items() if n <= 4} == {("Main Hall", 2)}
    assert {(t.section, t.capacity) for n, t in tables.items() if 5 <= n <= 8} == {("VIP", 4)}
    assert {(t.section, t.capacity) for n, t in tables.items() if n >= 9} == {("Outdoor", 6)}
    assert all(t.status == "available" for t in tables.values())
    assert tables[3].name == "Table 3"


def test_seed_skips_groups_that_already_have_rows(db_session) -> None:
    crud.create_category(db_session, "House Specials", "#111111")
    db_session.commit()

    inserted = seed_defaults(db_session)

    assert inserted == {"categories": 0, "tables": 12}
    assert [c.name for c in crud.list_categories(db_session)] == ["House Specials"]
