import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from collections.abc import Generator  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from restaurant_pos import crud  # noqa: E402
from restaurant_pos.db import Base, enable_sqlite_foreign_keys, get_db  # noqa: E402
from restaurant_pos.main import app  # noqa: E402
from restaurant_pos.models import Product  # noqa: E402
from restaurant_pos.seed import seed_defaults  # noqa: E402


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(bind=db_engine, autoflush=False, autocommit=False)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded_db(db_session: Session) -> Session:
    seed_defaults(db_session)
    return db_session


@pytest.fixture
def burger(seeded_db: Session) -> Product:
    main_course = next(c for c in crud.list_categories(seeded_db) if c.name == "Main Course")
    product = crud.create_product(
        seeded_db,
        name="Classic Burger",
        price=Decimal("10.00"),
        cost_price=Decimal("4.00"),
        category_id=main_course.id,
        sku="MAIN-BURGER",
    )
    seeded_db.commit()
    return product


@pytest.fixture
def client(seeded_db: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        yield seeded_db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
