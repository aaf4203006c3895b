from sqlalchemy import create_engine, func, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError

from restaurant_pos.config import settings
from restaurant_pos.models import Category, DiningTable


def main() -> None:
    database_url = settings.sqlalchemy_url
    print(f"DATABASE_URL={make_url(database_url).render_as_string(hide_password=True)}")
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            print("DB connection OK")
            try:
                categories = conn.scalar(select(func.count()).select_from(Category))
                tables = conn.scalar(select(func.count()).select_from(DiningTable))
                print(f"categories={categories} tables={tables}")
            except SQLAlchemyError:
                print("Schema not initialized yet (start the app once)")
    except SQLAlchemyError as exc:
        print("DB connection FAILED")
        print(exc)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
