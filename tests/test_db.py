from restaurant_pos import db


def test_server_engine_reads_committed_rows(monkeypatch) -> None:
    captured = {}

    def fake_create_engine(url, **kwargs):
        captured.update(kwargs, url=url)
        return object()

    monkeypatch.setattr(db, "create_engine", fake_create_engine)
    db.build_engine("mysql+pymysql://root:@localhost:3306/restaurant_db")

    assert captured["isolation_level"] == "READ COMMITTED"
    assert captured["max_overflow"] == 0
    assert captured["pool_pre_ping"] is True


def test_sqlite_engine_enforces_foreign_keys() -> None:
    engine = db.build_engine("sqlite:///:memory:")
    with engine.connect() as conn:
        assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
    engine.dispose()
