from types import SimpleNamespace

from barbershop.app.core import db


def test_get_engine_uses_env_and_sets_factory(monkeypatch):
    db._reset_engine_for_tests()

    stub_engine = SimpleNamespace(sync_engine="sync")

    def fake_make_engine(url: str):
        assert url == "fake-url"
        return stub_engine

    def fake_async_sessionmaker(engine, expire_on_commit=False):
        assert engine is stub_engine
        assert expire_on_commit is False
        return "factory"

    monkeypatch.setenv("DATABASE_URL", "fake-url")
    monkeypatch.setattr(db, "_make_engine", fake_make_engine)
    monkeypatch.setattr(db, "async_sessionmaker", fake_async_sessionmaker)

    engine = db.get_engine()
    assert engine is stub_engine
    assert db.get_session_factory() == "factory"

    db._reset_engine_for_tests()


def test_database_url_default(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert db.get_database_url().startswith("postgresql+asyncpg://")


def test_reset_engine_clears_state():
    db._engine = "e"
    db._session_factory = "sf"
    db._SCHEMA_READY = True
    db._SCHEMA_CHECKING = True

    db._reset_engine_for_tests()

    assert db._engine is None
    assert db._session_factory is None
    assert db._SCHEMA_READY is False
    assert db._SCHEMA_CHECKING is False


def test_get_session_creates_missing_schema(run_db):
    from sqlalchemy import text

    async def scenario():
        # Drop everything so the first session has to recreate the schema
        async with db.get_engine().begin() as conn:
            await conn.run_sync(db.Base.metadata.drop_all)
        db._SCHEMA_READY = False
        async with db.get_session() as session:
            return (await session.execute(text("SELECT COUNT(*) FROM appointments"))).scalar_one()

    assert run_db(scenario) == 0
    assert db._SCHEMA_READY is True


def test_bootstrap_respects_flag(db_url, monkeypatch):
    import asyncio

    from sqlalchemy import inspect

    from barbershop.app import run_api

    monkeypatch.setattr(run_api, "RUN_BOOTSTRAP_ENABLED", False)
    assert asyncio.run(run_api.maybe_bootstrap()) is False

    monkeypatch.setattr(run_api, "RUN_BOOTSTRAP_ENABLED", True)
    assert asyncio.run(run_api.maybe_bootstrap()) is True

    async def tables():
        try:
            async with db.get_engine().connect() as conn:
                return await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
        finally:
            await db.get_engine().dispose()

    assert {"appointments", "schedule_blocks", "appointment_services"} <= asyncio.run(tables())


def test_sqlite_engine_enforces_foreign_keys(run_db):
    from datetime import datetime

    import pytest
    from sqlalchemy.exc import IntegrityError

    from barbershop.app.domain.models import Appointment

    async def scenario():
        async with db.get_session() as session:
            session.add(
                Appointment(
                    client_id=1,
                    barber_id=9999,
                    appointment_datetime=datetime(2026, 6, 1, 10, 0),
                    duration_minutes=30,
                )
            )
            with pytest.raises(IntegrityError):
                await session.commit()

    run_db(scenario)
