"""Test configuration to ensure project package import resolution.

Adds the repository root to sys.path so `import barbershop` works in CI where
the checkout directory may not be on PYTHONPATH by default. Database tests
run against a throwaway SQLite file through the aiosqlite driver.
"""

from __future__ import annotations

import asyncio
import sys
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest


ROOT = Path(__file__).resolve().parents[3]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from barbershop.app.core import db  # noqa: E402
from barbershop.app.domain.models import Barber, Client, Service  # noqa: E402


@pytest.fixture
def db_url(tmp_path, monkeypatch) -> str:
    url = f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    db._reset_engine_for_tests()
    yield url
    db._reset_engine_for_tests()


@pytest.fixture
def run_db(db_url):
    """Run an async scenario on a fresh schema inside one event loop."""

    def _run(scenario):
        async def _main():
            await db.init_db(force=True)
            try:
                return await scenario()
            finally:
                await db.get_engine().dispose()

        return asyncio.run(_main())

    return _run


@pytest.fixture
def seed():
    """Async helper inserting a small directory of clients, barbers and services."""

    async def _seed() -> SimpleNamespace:
        async with db.get_session() as session:
            ana = Client(name="Ana Souza", phone="11999990000")
            bruno = Client(name="Bruno Lima")
            carlos = Barber(
                name="Carlos",
                commission_rate_service=Decimal("40.00"),
                commission_rate_chemical_service=Decimal("30.00"),
            )
            diego = Barber(
                name="Diego",
                is_special_barber=True,
                commission_rate_service=Decimal("50.00"),
                commission_rate_chemical_service=Decimal("35.00"),
            )
            cut = Service(name="Corte", price_cents=4500, duration_minutes=30, duration_special_minutes=45)
            beard = Service(name="Barba", price_cents=3000, duration_minutes=30)
            dye = Service(name="Coloracao", price_cents=12000, duration_minutes=90, is_chemical=True)
            combo = Service(name="Corte + Lavagem", price_cents=6000, duration_minutes=60)
            session.add_all([ana, bruno, carlos, diego, cut, beard, dye, combo])
            await session.commit()
            return SimpleNamespace(
                ana=ana.id,
                bruno=bruno.id,
                carlos=carlos.id,
                diego=diego.id,
                cut=cut.id,
                beard=beard.id,
                dye=dye.id,
                combo=combo.id,
            )

    return _seed
