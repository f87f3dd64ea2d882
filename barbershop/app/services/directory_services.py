"""Lookups into the client/barber/service directories.

The directories are maintained elsewhere (CRUD screens); the scheduling
engine only reads names, flags and commission rates from them. All helpers
take an open session so they can run inside the caller's transaction.
"""
from __future__ import annotations
from decimal import Decimal
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop.app.core.errors import NotFound
from barbershop.app.domain.models import Barber, Client, Service


class DirectoryRepo:
    @staticmethod
    async def get_client(session: AsyncSession, client_id: int) -> Client:
        client = await session.get(Client, int(client_id))
        if client is None:
            raise NotFound("client", client_id)
        return client

    @staticmethod
    async def get_barber(session: AsyncSession, barber_id: int) -> Barber:
        barber = await session.get(Barber, int(barber_id))
        if barber is None:
            raise NotFound("barber", barber_id)
        return barber

    @staticmethod
    async def get_services(session: AsyncSession, service_ids: Sequence[int]) -> list[Service]:
        """Load services in one query, preserving the requested order."""
        ids = [int(s) for s in service_ids]
        rows = (await session.execute(select(Service).where(Service.id.in_(ids)))).scalars().all()
        by_id = {svc.id: svc for svc in rows}
        missing = [sid for sid in ids if sid not in by_id]
        if missing:
            raise NotFound("service", missing[0])
        return [by_id[sid] for sid in ids]


def commission_rate_for(barber: Barber | None, service: Service) -> Decimal:
    """Commission percent for this barber/service combination.

    Chemical services use the barber's chemical rate.
    """
    if barber is None:
        return Decimal("0")
    if service.is_chemical:
        rate = barber.commission_rate_chemical_service
    else:
        rate = barber.commission_rate_service
    return Decimal(rate) if rate is not None else Decimal("0")


__all__ = ["DirectoryRepo", "commission_rate_for"]
