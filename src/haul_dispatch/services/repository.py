"""Typed access to the ledger store.

Each getter returns a single model instance or raises EntityNotFound, so
services never deal with missing rows or join-shaped results. The
`fresh=True` variants re-read the row inside the current transaction
(and lock it where the backend supports row locks) for check-and-set
decisions.
"""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.domain.errors import EntityNotFound
from haul_dispatch.domain.models import (
    Company,
    Driver,
    Load,
    LoadEvent,
    LoadRequest,
    Trailer,
    Trip,
    TripExpense,
    TripLoad,
    Truck,
)
from haul_dispatch.services.unit_of_work import UnitOfWork


class LedgerRepository:
    """Row lookups and audit writes used by the engine services."""

    def __init__(self, db: AsyncSession, uow: UnitOfWork):
        self.db = db
        self.uow = uow

    async def _one(self, model, entity_id: str, label: str, fresh: bool = False):
        query = select(model).where(model.id == entity_id)
        if fresh:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.uow.run(self.db.execute(query))
        row = result.scalar_one_or_none()
        if row is None:
            raise EntityNotFound(label, entity_id)
        return row

    async def get_load(self, load_id: str, fresh: bool = False) -> Load:
        return await self._one(Load, load_id, "Load", fresh)

    async def get_request(self, request_id: str, fresh: bool = False) -> LoadRequest:
        return await self._one(LoadRequest, request_id, "LoadRequest", fresh)

    async def get_trip(self, trip_id: str, fresh: bool = False) -> Trip:
        return await self._one(Trip, trip_id, "Trip", fresh)

    async def get_company(self, company_id: str) -> Company:
        return await self._one(Company, company_id, "Company")

    async def get_driver(self, driver_id: str) -> Driver:
        return await self._one(Driver, driver_id, "Driver")

    async def get_truck(self, truck_id: str) -> Truck:
        return await self._one(Truck, truck_id, "Truck")

    async def get_trailer(self, trailer_id: str) -> Trailer:
        return await self._one(Trailer, trailer_id, "Trailer")

    async def find_company(self, company_id: str | None) -> Company | None:
        if not company_id:
            return None
        return await self.uow.run(self.db.get(Company, company_id))

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def requests_for_load(self, load_id: str, status: str | None = None) -> list[LoadRequest]:
        query = select(LoadRequest).where(LoadRequest.load_id == load_id)
        if status is not None:
            query = query.where(LoadRequest.status == status)
        query = query.order_by(LoadRequest.created_at.asc()).execution_options(
            populate_existing=True
        )
        result = await self.uow.run(self.db.execute(query))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Trip loads
    # ------------------------------------------------------------------

    async def trip_loads(self, trip_id: str) -> list[TripLoad]:
        """Rows on a trip ordered by sequence index."""
        result = await self.uow.run(
            self.db.execute(
                select(TripLoad)
                .where(TripLoad.trip_id == trip_id)
                .order_by(TripLoad.sequence_index.asc())
                .execution_options(populate_existing=True)
            )
        )
        return list(result.scalars().all())

    async def count_trip_loads(self, trip_id: str) -> int:
        result = await self.uow.run(
            self.db.execute(
                select(func.count(TripLoad.id)).where(TripLoad.trip_id == trip_id)
            )
        )
        return int(result.scalar_one())

    async def trip_load_for_load(self, load_id: str) -> TripLoad | None:
        result = await self.uow.run(
            self.db.execute(
                select(TripLoad)
                .where(TripLoad.load_id == load_id)
                .execution_options(populate_existing=True)
            )
        )
        return result.scalar_one_or_none()

    async def loads_on_trip(self, trip_id: str) -> list[Load]:
        result = await self.uow.run(
            self.db.execute(
                select(Load)
                .join(TripLoad, TripLoad.load_id == Load.id)
                .where(TripLoad.trip_id == trip_id)
                .order_by(TripLoad.sequence_index.asc())
            )
        )
        return list(result.scalars().all())

    async def trip_expenses(self, trip_id: str) -> list[TripExpense]:
        result = await self.uow.run(
            self.db.execute(
                select(TripExpense)
                .where(TripExpense.trip_id == trip_id)
                .order_by(TripExpense.created_at.asc())
            )
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def add_load_event(
        self,
        load: Load,
        event_type,
        actor=None,
        from_status: str | None = None,
        to_status: str | None = None,
        data: dict | None = None,
    ) -> LoadEvent:
        event = LoadEvent(
            id=str(uuid.uuid4()),
            load_id=load.id,
            event_type=getattr(event_type, "value", event_type),
            actor_company_id=getattr(actor, "company_id", None),
            actor_owner_id=getattr(actor, "owner_id", None),
            from_status=from_status,
            to_status=to_status,
            data=data,
        )
        self.db.add(event)
        return event
