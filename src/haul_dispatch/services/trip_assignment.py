"""Trip Assignment - trips, their ordered loads, equipment, and expenses.

A load rides on at most one trip. Moving it detaches it from the old trip
first, in the same transaction, and sequence indices on every trip stay
dense (0..n-1) with `delivery_order = sequence_index + 1` on the load.
"""

import logging
import re
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.app.config import get_settings
from haul_dispatch.domain.enums import LoadEventType, TripLoadRole, TripStatus, VehicleType
from haul_dispatch.domain.errors import (
    CarrierAlreadyAssigned,
    DuplicateTripNumber,
    EquipmentMismatch,
    InvalidSequence,
    InvalidTransition,
    LoadAlreadyOnTrip,
    LoadNotOnTrip,
    TripClosed,
    Unauthorized,
)
from haul_dispatch.domain.events import TripChanged
from haul_dispatch.domain.models import Driver, Load, Trip, TripExpense, TripLoad
from haul_dispatch.services.authorization import (
    ActorContext,
    can_manage_load,
    is_assigned_carrier,
    require_owner,
)
from haul_dispatch.services.change_notifier import ChangeNotifier
from haul_dispatch.services.load_lifecycle import load_changed
from haul_dispatch.services.load_state_machine import (
    TRIP_CLOSED_STATES,
    validate_trip_transition,
)
from haul_dispatch.services.repository import LedgerRepository
from haul_dispatch.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

TRIP_FIELDS = {
    "reference_number",
    "share_driver_with_companies",
    "origin_city",
    "origin_state",
    "destination_city",
    "destination_state",
    "start_date",
    "end_date",
    "total_miles",
    "odometer_start",
    "odometer_end",
    "notes",
}

# Trips in these states can no longer be edited at all
TRIP_LOCKED_STATES = {TripStatus.SETTLED, TripStatus.CANCELLED}


def trip_changed(trip: Trip, actor: ActorContext, action: str) -> TripChanged:
    return TripChanged(
        entity_id=trip.id,
        company_id=actor.company_id,
        owner_id=trip.owner_id,
        action=action,
    )


def format_trip_number(prefix: str, number: int) -> str:
    return f"{prefix}-{number:04d}"


def parse_trip_number(prefix: str, trip_number: Optional[str]) -> Optional[int]:
    if not trip_number:
        return None
    match = re.fullmatch(rf"{re.escape(prefix)}-(\d+)", trip_number)
    return int(match.group(1)) if match else None


def clear_fulfilment(load: Load) -> None:
    """Drop everything a load inherited from its trip."""
    load.delivery_order = None
    load.assigned_driver_id = None
    load.assigned_driver_name = None
    load.assigned_driver_phone = None
    load.assigned_truck_id = None
    load.assigned_trailer_id = None


def apply_trip_to_load(load: Load, trip: Trip, driver: Optional[Driver]) -> None:
    """Copy the trip's driver and equipment onto a load riding on it."""
    load.assigned_driver_id = trip.driver_id
    if driver is not None and trip.share_driver_with_companies:
        load.assigned_driver_name = driver.full_name
        load.assigned_driver_phone = driver.phone
    else:
        load.assigned_driver_name = None
        load.assigned_driver_phone = None
    load.assigned_truck_id = trip.truck_id
    load.assigned_trailer_id = trip.trailer_id


def snapshot_driver_pay(trip: Trip, driver: Optional[Driver]) -> None:
    """Freeze the driver's current pay terms onto the trip."""
    trip.driver_id = driver.id if driver else None
    trip.pay_mode = driver.pay_mode if driver else None
    trip.rate_per_mile = driver.rate_per_mile if driver else None
    trip.rate_per_cuft = driver.rate_per_cuft if driver else None
    trip.percent_of_revenue = driver.percent_of_revenue if driver else None
    trip.flat_daily_rate = driver.flat_daily_rate if driver else None


async def renumber_trip_loads(repo: LedgerRepository, trip_id: str) -> None:
    """Rewrite sequence indices on a trip as 0..n-1 in their current order."""
    for index, row in enumerate(await repo.trip_loads(trip_id)):
        if row.sequence_index != index:
            row.sequence_index = index
        load = await repo.get_load(row.load_id)
        load.delivery_order = index + 1


async def detach_load(
    repo: LedgerRepository,
    trip_load: TripLoad,
    load: Load,
    actor: Optional[ActorContext],
) -> str:
    """Remove a load from its trip, clear what it inherited, close the gap.

    Returns the id of the trip the load left.
    """
    trip_id = trip_load.trip_id
    await repo.uow.run(repo.db.delete(trip_load))
    await repo.uow.run(repo.db.flush())
    clear_fulfilment(load)
    await renumber_trip_loads(repo, trip_id)
    repo.add_load_event(
        load, LoadEventType.REMOVED_FROM_TRIP, actor, data={"trip_id": trip_id}
    )
    return trip_id


class TripAssignmentService:
    """Trip creation and load sequencing."""

    def __init__(self, notifier: Optional[ChangeNotifier] = None):
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _owned_trip(
        self, repo: LedgerRepository, actor: ActorContext, trip_id: str
    ) -> Trip:
        trip = await repo.get_trip(trip_id, fresh=True)
        require_owner(actor, trip, "Trip")
        return trip

    async def _resolve_equipment(
        self,
        repo: LedgerRepository,
        actor: ActorContext,
        truck_id: Optional[str],
        trailer_id: Optional[str],
    ) -> tuple[Optional[str], Optional[str]]:
        """Apply the tractor/trailer rule and return the (truck, trailer) to store."""
        if trailer_id:
            trailer = await repo.get_trailer(trailer_id)
            require_owner(actor, trailer, "Trailer")
        if not truck_id:
            return None, trailer_id

        truck = await repo.get_truck(truck_id)
        require_owner(actor, truck, "Truck")
        if truck.vehicle_type == VehicleType.TRACTOR.value:
            if not trailer_id:
                raise EquipmentMismatch(f"Tractor {truck.unit_number} requires a trailer")
            return truck.id, trailer_id
        if trailer_id:
            logger.info(
                "Dropping trailer %s: %s %s does not pull a trailer",
                trailer_id, truck.vehicle_type, truck.unit_number,
            )
        return truck.id, None

    async def _resolve_driver(
        self, repo: LedgerRepository, actor: ActorContext, driver_id: Optional[str]
    ) -> Optional[Driver]:
        if not driver_id:
            return None
        driver = await repo.get_driver(driver_id)
        require_owner(actor, driver, "Driver")
        return driver

    async def _sync_loads(self, repo: LedgerRepository, trip: Trip) -> list[Load]:
        driver = await repo.get_driver(trip.driver_id) if trip.driver_id else None
        loads = await repo.loads_on_trip(trip.id)
        for load in loads:
            apply_trip_to_load(load, trip, driver)
        return loads

    async def _next_trip_number(self, uow: UnitOfWork, db: AsyncSession, owner_id: str) -> str:
        prefix = get_settings().trip_number_prefix
        result = await uow.run(
            db.execute(
                select(Trip.trip_number).where(
                    Trip.owner_id == owner_id,
                    Trip.trip_number.like(f"{prefix}-%"),
                )
            )
        )
        numbers = [parse_trip_number(prefix, n) for n in result.scalars().all()]
        highest = max((n for n in numbers if n is not None), default=0)
        return format_trip_number(prefix, highest + 1)

    # ------------------------------------------------------------------
    # Trips
    # ------------------------------------------------------------------

    async def create_trip(self, db: AsyncSession, actor: ActorContext, data: dict) -> Trip:
        """Create a planned trip.

        Without an explicit trip number the next `TRP-%04d` for the owner is
        allocated. Two concurrent creations can pick the same number; the
        loser hits the unique constraint, rolls back, and tries again.
        """
        explicit = data.get("trip_number")
        attempts = 1 if explicit else max(1, get_settings().trip_number_attempts)

        for attempt in range(1, attempts + 1):
            try:
                return await self._create_trip_once(db, actor, data, explicit)
            except IntegrityError as e:
                if explicit:
                    raise DuplicateTripNumber(
                        f"Trip number {explicit} already exists for owner {actor.owner_id}"
                    ) from e
                logger.warning(
                    "Trip number collision for owner %s (attempt %d/%d)",
                    actor.owner_id, attempt, attempts,
                )

        raise DuplicateTripNumber(
            f"Could not allocate a trip number for owner {actor.owner_id} after {attempts} attempts"
        )

    async def _create_trip_once(
        self,
        db: AsyncSession,
        actor: ActorContext,
        data: dict,
        explicit: Optional[str],
    ) -> Trip:
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)

            if explicit:
                taken = await uow.run(
                    db.execute(
                        select(Trip.id).where(
                            Trip.owner_id == actor.owner_id, Trip.trip_number == explicit
                        )
                    )
                )
                if taken.first() is not None:
                    raise DuplicateTripNumber(
                        f"Trip number {explicit} already exists for owner {actor.owner_id}"
                    )
                trip_number = explicit
            else:
                trip_number = await self._next_trip_number(uow, db, actor.owner_id)

            truck_id, trailer_id = await self._resolve_equipment(
                repo, actor, data.get("truck_id"), data.get("trailer_id")
            )
            driver = await self._resolve_driver(repo, actor, data.get("driver_id"))

            trip = Trip(
                id=str(uuid.uuid4()),
                owner_id=actor.owner_id,
                trip_number=trip_number,
                status=TripStatus.PLANNED.value,
                truck_id=truck_id,
                trailer_id=trailer_id,
                **{k: v for k, v in data.items() if k in TRIP_FIELDS and v is not None},
            )
            snapshot_driver_pay(trip, driver)
            db.add(trip)
            await uow.run(db.flush())
            uow.record(trip_changed(trip, actor, "created"))

        logger.info("Trip %s created for owner %s", trip.trip_number, actor.owner_id)
        return trip

    async def update_trip(
        self, db: AsyncSession, actor: ActorContext, trip_id: str, data: dict
    ) -> Trip:
        """Change trip details. Driver and equipment changes flow down to its loads."""
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            trip = await self._owned_trip(repo, actor, trip_id)
            if TripStatus(trip.status) in TRIP_LOCKED_STATES:
                raise TripClosed(f"Trip {trip.trip_number} is {trip.status}")

            for key, value in data.items():
                if key in TRIP_FIELDS:
                    setattr(trip, key, value)

            equipment_changed = "truck_id" in data or "trailer_id" in data
            if equipment_changed:
                trip.truck_id, trip.trailer_id = await self._resolve_equipment(
                    repo,
                    actor,
                    data.get("truck_id", trip.truck_id),
                    data.get("trailer_id", trip.trailer_id),
                )

            driver_changed = "driver_id" in data and data["driver_id"] != trip.driver_id
            if driver_changed:
                driver = await self._resolve_driver(repo, actor, data["driver_id"])
                snapshot_driver_pay(trip, driver)

            if equipment_changed or driver_changed or "share_driver_with_companies" in data:
                for load in await self._sync_loads(repo, trip):
                    uow.record(load_changed(load, "fulfilment_changed"))

            uow.record(trip_changed(trip, actor, "updated"))

        return trip

    async def update_trip_status(
        self, db: AsyncSession, actor: ActorContext, trip_id: str, status: str
    ) -> Trip:
        """Move a trip along planned -> active -> en_route -> completed.

        Settling goes through the settlement service. Cancelling a trip
        releases its loads.
        """
        target = TripStatus(getattr(status, "value", status))

        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            trip = await self._owned_trip(repo, actor, trip_id)

            if target == TripStatus.SETTLED:
                raise InvalidTransition(
                    trip.status, target.value, "Trips are settled through settlement"
                )
            validate_trip_transition(trip.status, target)

            if target == TripStatus.CANCELLED:
                for row in await repo.trip_loads(trip.id):
                    load = await repo.get_load(row.load_id)
                    await detach_load(repo, row, load, actor)
                    uow.record(load_changed(load, "removed_from_trip"))

            from_status = trip.status
            trip.status = target.value
            uow.record(trip_changed(trip, actor, "status_changed"))

        logger.info("Trip %s: %s -> %s", trip.trip_number, from_status, target.value)
        return trip

    # ------------------------------------------------------------------
    # Loads on trips
    # ------------------------------------------------------------------

    async def assign_load_to_trip(
        self,
        db: AsyncSession,
        actor: ActorContext,
        load_id: str,
        trip_id: str,
        role: str = TripLoadRole.PRIMARY.value,
    ) -> TripLoad:
        """Append a load to a trip, moving it off any other trip first."""
        role = TripLoadRole(getattr(role, "value", role))

        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            load = await repo.get_load(load_id, fresh=True)
            trip = await self._owned_trip(repo, actor, trip_id)

            carrier = is_assigned_carrier(actor.company_id, load)
            if not carrier and not can_manage_load(actor.company_id, load):
                raise Unauthorized(f"Company {actor.company_id} cannot schedule load {load.id}")
            if load.assigned_carrier_id and not carrier:
                raise CarrierAlreadyAssigned(
                    f"Load {load.id} is being hauled by carrier {load.assigned_carrier_id}"
                )
            if TripStatus(trip.status) in TRIP_CLOSED_STATES:
                raise TripClosed(f"Trip {trip.trip_number} is {trip.status}")

            existing = await repo.trip_load_for_load(load.id)
            if existing is not None:
                if existing.trip_id == trip.id:
                    raise LoadAlreadyOnTrip(
                        f"Load {load.id} is already on trip {trip.trip_number}"
                    )
                old_trip = await repo.get_trip(existing.trip_id)
                if TripStatus(old_trip.status) in TRIP_CLOSED_STATES:
                    raise TripClosed(
                        f"Load {load.id} is on {old_trip.status} trip {old_trip.trip_number}"
                    )
                await detach_load(repo, existing, load, actor)
                uow.record(trip_changed(old_trip, actor, "load_removed"))

            sequence_index = await repo.count_trip_loads(trip.id)
            trip_load = TripLoad(
                id=str(uuid.uuid4()),
                owner_id=trip.owner_id,
                trip_id=trip.id,
                load_id=load.id,
                sequence_index=sequence_index,
                role=role.value,
            )
            db.add(trip_load)
            try:
                await uow.run(db.flush())
            except IntegrityError as e:
                # Another worker put the load on a trip after we looked
                raise LoadAlreadyOnTrip(f"Load {load.id} was scheduled concurrently") from e
            load.delivery_order = sequence_index + 1

            driver = await repo.get_driver(trip.driver_id) if trip.driver_id else None
            apply_trip_to_load(load, trip, driver)
            repo.add_load_event(
                load,
                LoadEventType.ADDED_TO_TRIP,
                actor,
                data={"trip_id": trip.id, "sequence_index": sequence_index},
            )
            uow.record(trip_changed(trip, actor, "load_added"))
            uow.record(load_changed(load, "added_to_trip"))

        logger.info(
            "Load %s added to trip %s at position %d", load.id, trip.trip_number, sequence_index
        )
        return trip_load

    async def remove_load_from_trip(
        self, db: AsyncSession, actor: ActorContext, load_id: str, trip_id: str
    ) -> Load:
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            trip = await self._owned_trip(repo, actor, trip_id)
            load = await repo.get_load(load_id, fresh=True)

            existing = await repo.trip_load_for_load(load.id)
            if existing is None or existing.trip_id != trip.id:
                raise LoadNotOnTrip(f"Load {load.id} is not on trip {trip.trip_number}")
            if TripStatus(trip.status) in TRIP_CLOSED_STATES:
                raise TripClosed(f"Trip {trip.trip_number} is {trip.status}")

            await detach_load(repo, existing, load, actor)
            uow.record(trip_changed(trip, actor, "load_removed"))
            uow.record(load_changed(load, "removed_from_trip"))

        logger.info("Load %s removed from trip %s", load.id, trip.trip_number)
        return load

    async def reorder_trip_loads(
        self, db: AsyncSession, actor: ActorContext, trip_id: str, load_ids: list[str]
    ) -> list[TripLoad]:
        """Rewrite the delivery sequence. `load_ids` must list every load on the trip once."""
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            trip = await self._owned_trip(repo, actor, trip_id)
            rows = await repo.trip_loads(trip.id)

            by_load = {row.load_id: row for row in rows}
            if len(load_ids) != len(set(load_ids)) or set(load_ids) != set(by_load):
                raise InvalidSequence(
                    f"Reorder must list each of the {len(by_load)} loads on trip {trip.trip_number} once"
                )

            for index, load_id in enumerate(load_ids):
                by_load[load_id].sequence_index = index
                load = await repo.get_load(load_id)
                load.delivery_order = index + 1

            uow.record(trip_changed(trip, actor, "loads_reordered"))

        return sorted(rows, key=lambda r: r.sequence_index)

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    async def add_trip_expense(
        self, db: AsyncSession, actor: ActorContext, trip_id: str, data: dict
    ) -> TripExpense:
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            trip = await self._owned_trip(repo, actor, trip_id)
            if TripStatus(trip.status) in TRIP_LOCKED_STATES:
                raise TripClosed(f"Trip {trip.trip_number} is {trip.status}")

            expense = TripExpense(
                id=str(uuid.uuid4()),
                trip_id=trip.id,
                owner_id=trip.owner_id,
                category=getattr(data.get("category"), "value", data.get("category")) or "other",
                description=data.get("description"),
                amount=data["amount"],
                paid_by=getattr(data.get("paid_by"), "value", data.get("paid_by")),
                incurred_at=data.get("incurred_at"),
            )
            db.add(expense)
            trip.expenses_total = round((trip.expenses_total or 0) + expense.amount, 2)
            uow.record(trip_changed(trip, actor, "expense_added"))

        return expense

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_trip(self, db: AsyncSession, actor: ActorContext, trip_id: str) -> Trip:
        async with UnitOfWork(db, self.notifier) as uow:
            trip = await LedgerRepository(db, uow).get_trip(trip_id)
        require_owner(actor, trip, "Trip")
        return trip

    async def list_trips(
        self, db: AsyncSession, actor: ActorContext, status: Optional[str] = None
    ) -> list[Trip]:
        query = select(Trip).where(Trip.owner_id == actor.owner_id)
        if status:
            query = query.where(Trip.status == status)
        query = query.order_by(Trip.created_at.desc())
        async with UnitOfWork(db, self.notifier) as uow:
            result = await uow.run(db.execute(query))
            return list(result.scalars().all())

    async def list_trip_loads(
        self, db: AsyncSession, actor: ActorContext, trip_id: str
    ) -> list[tuple[TripLoad, Load]]:
        """(row, load) pairs in delivery order."""
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            trip = await repo.get_trip(trip_id)
            require_owner(actor, trip, "Trip")
            rows = await repo.trip_loads(trip.id)
            return [(row, await repo.get_load(row.load_id)) for row in rows]

    async def list_trip_expenses(
        self, db: AsyncSession, actor: ActorContext, trip_id: str
    ) -> list[TripExpense]:
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            trip = await repo.get_trip(trip_id)
            require_owner(actor, trip, "Trip")
            return await repo.trip_expenses(trip.id)
