"""Badge counts for the dispatch dashboard.

Read-side projection over loads, requests, and trips. Nothing here writes.
"""

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.domain.enums import LoadStatus, PostingStatus, RequestStatus, TripStatus
from haul_dispatch.domain.models import Load, LoadRequest, Trip
from haul_dispatch.services.authorization import ActorContext
from haul_dispatch.services.unit_of_work import UnitOfWork

ACTIVE_LOAD_STATUSES = [
    LoadStatus.ACCEPTED.value,
    LoadStatus.LOADING.value,
    LoadStatus.LOADED.value,
    LoadStatus.IN_TRANSIT.value,
]

OPEN_TRIP_STATUSES = [
    TripStatus.PLANNED.value,
    TripStatus.ACTIVE.value,
    TripStatus.EN_ROUTE.value,
]


async def _count(uow: UnitOfWork, db: AsyncSession, query) -> int:
    result = await uow.run(db.execute(query))
    return int(result.scalar_one())


async def get_badge_counts(db: AsyncSession, actor: ActorContext) -> dict:
    """Counts per dashboard tab for the acting company and user."""
    managed = or_(Load.company_id == actor.company_id, Load.posted_by_company_id == actor.company_id)

    async with UnitOfWork(db) as uow:
        posted = await _count(
            uow,
            db,
            select(func.count(Load.id)).where(
                managed,
                Load.posting_status == PostingStatus.POSTED.value,
                Load.is_marketplace_visible.is_(True),
            ),
        )
        incoming_requests = await _count(
            uow,
            db,
            select(func.count(LoadRequest.id))
            .join(Load, Load.id == LoadRequest.load_id)
            .where(managed, LoadRequest.status == RequestStatus.PENDING.value),
        )
        my_pending_requests = await _count(
            uow,
            db,
            select(func.count(LoadRequest.id)).where(
                LoadRequest.carrier_id == actor.company_id,
                LoadRequest.status == RequestStatus.PENDING.value,
            ),
        )
        assigned_to_me = await _count(
            uow,
            db,
            select(func.count(Load.id)).where(
                Load.assigned_carrier_id == actor.company_id,
                Load.load_status.in_(ACTIVE_LOAD_STATUSES),
            ),
        )
        unconfirmed = await _count(
            uow,
            db,
            select(func.count(Load.id)).where(
                Load.assigned_carrier_id == actor.company_id,
                Load.carrier_confirmed_at.is_(None),
                Load.load_status == LoadStatus.ACCEPTED.value,
            ),
        )
        open_trips = await _count(
            uow,
            db,
            select(func.count(Trip.id)).where(
                Trip.owner_id == actor.owner_id, Trip.status.in_(OPEN_TRIP_STATUSES)
            ),
        )
        to_settle = await _count(
            uow,
            db,
            select(func.count(Trip.id)).where(
                Trip.owner_id == actor.owner_id, Trip.status == TripStatus.COMPLETED.value
            ),
        )

    return {
        "posted_loads": posted,
        "incoming_requests": incoming_requests,
        "my_pending_requests": my_pending_requests,
        "assigned_loads": assigned_to_me,
        "awaiting_confirmation": unconfirmed,
        "open_trips": open_trips,
        "trips_to_settle": to_settle,
    }
