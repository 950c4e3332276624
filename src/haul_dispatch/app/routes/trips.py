"""Trip API endpoints: trips, their load sequence, expenses, and settlement."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.app.deps import get_actor, to_http
from haul_dispatch.domain.enums import TripLoadRole, TripStatus
from haul_dispatch.domain.errors import DispatchError
from haul_dispatch.domain.schemas import (
    LoadResponse,
    TripCreate,
    TripExpenseCreate,
    TripExpenseResponse,
    TripLoadDetail,
    TripLoadResponse,
    TripResponse,
    TripUpdate,
)
from haul_dispatch.infra.database import get_db
from haul_dispatch.services.authorization import ActorContext
from haul_dispatch.services.settlement_service import SettlementService
from haul_dispatch.services.trip_assignment import TripAssignmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trips", tags=["trips"])
trips = TripAssignmentService()
settlement = SettlementService()


class TripStatusRequest(BaseModel):
    status: TripStatus


class AssignLoadRequest(BaseModel):
    load_id: str
    role: TripLoadRole = TripLoadRole.PRIMARY


class ReorderRequest(BaseModel):
    load_ids: list[str]


# ---------------------------------------------------------------------------
# Trips
# ---------------------------------------------------------------------------


@router.post("", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
async def create_trip(
    body: TripCreate,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await trips.create_trip(db, actor, body.model_dump())
    except DispatchError as e:
        raise to_http(e)


@router.get("", response_model=list[TripResponse])
async def list_trips(
    trip_status: Optional[TripStatus] = Query(None, alias="status"),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await trips.list_trips(
            db, actor, status=trip_status.value if trip_status else None
        )
    except DispatchError as e:
        raise to_http(e)


@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip(
    trip_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await trips.get_trip(db, actor, trip_id)
    except DispatchError as e:
        raise to_http(e)


@router.patch("/{trip_id}", response_model=TripResponse)
async def update_trip(
    trip_id: str,
    body: TripUpdate,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await trips.update_trip(db, actor, trip_id, body.model_dump(exclude_unset=True))
    except DispatchError as e:
        raise to_http(e)


@router.post("/{trip_id}/status", response_model=TripResponse)
async def update_trip_status(
    trip_id: str,
    body: TripStatusRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await trips.update_trip_status(db, actor, trip_id, body.status)
    except DispatchError as e:
        raise to_http(e)


# ---------------------------------------------------------------------------
# Loads on a trip
# ---------------------------------------------------------------------------


@router.get("/{trip_id}/loads", response_model=list[TripLoadDetail])
async def list_trip_loads(
    trip_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        pairs = await trips.list_trip_loads(db, actor, trip_id)
    except DispatchError as e:
        raise to_http(e)
    return [
        TripLoadDetail(
            **TripLoadResponse.model_validate(row).model_dump(),
            load=LoadResponse.model_validate(load),
        )
        for row, load in pairs
    ]


@router.post(
    "/{trip_id}/loads",
    response_model=TripLoadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_load(
    trip_id: str,
    body: AssignLoadRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Append a load to the trip, moving it off any trip it is on."""
    try:
        return await trips.assign_load_to_trip(db, actor, body.load_id, trip_id, role=body.role)
    except DispatchError as e:
        raise to_http(e)


@router.delete("/{trip_id}/loads/{load_id}", response_model=LoadResponse)
async def remove_load(
    trip_id: str,
    load_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await trips.remove_load_from_trip(db, actor, load_id, trip_id)
    except DispatchError as e:
        raise to_http(e)


@router.put("/{trip_id}/loads/order", response_model=list[TripLoadResponse])
async def reorder_loads(
    trip_id: str,
    body: ReorderRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await trips.reorder_trip_loads(db, actor, trip_id, body.load_ids)
    except DispatchError as e:
        raise to_http(e)


# ---------------------------------------------------------------------------
# Expenses and settlement
# ---------------------------------------------------------------------------


@router.get("/{trip_id}/expenses", response_model=list[TripExpenseResponse])
async def list_expenses(
    trip_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await trips.list_trip_expenses(db, actor, trip_id)
    except DispatchError as e:
        raise to_http(e)


@router.post(
    "/{trip_id}/expenses",
    response_model=TripExpenseResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_expense(
    trip_id: str,
    body: TripExpenseCreate,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await trips.add_trip_expense(db, actor, trip_id, body.model_dump())
    except DispatchError as e:
        raise to_http(e)


@router.post("/{trip_id}/financials", response_model=TripResponse)
async def compute_financials(
    trip_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await settlement.compute_trip_financials(db, actor, trip_id)
    except DispatchError as e:
        raise to_http(e)


@router.post("/{trip_id}/settle", response_model=TripResponse)
async def settle_trip(
    trip_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await settlement.settle_trip(db, actor, trip_id)
    except DispatchError as e:
        raise to_http(e)
