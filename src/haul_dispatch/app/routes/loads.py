"""Load API endpoints: creation, marketplace posting, status, and cancellation.

Every mutation goes through the engine services, which run it in a single
transaction, write a LoadEvent audit row, and publish LoadChanged after
commit.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.app.deps import get_actor, to_http
from haul_dispatch.domain.enums import (
    CarrierGiveBackReason,
    CompanyCancelReason,
    LoadStatus,
    PostingType,
    RequestType,
)
from haul_dispatch.domain.errors import DispatchError
from haul_dispatch.domain.schemas import (
    CancellationStatsResponse,
    LoadCancellationResponse,
    LoadCreate,
    LoadEventResponse,
    LoadRequestResponse,
    LoadResponse,
    ProposedDates,
)
from haul_dispatch.infra.database import get_db
from haul_dispatch.services.authorization import ActorContext
from haul_dispatch.services.cancellation import CancellationService
from haul_dispatch.services.load_lifecycle import LoadLifecycleService
from haul_dispatch.services.request_negotiation import RequestNegotiationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/loads", tags=["loads"])
lifecycle = LoadLifecycleService()
negotiation = RequestNegotiationService()
cancellations = CancellationService()

# ---------------------------------------------------------------------------
# Pydantic request schemas
# ---------------------------------------------------------------------------


class PostRequest(BaseModel):
    posting_type: PostingType = PostingType.LIVE_LOAD


class StatusRequest(BaseModel):
    status: LoadStatus


class CancelCarrierRequest(BaseModel):
    reason_code: CompanyCancelReason
    note: Optional[str] = None
    repost_to_marketplace: bool = False


class GiveBackRequest(BaseModel):
    reason_code: CarrierGiveBackReason
    note: Optional[str] = None


class SubmitRequestBody(BaseModel):
    request_type: RequestType = RequestType.ACCEPT_LISTED
    offered_rate: Optional[float] = None
    proposed_dates: Optional[ProposedDates] = None
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# Loads
# ---------------------------------------------------------------------------


@router.post("", response_model=LoadResponse, status_code=status.HTTP_201_CREATED)
async def create_load(
    body: LoadCreate,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await lifecycle.create_load(db, actor, body.model_dump())
    except DispatchError as e:
        raise to_http(e)


@router.get("", response_model=list[LoadResponse])
async def list_loads(
    scope: str = Query("own", pattern="^(own|assigned|marketplace)$"),
    load_status: Optional[LoadStatus] = Query(None, alias="status"),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await lifecycle.list_loads(
            db, actor, scope=scope, status=load_status.value if load_status else None
        )
    except DispatchError as e:
        raise to_http(e)


@router.get("/cancellation-stats", response_model=CancellationStatsResponse)
async def my_cancellation_stats(
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Reliability stats for the acting company."""
    try:
        return await cancellations.get_cancellation_stats(db, actor.company_id)
    except DispatchError as e:
        raise to_http(e)


@router.get("/{load_id}", response_model=LoadResponse)
async def get_load(
    load_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await lifecycle.get_load(db, actor, load_id)
    except DispatchError as e:
        raise to_http(e)


@router.get("/{load_id}/timeline", response_model=list[LoadEventResponse])
async def load_timeline(
    load_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await lifecycle.timeline(db, actor, load_id)
    except DispatchError as e:
        raise to_http(e)


@router.post("/{load_id}/post", response_model=LoadResponse)
async def post_load(
    load_id: str,
    body: PostRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await lifecycle.post_to_marketplace(db, actor, load_id, body.posting_type)
    except DispatchError as e:
        raise to_http(e)


@router.post("/{load_id}/unpost", response_model=LoadResponse)
async def unpost_load(
    load_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await lifecycle.unpost_from_marketplace(db, actor, load_id)
    except DispatchError as e:
        raise to_http(e)


@router.post("/{load_id}/status", response_model=LoadResponse)
async def advance_load_status(
    load_id: str,
    body: StatusRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await lifecycle.advance_status(db, actor, load_id, body.status)
    except DispatchError as e:
        raise to_http(e)


@router.post("/{load_id}/confirm", response_model=LoadResponse)
async def confirm_assignment(
    load_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await lifecycle.confirm_carrier_assignment(db, actor, load_id)
    except DispatchError as e:
        raise to_http(e)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@router.post("/{load_id}/cancel-carrier", response_model=LoadCancellationResponse)
async def cancel_carrier(
    load_id: str,
    body: CancelCarrierRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await cancellations.cancel_carrier_assignment(
            db,
            actor,
            load_id,
            body.reason_code,
            note=body.note,
            repost_to_marketplace=body.repost_to_marketplace,
        )
    except DispatchError as e:
        raise to_http(e)


@router.post("/{load_id}/give-back", response_model=LoadCancellationResponse)
async def give_back(
    load_id: str,
    body: GiveBackRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await cancellations.give_load_back(
            db, actor, load_id, body.reason_code, note=body.note
        )
    except DispatchError as e:
        raise to_http(e)


# ---------------------------------------------------------------------------
# Requests on a load
# ---------------------------------------------------------------------------


@router.get("/{load_id}/requests", response_model=list[LoadRequestResponse])
async def list_load_requests(
    load_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await negotiation.list_requests_for_load(db, actor, load_id)
    except DispatchError as e:
        raise to_http(e)


@router.post(
    "/{load_id}/requests",
    response_model=LoadRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_request(
    load_id: str,
    body: SubmitRequestBody,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await negotiation.submit_request(
            db,
            actor,
            load_id,
            request_type=body.request_type,
            offered_rate=body.offered_rate,
            proposed_dates=body.proposed_dates.model_dump() if body.proposed_dates else None,
            message=body.message,
        )
    except DispatchError as e:
        raise to_http(e)
