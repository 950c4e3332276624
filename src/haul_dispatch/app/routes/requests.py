"""Load request API endpoints: the load owner's answers and the carrier's withdrawals."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.app.deps import get_actor, to_http
from haul_dispatch.domain.enums import RequestStatus
from haul_dispatch.domain.errors import DispatchError
from haul_dispatch.domain.schemas import LoadRequestResponse
from haul_dispatch.infra.database import get_db
from haul_dispatch.services.authorization import ActorContext
from haul_dispatch.services.request_negotiation import RequestNegotiationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/requests", tags=["requests"])
negotiation = RequestNegotiationService()


class DeclineRequest(BaseModel):
    reason: Optional[str] = None


@router.get("/mine", response_model=list[LoadRequestResponse])
async def my_requests(
    request_status: Optional[RequestStatus] = Query(None, alias="status"),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Requests the acting company has made as a carrier."""
    try:
        return await negotiation.list_my_requests(
            db, actor, status=request_status.value if request_status else None
        )
    except DispatchError as e:
        raise to_http(e)


@router.post("/{request_id}/accept", response_model=LoadRequestResponse)
async def accept_request(
    request_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Accept a request. Competing pending requests are declined in the same transaction."""
    try:
        return await negotiation.accept_request(db, actor, request_id)
    except DispatchError as e:
        raise to_http(e)


@router.post("/{request_id}/decline", response_model=LoadRequestResponse)
async def decline_request(
    request_id: str,
    body: DeclineRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await negotiation.decline_request(db, actor, request_id, reason=body.reason)
    except DispatchError as e:
        raise to_http(e)


@router.post("/{request_id}/withdraw", response_model=LoadRequestResponse)
async def withdraw_request(
    request_id: str,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await negotiation.withdraw_request(db, actor, request_id)
    except DispatchError as e:
        raise to_http(e)
