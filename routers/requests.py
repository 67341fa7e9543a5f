import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query
from sqlmodel import select

from db import SessionDep
from errors import NotFoundError
from models import ItemCategory, ReliefRequest, RequestStatus, Urgency, UserRole
from responses import ok
from schemas import ReliefRequestCreate
from .auth import CurrentUserDep, require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["requests"])


@router.post("", status_code=201)
def create_request(request_in: ReliefRequestCreate, session: SessionDep, current: CurrentUserDep):
    require_role(current, UserRole.NGO, action="create relief requests")

    relief_request = ReliefRequest(
        ngo_id=current.id,
        **request_in.model_dump(exclude={"delivery_coordinates"}),
        delivery_coordinates=request_in.delivery_coordinates.to_point(),
        status=RequestStatus.PENDING_VALIDATION,
    )
    session.add(relief_request)
    session.commit()
    session.refresh(relief_request)
    logger.info("Relief request %s created by %s", relief_request.id, current.id)
    return ok(relief_request, "Request submitted for validation")


@router.get("")
def list_requests(
    session: SessionDep,
    status: Optional[RequestStatus] = None,
    category: Optional[ItemCategory] = None,
    urgency: Optional[Urgency] = None,
    ngo_id: Optional[uuid.UUID] = None,
    limit: int = Query(default=50, ge=1, le=200),
):
    query = select(ReliefRequest)
    if status is not None:
        query = query.where(ReliefRequest.status == status)
    if category is not None:
        query = query.where(ReliefRequest.category == category)
    if urgency is not None:
        query = query.where(ReliefRequest.urgency == urgency)
    if ngo_id is not None:
        query = query.where(ReliefRequest.ngo_id == ngo_id)
    query = query.order_by(ReliefRequest.created_at.desc()).limit(limit)
    return ok(session.exec(query).all())


@router.get("/{request_id}")
def get_request(request_id: uuid.UUID, session: SessionDep):
    relief_request = session.get(ReliefRequest, request_id)
    if relief_request is None:
        raise NotFoundError("Request not found")
    return ok(relief_request)
