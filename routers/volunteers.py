import uuid
from typing import Optional

from fastapi import APIRouter, Query

from db import SessionDep
from models import DeliveryStatus
from responses import ok
from schemas import UserRead, VolunteerUpsert
from services.volunteers import get_volunteer, resolve_volunteer_profile, upsert_volunteer, volunteer_deliveries

router = APIRouter(tags=["volunteers"])


@router.post("", status_code=201)
def register_volunteer(volunteer_in: VolunteerUpsert, session: SessionDep):
    """Register as volunteer or update volunteer info (keyed by user_id)."""
    profile = upsert_volunteer(session, volunteer_in)
    return ok(profile, "Volunteer registration successful")


@router.get("/{user_id}")
def read_volunteer(user_id: uuid.UUID, session: SessionDep):
    profile, user = get_volunteer(session, user_id)
    data = profile.model_dump(mode="json")
    data["user"] = UserRead.model_validate(user).model_dump(mode="json")
    return ok(data)


@router.get("/{user_id}/deliveries")
def read_volunteer_deliveries(
    user_id: uuid.UUID,
    session: SessionDep,
    status: Optional[DeliveryStatus] = None,
    limit: int = Query(default=50, ge=1, le=200),
):
    """Delivery history for a volunteer user."""
    profile = resolve_volunteer_profile(session, user_id=user_id)
    return ok(volunteer_deliveries(session, profile, status, limit), volunteer_id=user_id)
