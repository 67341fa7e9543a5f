import uuid
from typing import Optional

from fastapi import APIRouter, Query

from db import SessionDep
from models import MatchStatus
from responses import ok
from schemas import MatchCreate, MatchVolunteerUpdate
from services import matching
from services.notifications import NotifierDep

router = APIRouter(tags=["matching"])


@router.post("/create", status_code=201)
def create_match(match_in: MatchCreate, session: SessionDep, notifier: NotifierDep):
    """Create a match, AI-suggested or manual, optionally with a volunteer."""
    match, delivery = matching.create_match(
        session,
        match_in.donation_id,
        match_in.request_id,
        volunteer_user_id=match_in.volunteer_id,
        volunteer_profile_id=match_in.volunteer_profile_id,
        score=match_in.matching_score,
        reasoning=match_in.ai_reasoning,
        matched_by=match_in.matched_by,
        notifier=notifier,
    )
    message = (
        "Match created and volunteer assigned"
        if delivery is not None
        else "Match created, pending volunteer assignment"
    )
    return ok(match, message, delivery=delivery)


@router.get("")
def list_matches(
    session: SessionDep,
    status: Optional[MatchStatus] = None,
    donation_id: Optional[uuid.UUID] = None,
    request_id: Optional[uuid.UUID] = None,
    limit: int = Query(default=50, ge=1, le=200),
):
    return ok(matching.list_matches(session, status, donation_id, request_id, limit))


@router.get("/{match_id}")
def get_match(match_id: uuid.UUID, session: SessionDep):
    return ok(matching.get_match(session, match_id))


@router.put("/{match_id}/volunteer")
def assign_match_volunteer(
    match_id: uuid.UUID,
    update: MatchVolunteerUpdate,
    session: SessionDep,
    notifier: NotifierDep,
):
    match = matching.assign_volunteer(session, match_id, update.volunteer_id, notifier=notifier)
    return ok(match, "Volunteer assigned to match")
