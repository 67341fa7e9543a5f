import logging
import uuid
from typing import Optional

from sqlmodel import Session, select

from db import atomic, get_for_update
from errors import NotFoundError
from lifecycle import DELIVERY, DONATION, MATCH, REQUEST
from models import (
    Delivery,
    DeliveryStatus,
    Donation,
    DonationStatus,
    Match,
    MatchSource,
    MatchStatus,
    ReliefRequest,
    RequestStatus,
    VolunteerProfile,
    utcnow,
)
from services.deliveries import active_delivery
from services.notifications import Notifier, dispatch, match_parties
from services.volunteers import resolve_volunteer_profile

logger = logging.getLogger(__name__)


def _open_delivery(
    session: Session,
    match: Match,
    donation: Donation,
    request: ReliefRequest,
    profile: VolunteerProfile,
) -> Delivery:
    delivery = Delivery(
        match_id=match.id,
        volunteer_id=profile.id,
        status=DeliveryStatus.ASSIGNED,
        pickup_location=donation.pickup_address,
        pickup_coordinates=donation.pickup_coordinates,
        delivery_location=request.delivery_address,
        delivery_coordinates=request.delivery_coordinates,
    )
    session.add(delivery)
    return delivery


def create_match(
    session: Session,
    donation_id: uuid.UUID,
    request_id: uuid.UUID,
    *,
    volunteer_user_id: Optional[uuid.UUID] = None,
    volunteer_profile_id: Optional[uuid.UUID] = None,
    score: Optional[float] = None,
    reasoning: Optional[str] = None,
    matched_by: Optional[MatchSource] = None,
    notifier: Optional[Notifier] = None,
) -> tuple[Match, Optional[Delivery]]:
    """
    Match a donation with a relief request.

    Donation and request rows are locked and their status re-checked inside
    the writing transaction, so two concurrent calls cannot both match the
    same donation. With a volunteer, the match starts assigned and a
    delivery is opened for the volunteer's profile; everything is committed
    together or not at all.
    """
    with atomic(session):
        donation = get_for_update(session, Donation, donation_id)
        if donation is None:
            raise NotFoundError("Donation not found")
        request = get_for_update(session, ReliefRequest, request_id)
        if request is None:
            raise NotFoundError("Request not found")

        DONATION.check(donation.status, DonationStatus.MATCHED, action="matching")
        REQUEST.check(request.status, RequestStatus.PARTIALLY_MATCHED, action="matching")

        profile = None
        if volunteer_user_id is not None or volunteer_profile_id is not None:
            profile = resolve_volunteer_profile(
                session, user_id=volunteer_user_id, profile_id=volunteer_profile_id
            )

        if matched_by is None:
            matched_by = MatchSource.AI_AGENT if score is not None else MatchSource.MANUAL

        now = utcnow()
        match = Match(
            donation_id=donation.id,
            request_id=request.id,
            assigned_volunteer_id=profile.id if profile else None,
            status=MatchStatus.ASSIGNED if profile else MatchStatus.SUGGESTED,
            compatibility_score=score,
            matched_by=matched_by,
            ai_reasoning=reasoning,
            assigned_at=now if profile else None,
        )
        session.add(match)

        donation.status = DonationStatus.MATCHED
        donation.updated_at = now
        request.status = RequestStatus.PARTIALLY_MATCHED
        request.updated_at = now
        session.add(donation)
        session.add(request)
        session.flush()

        delivery = None
        if profile is not None:
            delivery = _open_delivery(session, match, donation, request, profile)

    session.refresh(match)
    if delivery is not None:
        session.refresh(delivery)
    logger.info(
        "Matched donation %s with request %s (match %s, %s)",
        donation_id,
        request_id,
        match.id,
        match.status.value,
    )
    dispatch(
        notifier,
        "match_created",
        match_parties(session, match),
        {
            "match_id": str(match.id),
            "donation_id": str(donation_id),
            "request_id": str(request_id),
            "status": match.status.value,
        },
    )
    return match, delivery


def assign_volunteer(
    session: Session,
    match_id: uuid.UUID,
    volunteer_profile_id: uuid.UUID,
    notifier: Optional[Notifier] = None,
) -> Match:
    """
    Bind a volunteer profile to a match. An open delivery of the match is
    handed to the same volunteer; once it is under way the change is refused.
    """
    with atomic(session):
        match = get_for_update(session, Match, match_id)
        if match is None:
            raise NotFoundError("Match not found")
        profile = resolve_volunteer_profile(session, profile_id=volunteer_profile_id)
        MATCH.check(match.status, MatchStatus.ASSIGNED)

        delivery = active_delivery(session, match.id, lock=True)
        if delivery is not None and delivery.volunteer_id != profile.id:
            DELIVERY.check(delivery.status, DeliveryStatus.ASSIGNED, action="volunteer reassignment")

        now = utcnow()
        if match.assigned_volunteer_id != profile.id or match.assigned_at is None:
            match.assigned_at = now
        match.assigned_volunteer_id = profile.id
        match.status = MatchStatus.ASSIGNED
        match.updated_at = now
        session.add(match)

        if delivery is not None:
            delivery.volunteer_id = profile.id
            if delivery.status == DeliveryStatus.PENDING_ASSIGNMENT:
                delivery.status = DeliveryStatus.ASSIGNED
            delivery.updated_at = now
            session.add(delivery)

    session.refresh(match)
    dispatch(
        notifier,
        "volunteer_assigned",
        match_parties(session, match),
        {"match_id": str(match.id), "volunteer_id": str(volunteer_profile_id)},
    )
    return match


def get_match(session: Session, match_id: uuid.UUID) -> Match:
    match = session.get(Match, match_id)
    if match is None:
        raise NotFoundError("Match not found")
    return match


def list_matches(
    session: Session,
    status: Optional[MatchStatus] = None,
    donation_id: Optional[uuid.UUID] = None,
    request_id: Optional[uuid.UUID] = None,
    limit: int = 50,
) -> list[Match]:
    query = select(Match)
    if status is not None:
        query = query.where(Match.status == status)
    if donation_id is not None:
        query = query.where(Match.donation_id == donation_id)
    if request_id is not None:
        query = query.where(Match.request_id == request_id)
    query = query.order_by(Match.created_at.desc()).limit(limit)
    return list(session.exec(query).all())
