import logging
import uuid
from typing import Optional

from sqlmodel import Session, select

from db import atomic, get_for_update
from errors import NotFoundError, PreconditionFailed
from lifecycle import DELIVERY, MATCH
from models import (
    Delivery,
    DeliveryStatus,
    Donation,
    Match,
    MatchStatus,
    ReliefRequest,
    utcnow,
)
from schemas import Coordinates, DeliveryCreate
from services.notifications import Notifier, dispatch, match_parties
from services.volunteers import resolve_volunteer_profile

logger = logging.getLogger(__name__)

OPEN_MATCH_STATUSES = (MatchStatus.SUGGESTED, MatchStatus.ASSIGNED)


def _point(coordinates: Optional[Coordinates], fallback: Optional[str]) -> Optional[str]:
    return coordinates.to_point() if coordinates is not None else fallback


def active_delivery(session: Session, match_id: uuid.UUID, lock: bool = False) -> Optional[Delivery]:
    """The match's delivery that is not cancelled, if any."""
    statement = select(Delivery).where(
        Delivery.match_id == match_id,
        Delivery.status != DeliveryStatus.CANCELLED,
    )
    if lock:
        statement = statement.with_for_update().execution_options(populate_existing=True)
    return session.exec(statement).first()


def create_delivery(
    session: Session,
    data: DeliveryCreate,
    notifier: Optional[Notifier] = None,
) -> Delivery:
    """
    Open a delivery for a match.
    A match owns at most one delivery that is not cancelled.
    """
    with atomic(session):
        match = get_for_update(session, Match, data.match_id)
        if match is None:
            raise NotFoundError("Match not found")
        if match.status not in OPEN_MATCH_STATUSES:
            raise PreconditionFailed(
                f"Match status '{match.status.value}' does not accept deliveries. "
                f"Valid statuses: {', '.join(s.value for s in OPEN_MATCH_STATUSES)}",
                current=match.status,
                allowed=OPEN_MATCH_STATUSES,
            )
        active = active_delivery(session, match.id, lock=True)
        if active is not None:
            raise PreconditionFailed(
                f"Match already has an active delivery ({active.id})",
                current=active.status,
            )

        # default to the volunteer already bound to the match
        volunteer_id = data.volunteer_id or match.assigned_volunteer_id
        profile = None
        if volunteer_id is not None:
            profile = resolve_volunteer_profile(session, profile_id=volunteer_id)
            MATCH.check(match.status, MatchStatus.ASSIGNED)

        donation = session.get(Donation, match.donation_id)
        request = session.get(ReliefRequest, match.request_id)

        delivery = Delivery(
            match_id=match.id,
            volunteer_id=profile.id if profile else None,
            status=DeliveryStatus.ASSIGNED if profile else DeliveryStatus.PENDING_ASSIGNMENT,
            pickup_location=data.pickup_location or (donation.pickup_address if donation else None),
            pickup_coordinates=_point(
                data.pickup_coordinates, donation.pickup_coordinates if donation else None
            ),
            delivery_location=data.delivery_location
            or (request.delivery_address if request else None),
            delivery_coordinates=_point(
                data.delivery_coordinates, request.delivery_coordinates if request else None
            ),
            scheduled_pickup=data.scheduled_pickup,
            scheduled_delivery=data.scheduled_delivery,
            special_instructions=data.special_instructions,
        )
        session.add(delivery)

        if profile is not None:
            now = utcnow()
            if match.assigned_volunteer_id != profile.id or match.assigned_at is None:
                match.assigned_at = now
            match.assigned_volunteer_id = profile.id
            match.status = MatchStatus.ASSIGNED
            match.updated_at = now
            session.add(match)

    session.refresh(delivery)
    logger.info("Created delivery %s for match %s (%s)", delivery.id, data.match_id, delivery.status.value)
    if profile is not None:
        dispatch(
            notifier,
            "volunteer_assigned",
            match_parties(session, match),
            {"delivery_id": str(delivery.id), "match_id": str(match.id)},
        )
    return delivery


def update_status(
    session: Session,
    delivery_id: uuid.UUID,
    new_status: str,
    location: Optional[Coordinates] = None,
    notes: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> Delivery:
    """
    Move a delivery to `new_status`.

    picked_up stamps the pickup time and notes, delivered/completed stamp
    the delivery time and notes. A reported location is stored whatever
    the target status. Completing a delivery completes its match.
    """
    target = DELIVERY.parse(new_status)

    with atomic(session):
        delivery = get_for_update(session, Delivery, delivery_id)
        if delivery is None:
            raise NotFoundError("Delivery not found")
        previous = delivery.status
        DELIVERY.check(previous, target)
        if delivery.volunteer_id is None and target not in (
            DeliveryStatus.PENDING_ASSIGNMENT,
            DeliveryStatus.CANCELLED,
        ):
            raise PreconditionFailed(
                f"Delivery has no volunteer and cannot move to '{target.value}'. "
                f"Assign one with POST /api/deliveries/{delivery.id}/assign-volunteer",
                current=previous,
                allowed=[DeliveryStatus.PENDING_ASSIGNMENT, DeliveryStatus.CANCELLED],
            )

        now = utcnow()
        delivery.status = target
        delivery.updated_at = now

        if target == DeliveryStatus.PICKED_UP:
            delivery.pickup_actual_at = now
            delivery.pickup_notes = notes
        elif target in (DeliveryStatus.DELIVERED, DeliveryStatus.COMPLETED):
            delivery.delivery_actual_at = now
            delivery.delivery_notes = notes

        if location is not None:
            delivery.current_location = location.to_point()
            delivery.last_location_update = now

        session.add(delivery)

        match = get_for_update(session, Match, delivery.match_id)
        if (
            target == DeliveryStatus.COMPLETED
            and match is not None
            and MATCH.can(match.status, MatchStatus.COMPLETED)
        ):
            match.status = MatchStatus.COMPLETED
            match.updated_at = now
            session.add(match)

    session.refresh(delivery)
    logger.info("Delivery %s: %s -> %s", delivery.id, previous.value, target.value)
    if match is not None:
        dispatch(
            notifier,
            "delivery_status_changed",
            match_parties(session, match),
            {
                "delivery_id": str(delivery.id),
                "previous_status": previous.value,
                "status": target.value,
            },
        )
    return delivery


def get_delivery(session: Session, delivery_id: uuid.UUID) -> Delivery:
    delivery = session.get(Delivery, delivery_id)
    if delivery is None:
        raise NotFoundError("Delivery not found")
    return delivery


def list_deliveries(
    session: Session,
    status: Optional[str] = None,
    volunteer_id: Optional[uuid.UUID] = None,
    match_id: Optional[uuid.UUID] = None,
    limit: int = 50,
) -> list[Delivery]:
    query = select(Delivery)
    if status is not None:
        query = query.where(Delivery.status == DELIVERY.parse(status))
    if volunteer_id is not None:
        query = query.where(Delivery.volunteer_id == volunteer_id)
    if match_id is not None:
        query = query.where(Delivery.match_id == match_id)
    query = query.order_by(Delivery.created_at.desc()).limit(limit)
    return list(session.exec(query).all())
