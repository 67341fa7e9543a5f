"""
Volunteer profiles and volunteer assignment.

A volunteer has two identifiers: the auth user id and the profile id.
Matches and deliveries only ever store the profile id; user ids are
converted here, at the boundary, by resolve_volunteer_profile.
"""

import logging
import uuid
from typing import Optional

from sqlmodel import Session, select

from db import atomic, get_for_update
from errors import NotFoundError, ValidationError
from lifecycle import DELIVERY, MATCH
from models import (
    Delivery,
    DeliveryStatus,
    Match,
    MatchStatus,
    User,
    UserRole,
    VolunteerProfile,
    utcnow,
)
from schemas import VolunteerUpsert
from services.notifications import Notifier, dispatch, match_parties

logger = logging.getLogger(__name__)


def resolve_volunteer_profile(
    session: Session,
    *,
    user_id: Optional[uuid.UUID] = None,
    profile_id: Optional[uuid.UUID] = None,
) -> VolunteerProfile:
    """
    Return the volunteer profile for a profile id or, failing that, a user id.
    The owning user must have the volunteer role.
    """
    statement = select(VolunteerProfile, User).join(User, User.id == VolunteerProfile.user_id)
    if profile_id is not None:
        statement = statement.where(VolunteerProfile.id == profile_id)
    elif user_id is not None:
        statement = statement.where(VolunteerProfile.user_id == user_id)
    else:
        raise ValidationError("Either volunteer_id or volunteer_profile_id is required")

    row = session.exec(statement).first()
    if row is None:
        raise NotFoundError("Volunteer profile not found")
    profile, user = row
    if user.role != UserRole.VOLUNTEER:
        raise NotFoundError("User is not a volunteer")
    return profile


def resolve_volunteer_reference(session: Session, ref: uuid.UUID) -> VolunteerProfile:
    """Accept an id that may be either a profile id or a user id."""
    try:
        return resolve_volunteer_profile(session, profile_id=ref)
    except NotFoundError:
        return resolve_volunteer_profile(session, user_id=ref)


def upsert_volunteer(session: Session, data: VolunteerUpsert) -> VolunteerProfile:
    user = session.get(User, data.user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.role != UserRole.VOLUNTEER:
        raise ValidationError("User is not registered as a volunteer")

    fields = data.model_dump(exclude_unset=True, exclude={"user_id", "coordinates"})
    if data.coordinates is not None:
        fields["coordinates"] = data.coordinates.to_point()

    with atomic(session):
        profile = session.exec(
            select(VolunteerProfile).where(VolunteerProfile.user_id == data.user_id)
        ).first()
        if profile is None:
            profile = VolunteerProfile(user_id=data.user_id)
            logger.info("Registering volunteer profile for user %s", data.user_id)
        for key, value in fields.items():
            setattr(profile, key, value)
        profile.is_available = True
        profile.updated_at = utcnow()
        session.add(profile)

    session.refresh(profile)
    return profile


def get_volunteer(session: Session, user_id: uuid.UUID) -> tuple[VolunteerProfile, User]:
    row = session.exec(
        select(VolunteerProfile, User)
        .join(User, User.id == VolunteerProfile.user_id)
        .where(VolunteerProfile.user_id == user_id)
    ).first()
    if row is None:
        raise NotFoundError("Volunteer not found")
    profile, user = row
    if user.role != UserRole.VOLUNTEER:
        raise NotFoundError("User is not a volunteer")
    return profile, user


def volunteer_deliveries(
    session: Session,
    profile: VolunteerProfile,
    status: Optional[DeliveryStatus] = None,
    limit: int = 50,
) -> list[Delivery]:
    query = select(Delivery).where(Delivery.volunteer_id == profile.id)
    if status is not None:
        query = query.where(Delivery.status == status)
    query = query.order_by(Delivery.created_at.desc()).limit(limit)
    return list(session.exec(query).all())


def assign_volunteer_to_delivery(
    session: Session,
    delivery_id: uuid.UUID,
    *,
    user_id: Optional[uuid.UUID] = None,
    profile_id: Optional[uuid.UUID] = None,
    notifier: Optional[Notifier] = None,
) -> Delivery:
    """
    Bind a volunteer to a delivery and its match in one transaction.

    Re-assigning the same profile only refreshes updated_at.
    """
    if user_id is None and profile_id is None:
        raise ValidationError("Either volunteer_id or volunteer_profile_id is required")

    with atomic(session):
        delivery = get_for_update(session, Delivery, delivery_id)
        if delivery is None:
            raise NotFoundError("Delivery not found")
        profile = resolve_volunteer_profile(session, user_id=user_id, profile_id=profile_id)
        match = get_for_update(session, Match, delivery.match_id)
        if match is None:
            raise NotFoundError("Match not found")

        DELIVERY.check(delivery.status, DeliveryStatus.ASSIGNED)
        MATCH.check(match.status, MatchStatus.ASSIGNED)

        now = utcnow()
        delivery.volunteer_id = profile.id
        delivery.status = DeliveryStatus.ASSIGNED
        delivery.updated_at = now

        if match.assigned_volunteer_id != profile.id or match.assigned_at is None:
            match.assigned_at = now
        match.assigned_volunteer_id = profile.id
        match.status = MatchStatus.ASSIGNED
        match.updated_at = now

        session.add(delivery)
        session.add(match)

    session.refresh(delivery)
    dispatch(
        notifier,
        "volunteer_assigned",
        match_parties(session, match),
        {"delivery_id": str(delivery.id), "match_id": str(match.id), "volunteer_id": str(profile.id)},
    )
    return delivery
