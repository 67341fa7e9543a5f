import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query
from sqlmodel import select

from db import SessionDep, atomic, get_for_update
from errors import ForbiddenError, NotFoundError
from lifecycle import DONATION
from models import Donation, DonationStatus, ItemCategory, Urgency, UserRole, utcnow
from responses import ok
from schemas import DonationCreate, ValidationResult
from .auth import CurrentUserDep, require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["donations"])


def _initial_status(result: Optional[ValidationResult]) -> DonationStatus:
    if result is None:
        return DonationStatus.PENDING_VALIDATION
    if result.auto_approve:
        return DonationStatus.AVAILABLE
    if result.risk_level == "high":
        return DonationStatus.REJECTED
    return DonationStatus.PENDING_VALIDATION


@router.post("", status_code=201)
def create_donation(donation_in: DonationCreate, session: SessionDep, current: CurrentUserDep):
    """
    Create a donation for the logged-in donor.
    The status starts from the validation agent's verdict when one is attached.
    """
    require_role(current, UserRole.DONOR, action="create donations")

    result = donation_in.validation_result
    donation = Donation(
        donor_id=current.id,
        item_name=donation_in.item_name,
        category=donation_in.category,
        quantity=donation_in.quantity,
        unit=donation_in.unit,
        urgency=donation_in.urgency,
        description=donation_in.description,
        pickup_address=donation_in.pickup_address,
        pickup_coordinates=donation_in.pickup_coordinates.to_point(),
        photos=donation_in.images,
        status=_initial_status(result),
    )
    if result is not None:
        donation.validation_score = result.confidence
        donation.validation_notes = "; ".join(result.issues) or None
        donation.validated_by = "ai_agent"
        donation.validated_at = utcnow()

    session.add(donation)
    session.commit()
    session.refresh(donation)
    logger.info("Donation %s created with status %s", donation.id, donation.status.value)
    return ok(donation, "Donation submitted for validation")


@router.get("")
def list_donations(
    session: SessionDep,
    status: Optional[DonationStatus] = None,
    category: Optional[ItemCategory] = None,
    urgency: Optional[Urgency] = None,
    donor_id: Optional[uuid.UUID] = None,
    limit: int = Query(default=50, ge=1, le=200),
):
    """List donations, optionally filtered by status, category, urgency and donor."""
    query = select(Donation)

    if status is not None:
        query = query.where(Donation.status == status)

    if category is not None:
        query = query.where(Donation.category == category)

    if urgency is not None:
        query = query.where(Donation.urgency == urgency)

    if donor_id is not None:
        query = query.where(Donation.donor_id == donor_id)

    query = query.order_by(Donation.created_at.desc()).limit(limit)
    return ok(session.exec(query).all())


@router.get("/{donation_id}")
def get_donation(donation_id: uuid.UUID, session: SessionDep):
    donation = session.get(Donation, donation_id)
    if donation is None:
        raise NotFoundError("Donation not found")
    return ok(donation)


@router.post("/{donation_id}/cancel")
def cancel_donation(donation_id: uuid.UUID, session: SessionDep, current: CurrentUserDep):
    """Withdraw a donation. Donations are never deleted, only cancelled."""
    with atomic(session):
        donation = get_for_update(session, Donation, donation_id)
        if donation is None:
            raise NotFoundError("Donation not found")

        if donation.donor_id != current.id and current.role != UserRole.ADMIN:
            raise ForbiddenError("You can only cancel donations you made.")

        DONATION.check(donation.status, DonationStatus.CANCELLED, action="cancellation")
        donation.status = DonationStatus.CANCELLED
        donation.updated_at = utcnow()
        session.add(donation)

    session.refresh(donation)
    return ok(donation, "Donation cancelled")
