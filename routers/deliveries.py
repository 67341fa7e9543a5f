import uuid
from typing import Optional

from fastapi import APIRouter, Query

from db import SessionDep
from responses import ok
from schemas import DeliveryCreate, DeliveryStatusUpdate, DeliveryVolunteerAssign
from services import deliveries
from services.notifications import NotifierDep
from services.volunteers import (
    assign_volunteer_to_delivery,
    resolve_volunteer_reference,
    volunteer_deliveries,
)

router = APIRouter(tags=["deliveries"])


@router.post("", status_code=201)
def create_delivery(delivery_in: DeliveryCreate, session: SessionDep, notifier: NotifierDep):
    delivery = deliveries.create_delivery(session, delivery_in, notifier=notifier)
    message = (
        "Delivery created and volunteer assigned"
        if delivery.volunteer_id
        else "Delivery created, pending volunteer assignment"
    )
    return ok(delivery, message)


@router.get("")
def list_deliveries(
    session: SessionDep,
    status: Optional[str] = None,
    volunteer_id: Optional[uuid.UUID] = None,
    match_id: Optional[uuid.UUID] = None,
    limit: int = Query(default=50, ge=1, le=200),
):
    return ok(deliveries.list_deliveries(session, status, volunteer_id, match_id, limit))


@router.get("/volunteer/{volunteer_id}")
def list_volunteer_deliveries(volunteer_id: uuid.UUID, session: SessionDep):
    """Deliveries for a volunteer, looked up by profile id or user id."""
    profile = resolve_volunteer_reference(session, volunteer_id)
    return ok(volunteer_deliveries(session, profile), volunteer_profile_id=profile.id)


@router.get("/{delivery_id}")
def get_delivery(delivery_id: uuid.UUID, session: SessionDep):
    return ok(deliveries.get_delivery(session, delivery_id))


@router.put("/{delivery_id}/status")
def update_delivery_status(
    delivery_id: uuid.UUID,
    update: DeliveryStatusUpdate,
    session: SessionDep,
    notifier: NotifierDep,
):
    delivery = deliveries.update_status(
        session,
        delivery_id,
        update.status,
        location=update.location,
        notes=update.notes,
        notifier=notifier,
    )
    return ok(delivery, f"Delivery status updated to {delivery.status.value}")


@router.post("/{delivery_id}/assign-volunteer")
def assign_volunteer(
    delivery_id: uuid.UUID,
    body: DeliveryVolunteerAssign,
    session: SessionDep,
    notifier: NotifierDep,
):
    delivery = assign_volunteer_to_delivery(
        session,
        delivery_id,
        user_id=body.volunteer_id,
        profile_id=body.volunteer_profile_id,
        notifier=notifier,
    )
    return ok(delivery, "Volunteer assigned to delivery successfully")
