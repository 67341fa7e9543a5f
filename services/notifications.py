import logging
import uuid
from typing import Annotated, Iterable, Optional

from fastapi import Depends, Request
from sqlmodel import Session

from models import Donation, Match, ReliefRequest, VolunteerProfile

logger = logging.getLogger(__name__)


class Notifier:
    """Delivers lifecycle events to the donor, requester and volunteer involved."""

    def notify(self, event: str, recipients: list[uuid.UUID], payload: dict) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    def notify(self, event: str, recipients: list[uuid.UUID], payload: dict) -> None:
        logger.info("notification %s -> %s: %s", event, [str(r) for r in recipients], payload)


def match_parties(session: Session, match: Match) -> list[uuid.UUID]:
    """User ids of everyone with a stake in a match, without duplicates."""
    donation = session.get(Donation, match.donation_id)
    request = session.get(ReliefRequest, match.request_id)
    profile = (
        session.get(VolunteerProfile, match.assigned_volunteer_id)
        if match.assigned_volunteer_id
        else None
    )
    candidates: Iterable[Optional[uuid.UUID]] = (
        donation.donor_id if donation else None,
        request.ngo_id if request else None,
        profile.user_id if profile else None,
    )
    parties: list[uuid.UUID] = []
    for user_id in candidates:
        if user_id is not None and user_id not in parties:
            parties.append(user_id)
    return parties


def dispatch(
    notifier: Optional[Notifier],
    event: str,
    recipients: list[uuid.UUID],
    payload: dict,
) -> None:
    """
    Hand an event to the notifier once the state change is committed.
    A failing notifier is logged and never undoes the committed change.
    """
    if notifier is None or not recipients:
        return
    try:
        notifier.notify(event, recipients, payload)
    except Exception:
        logger.exception("Failed to send %s notification", event)


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


NotifierDep = Annotated[Notifier, Depends(get_notifier)]
