import uuid
from datetime import datetime, timedelta, timezone

import pytest

from models import Donation, DonationStatus, RequestStatus, UserRole
from tests.factories import auth_headers, make_donation, make_user

DONATION = {
    "item_name": "Drinking water",
    "category": "water",
    "quantity": 40,
    "unit": "litres",
    "urgency": "critical",
    "pickup_address": "Mirpur 10, Dhaka",
    "pickup_coordinates": {"lat": 23.8069, "lng": 90.3687},
}


@pytest.mark.parametrize(
    "verdict, expected",
    [
        (None, "pending_validation"),
        ({"autoApprove": True, "confidence": 0.95}, "available"),
        ({"autoApprove": False, "riskLevel": "medium"}, "pending_validation"),
        ({"autoApprove": False, "riskLevel": "high", "issues": ["blurry photo"]}, "rejected"),
    ],
)
def test_initial_status_follows_validation_verdict(client, session, verdict, expected):
    donor = make_user(session)
    body = dict(DONATION, validation_result=verdict) if verdict else DONATION

    response = client.post("/api/donations", json=body, headers=auth_headers(donor))

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == expected
    assert data["donor_id"] == str(donor.id)
    assert data["pickup_coordinates"] == "(90.3687,23.8069)"
    if verdict:
        assert data["validated_by"] == "ai_agent"


def test_rejected_verdict_keeps_issues(client, session):
    verdict = {"riskLevel": "high", "issues": ["blurry photo", "quantity mismatch"]}
    response = client.post(
        "/api/donations",
        json=dict(DONATION, validation_result=verdict),
        headers=auth_headers(make_user(session)),
    )
    assert response.json()["data"]["validation_notes"] == "blurry photo; quantity mismatch"


def test_only_donors_create_donations(client, session):
    ngo = make_user(session, UserRole.NGO)

    response = client.post("/api/donations", json=DONATION, headers=auth_headers(ngo))

    assert response.status_code == 403
    assert response.json()["error"] == "Only donor accounts can create donations"


def test_donation_requires_login(client):
    assert client.post("/api/donations", json=DONATION).status_code == 401


def test_donation_payload_is_validated(client, session):
    response = client.post(
        "/api/donations",
        json=dict(DONATION, quantity=0, category="furniture"),
        headers=auth_headers(make_user(session)),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"


def test_list_and_filter_donations(client, session):
    donor = make_user(session)
    available = make_donation(session, donor)
    make_donation(session, status=DonationStatus.MATCHED)

    listed = client.get("/api/donations", params={"status": "available"}).json()["data"]
    assert [d["id"] for d in listed] == [str(available.id)]

    by_donor = client.get("/api/donations", params={"donor_id": str(donor.id)}).json()["data"]
    assert len(by_donor) == 1
    assert client.get("/api/donations", params={"status": "lost"}).status_code == 400


def test_get_donation(client, session):
    donation = make_donation(session)
    assert client.get(f"/api/donations/{donation.id}").json()["data"]["item_name"] == "Rice bags"
    assert client.get(f"/api/donations/{uuid.uuid4()}").status_code == 404


def test_donor_cancels_own_donation(client, session):
    donor = make_user(session)
    donation = make_donation(session, donor)

    response = client.post(f"/api/donations/{donation.id}/cancel", headers=auth_headers(donor))

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"
    assert session.get(Donation, donation.id).status == DonationStatus.CANCELLED


def test_cannot_cancel_someone_elses_donation(client, session):
    donation = make_donation(session)

    response = client.post(
        f"/api/donations/{donation.id}/cancel", headers=auth_headers(make_user(session))
    )

    assert response.status_code == 403
    assert session.get(Donation, donation.id).status == DonationStatus.AVAILABLE


def test_matched_donation_cannot_be_cancelled(client, session):
    donor = make_user(session)
    donation = make_donation(session, donor, status=DonationStatus.MATCHED)

    response = client.post(f"/api/donations/{donation.id}/cancel", headers=auth_headers(donor))

    assert response.status_code == 400
    body = response.json()
    assert "not eligible for cancellation" in body["error"]
    assert body["allowed"] == ["pending_validation", "available"]


def _relief_request(**overrides):
    body = {
        "category": "medicine",
        "item_name": "Oral saline",
        "description": "Diarrhoea cases rising at the flood camp",
        "quantity": 500,
        "unit": "packets",
        "urgency": "high",
        "beneficiaries_count": 300,
        "delivery_address": "Kurigram Sadar camp",
        "delivery_coordinates": {"lat": 25.8054, "lng": 89.6362},
        "deadline": (datetime.now(timezone.utc) + timedelta(days=2)).isoformat(),
    }
    body.update(overrides)
    return body


def test_ngo_creates_relief_request(client, session):
    ngo = make_user(session, UserRole.NGO)

    response = client.post("/api/requests", json=_relief_request(), headers=auth_headers(ngo))

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == RequestStatus.PENDING_VALIDATION.value
    assert data["ngo_id"] == str(ngo.id)
    assert data["delivery_coordinates"] == "(89.6362,25.8054)"
    assert data["target_demographic"] == "families"

    assert client.get(f"/api/requests/{data['id']}").json()["data"]["item_name"] == "Oral saline"
    listed = client.get("/api/requests", params={"ngo_id": str(ngo.id)}).json()["data"]
    assert [r["id"] for r in listed] == [data["id"]]


def test_donors_cannot_create_relief_requests(client, session):
    response = client.post(
        "/api/requests", json=_relief_request(), headers=auth_headers(make_user(session))
    )
    assert response.status_code == 403


def test_relief_request_needs_a_description(client, session):
    response = client.post(
        "/api/requests",
        json=_relief_request(description="short"),
        headers=auth_headers(make_user(session, UserRole.NGO)),
    )
    assert response.status_code == 400


def test_unknown_relief_request(client):
    response = client.get(f"/api/requests/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["error"] == "Request not found"
