import uuid

from models import UserRole, VolunteerProfile
from services import matching
from tests.factories import count, make_donation, make_request, make_user, make_volunteer


def test_register_and_update_volunteer_profile(client, session):
    user = make_user(session, UserRole.VOLUNTEER)

    first = client.post(
        "/api/volunteers",
        json={
            "user_id": str(user.id),
            "vehicle_type": "bicycle",
            "max_capacity_kg": 30,
            "coordinates": {"lat": 22.3569, "lng": 91.7832},
            "district": "Chattogram",
        },
    )
    assert first.status_code == 201
    profile = first.json()["data"]
    assert profile["coordinates"] == "(91.7832,22.3569)"
    assert profile["is_available"] is True

    second = client.post(
        "/api/volunteers",
        json={"user_id": str(user.id), "vehicle_type": "car", "max_capacity_kg": 200},
    )
    assert second.status_code == 201
    updated = second.json()["data"]
    assert updated["id"] == profile["id"]
    assert updated["vehicle_type"] == "car"
    assert updated["district"] == "Chattogram"
    assert count(session, VolunteerProfile) == 1


def test_only_volunteer_users_get_profiles(client, session):
    donor = make_user(session)

    response = client.post("/api/volunteers", json={"user_id": str(donor.id)})

    assert response.status_code == 400
    assert count(session, VolunteerProfile) == 0


def test_unknown_user_cannot_register(client):
    response = client.post("/api/volunteers", json={"user_id": str(uuid.uuid4())})
    assert response.status_code == 404


def test_read_volunteer_includes_user(client, session):
    user, profile = make_volunteer(session)

    response = client.get(f"/api/volunteers/{user.id}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == str(profile.id)
    assert data["user"]["phone"] == user.phone
    assert client.get(f"/api/volunteers/{uuid.uuid4()}").status_code == 404


def test_volunteer_delivery_history(client, session):
    user, _ = make_volunteer(session)
    _, delivery = matching.create_match(
        session, make_donation(session).id, make_request(session).id, volunteer_user_id=user.id
    )

    response = client.get(f"/api/volunteers/{user.id}/deliveries")

    assert response.status_code == 200
    body = response.json()
    assert [d["id"] for d in body["data"]] == [str(delivery.id)]
    assert body["volunteer_id"] == str(user.id)

    filtered = client.get(f"/api/volunteers/{user.id}/deliveries", params={"status": "completed"})
    assert filtered.json()["data"] == []


def test_delivery_history_for_non_volunteer(client, session):
    ngo = make_user(session, UserRole.NGO)
    response = client.get(f"/api/volunteers/{ngo.id}/deliveries")
    assert response.status_code == 404
