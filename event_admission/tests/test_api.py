"""
Test API endpoints.
"""
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from event_admission.core.clock import utcnow
from event_admission.models import Registration, RegistrationStatus, WaitlistEntry


def register(client: TestClient, event_id: int, user_id: int, **extra):
    return client.post(f"/events/{event_id}/registrations", json={"user_id": user_id, **extra})


class TestRegistrationEndpoints:
    """Test registration API endpoints."""

    def test_register_success(self, client: TestClient, make_event):
        """Test registering via API."""
        event = make_event(capacity=10)

        response = register(client, event.id, 1, attendee_count=2, notes="window seat")

        assert response.status_code == 201
        data = response.json()
        assert data["kind"] == "registered"
        assert data["registration"]["user_id"] == 1
        assert data["registration"]["event_id"] == event.id
        assert data["registration"]["attendee_count"] == 2
        assert data["registration"]["status"] == "PENDING"

    def test_register_full_event_is_waitlisted(self, client: TestClient, make_event):
        """Test that a full event answers 202 with the waitlist entry."""
        event = make_event(capacity=1)
        register(client, event.id, 1)

        response = register(client, event.id, 2)

        assert response.status_code == 202
        data = response.json()
        assert data["kind"] == "waitlisted"
        assert data["entry"]["position"] == 1
        assert data["entry"]["status"] == "WAITING"

    def test_register_twice(self, client: TestClient, make_event):
        """Test that a duplicate registration is a conflict."""
        event = make_event(capacity=10)
        register(client, event.id, 1)

        response = register(client, event.id, 1)

        assert response.status_code == 409
        assert "already registered" in response.json()["detail"]

    def test_register_twice_on_waitlist(self, client: TestClient, make_event):
        """Test that joining the waitlist twice is a conflict."""
        event = make_event(capacity=1)
        register(client, event.id, 1)
        register(client, event.id, 2)

        response = register(client, event.id, 2)

        assert response.status_code == 409

    def test_register_closed_event(self, client: TestClient, make_event):
        """Test registering for a cancelled event."""
        event = make_event(capacity=10, status="CANCELLED")

        response = register(client, event.id, 1)

        assert response.status_code == 409
        assert response.json()["detail"] == "Event is not open for registration"

    def test_register_unknown_event(self, client: TestClient):
        """Test registering for a nonexistent event."""
        response = register(client, 99999, 1)

        assert response.status_code == 404

    def test_register_validation(self, client: TestClient, make_event):
        """Test request validation."""
        event = make_event(capacity=10)

        assert register(client, event.id, 1, attendee_count=0).status_code == 422
        assert register(client, event.id, 1, notes="x" * 1001).status_code == 422
        assert client.post(f"/events/{event.id}/registrations", json={}).status_code == 422

    def test_cancel(self, client: TestClient, make_event):
        """Test cancelling promotes the next waitlisted user."""
        event = make_event(capacity=1)
        register(client, event.id, 1)
        register(client, event.id, 2)

        response = client.delete(f"/events/{event.id}/registrations/1")

        assert response.status_code == 200
        data = response.json()
        assert data["registration"]["status"] == "CANCELLED"
        assert data["total_registrations"] == 0
        assert data["available_seats"] == 0
        assert data["promoted"]["user_id"] == 2
        assert data["promoted"]["status"] == "NOTIFIED"
        assert data["promoted"]["expires_at"] is not None

    def test_cancel_not_registered(self, client: TestClient, make_event):
        """Test cancelling a registration that does not exist."""
        event = make_event(capacity=1)

        response = client.delete(f"/events/{event.id}/registrations/1")

        assert response.status_code == 404

    def test_cancel_twice(self, client: TestClient, make_event):
        """Test cancelling an already cancelled registration."""
        event = make_event(capacity=1)
        register(client, event.id, 1)
        client.delete(f"/events/{event.id}/registrations/1")

        response = client.delete(f"/events/{event.id}/registrations/1")

        assert response.status_code == 409

    def test_confirm_and_check_in(self, client: TestClient, make_event):
        """Test the organizer confirming and checking in an attendee."""
        event = make_event(capacity=5)
        registration_id = register(client, event.id, 1).json()["registration"]["id"]
        base = f"/events/{event.id}/registrations/{registration_id}"

        early = client.post(f"{base}/check-in", json={"organizer_id": event.owner_id})
        confirmed = client.post(f"{base}/confirm", json={"organizer_id": event.owner_id})
        checked_in = client.post(f"{base}/check-in", json={"organizer_id": event.owner_id})

        assert early.status_code == 409
        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == "CONFIRMED"
        assert checked_in.status_code == 200
        assert checked_in.json()["checked_in_at"] is not None

    def test_confirm_by_other_organizer(self, client: TestClient, make_event):
        """Test that another organizer cannot confirm."""
        event = make_event(capacity=5)
        registration_id = register(client, event.id, 1).json()["registration"]["id"]

        response = client.post(
            f"/events/{event.id}/registrations/{registration_id}/confirm",
            json={"organizer_id": event.owner_id + 1},
        )

        assert response.status_code == 403

    def test_event_registrations(self, client: TestClient, make_event):
        """Test the organizer's registration list."""
        event = make_event(capacity=5)
        register(client, event.id, 1)
        register(client, event.id, 2)

        response = client.get(f"/events/{event.id}/registrations", params={"organizer_id": event.owner_id})
        forbidden = client.get(f"/events/{event.id}/registrations", params={"organizer_id": 1})

        assert response.status_code == 200
        assert sorted(r["user_id"] for r in response.json()) == [1, 2]
        assert forbidden.status_code == 403

    def test_my_registrations(self, client: TestClient, make_event):
        """Test listing a user's registrations across events."""
        first = make_event(capacity=5)
        second = make_event(capacity=5, title="Second")
        register(client, first.id, 7)
        register(client, second.id, 7)

        response = client.get("/users/7/registrations")

        assert response.status_code == 200
        assert sorted(r["event_id"] for r in response.json()) == sorted([first.id, second.id])


class TestEventEndpoints:
    """Test event-level API endpoints."""

    def test_get_event_stats(self, client: TestClient, db_session: Session, make_event):
        """Test getting event statistics via API."""
        event = make_event(capacity=3)
        db_session.add_all(
            [
                Registration(event_id=event.id, user_id=1, attendee_count=1),
                Registration(
                    event_id=event.id, user_id=2, attendee_count=1, status=RegistrationStatus.CONFIRMED.value
                ),
                Registration(
                    event_id=event.id, user_id=3, attendee_count=1, status=RegistrationStatus.CANCELLED.value
                ),
            ]
        )
        db_session.commit()

        response = client.get(f"/events/{event.id}/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["event_id"] == event.id
        assert data["capacity"] == 3
        assert data["total_registrations"] == 2
        assert data["confirmed_attendees"] == 1
        assert data["available_seats"] == 1
        assert data["is_full"] is False

    def test_get_event_stats_not_found(self, client: TestClient):
        """Test getting stats for a nonexistent event."""
        response = client.get("/events/99999/stats")
        assert response.status_code == 404

    def test_waitlist_position(self, client: TestClient, make_event):
        """Test reading a user's place in the waitlist."""
        event = make_event(capacity=1)
        for user_id in (1, 2, 3):
            register(client, event.id, user_id)

        response = client.get(f"/events/{event.id}/waitlist/3")

        assert response.status_code == 200
        data = response.json()
        assert data["position"] == 2
        assert data["position_in_line"] == 2
        assert data["total_waiting"] == 2
        assert data["status"] == "WAITING"

    def test_waitlist_position_not_on_waitlist(self, client: TestClient, make_event):
        """Test reading a position for a user who never queued."""
        event = make_event(capacity=1)

        response = client.get(f"/events/{event.id}/waitlist/1")

        assert response.status_code == 404

    def test_expire_offers(self, client: TestClient, db_session: Session, make_event):
        """Test running the expiry sweep through the API."""
        event = make_event(capacity=1)
        register(client, event.id, 1)
        register(client, event.id, 2)
        register(client, event.id, 3)
        client.delete(f"/events/{event.id}/registrations/1")

        entry = db_session.query(WaitlistEntry).filter_by(event_id=event.id, user_id=2).one()
        entry.expires_at = utcnow() - timedelta(minutes=5)
        db_session.commit()

        response = client.post("/events/waitlist/expire")
        position = client.get(f"/events/{event.id}/waitlist/3").json()

        assert response.status_code == 200
        assert response.json() == {"expired": 1}
        assert position["status"] == "NOTIFIED"
