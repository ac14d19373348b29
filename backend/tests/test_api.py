"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from journeyflow.main import create_app
from conftest import make_runtime

YES = {"type": "email_response", "response": "yes"}


@pytest.fixture
def client(runtime):
    app = create_app(runtime=runtime, run_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def registered(client, sample_journey):
    response = client.post("/journeys", json=sample_journey)
    assert response.status_code == 200
    return response.json()["data"]


class TestJourneyEndpoints:
    """Tests for /journeys."""

    def test_create_journey(self, client, sample_journey):
        response = client.post("/journeys", json=sample_journey)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] is True
        assert body["message"] == "Journey created successfully."
        assert body["data"]["version"] == 1
        assert body["data"]["blocks"][0]["next"] == "Wait for Email Response"
        assert body["data"]["blocks"][1]["onMatchNext"] == "Add to CRM"

    def test_replace_by_default(self, client, registered, sample_journey):
        response = client.post("/journeys", json=sample_journey)

        assert response.status_code == 200
        assert response.json()["data"]["version"] == 2

    def test_duplicate_without_replace(self, client, registered, sample_journey):
        response = client.post("/journeys", params={"replace": "false"}, json=sample_journey)

        assert response.status_code == 409

    def test_invalid_graph(self, client):
        response = client.post("/journeys", json={
            "name": "Broken",
            "blocks": [{"type": "action", "name": "A", "action": "email", "next": "Nowhere"}],
        })

        assert response.status_code == 400
        assert response.json()["detail"]["problems"] == ["block A: next references unknown block Nowhere"]

    def test_schema_error(self, client):
        response = client.post("/journeys", json={"blocks": []})

        assert response.status_code == 422

    def test_wait_with_legacy_reminder_channel(self, client):
        """Should accept a wait block that names its reminder channel as a string."""
        response = client.post("/journeys", json={
            "name": "Legacy_Wait",
            "blocks": [
                {"type": "action", "name": "Send Email", "action": "email", "emailContent": "Hi", "next": 1},
                {
                    "type": "wait",
                    "name": "Wait for Email Response",
                    "event": "email_response",
                    "criteria": {"response": "yes"},
                    "action": "whatsapp",
                    "whatsappContent": "reminder",
                    "timeout": 86400,
                },
            ],
        })

        assert response.status_code == 200
        reminder = response.json()["data"]["blocks"][1]["reminder"]
        assert reminder == {"kind": "message", "content": "reminder"}

    def test_list_journeys(self, client):
        assert client.get("/journeys").json() == {"status": False, "message": "No Journey Found"}

    def test_list_registered_journeys(self, client, registered):
        body = client.get("/journeys").json()

        assert body["status"] is True
        assert [journey["name"] for journey in body["data"]] == ["Sample_Journey"]

    def test_get_journey(self, client, registered):
        assert client.get("/journeys/Sample_Journey").json()["data"]["name"] == "Sample_Journey"
        assert client.get("/journeys/Nope").status_code == 404

    def test_enroll(self, client, registered):
        response = client.post("/journeys/Sample_Journey/enroll/123")

        assert response.status_code == 200
        assert response.json()["data"]["currentBlock"] == "Send Email"
        assert client.post("/journeys/Nope/enroll/123").status_code == 404


class TestEventEndpoint:
    """Tests for /events/{journeyName}/{userId}."""

    def test_sample_journey(self, client, registered):
        """A "yes" from user 123 leaves them on Add to CRM and in the CRM list once."""
        response = client.post("/events/Sample_Journey/123", json=YES)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] is True
        assert body["message"] == "Event processed successfully."
        assert body["outcome"]["kind"] == "matched"
        assert body["outcome"]["toBlock"] == "Add to CRM"

        client.post("/events/Sample_Journey/123", json={"type": "email_response", "response": "no"})

        users = client.get("/users").json()["data"]
        assert [(user["userId"], user["currentBlock"]) for user in users] == [("123", None)]
        assert client.get("/crm-users").json() == {"status": True, "data": ["123"]}

    def test_unknown_journey(self, client):
        response = client.post("/events/Nope/123", json=YES)

        assert response.status_code == 404

    def test_tick_is_reserved(self, client, registered):
        response = client.post("/events/Sample_Journey/123", json={"type": "tick"})

        assert response.status_code == 400
        assert client.get("/users").json()["status"] is False

    def test_missing_type(self, client, registered):
        response = client.post("/events/Sample_Journey/123", json={"response": "yes"})

        assert response.status_code == 422

    def test_rejected_event_is_reported(self, client, registered):
        client.post("/events/Sample_Journey/123", json={"type": "email_sent"})

        response = client.post("/events/Sample_Journey/123", json={"type": "link_clicked"})

        assert response.status_code == 200
        assert response.json()["outcome"]["kind"] == "rejected"

    def test_without_auto_enroll(self, clock, sample_journey):
        app = create_app(runtime=make_runtime(clock, auto_enroll=False), run_scheduler=False)
        with TestClient(app) as client:
            client.post("/journeys", json=sample_journey)

            assert client.post("/events/Sample_Journey/123", json=YES).status_code == 404

            client.post("/journeys/Sample_Journey/enroll/123")
            assert client.post("/events/Sample_Journey/123", json=YES).status_code == 200


class TestUserEndpoints:
    """Tests for /users and /crm-users."""

    def test_empty(self, client):
        assert client.get("/users").json() == {"status": False, "message": "No User Found"}
        assert client.get("/crm-users").json() == {"status": False, "message": "No User Found"}

    def test_get_user(self, client, registered):
        assert client.get("/users/123").status_code == 404

        client.post("/events/Sample_Journey/123", json=YES)
        body = client.get("/users/123").json()

        assert body["data"][0]["journeyName"] == "Sample_Journey"
        assert body["data"][0]["currentBlock"] == "Add to CRM"

    def test_journal(self, client, registered):
        client.post("/events/Sample_Journey/123", json=YES)

        body = client.get("/users/123/journal", params={"journey": "Sample_Journey"}).json()

        assert [entry["message"] for entry in body["data"]] == [
            "User enrolled.",
            "Event email_response matched block Wait for Email Response.",
        ]


class TestServiceEndpoints:
    def test_root(self, client):
        assert client.get("/").json() == {"message": "Journeyflow API"}

    def test_health(self, client, registered):
        client.post("/events/Sample_Journey/123", json=YES)

        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["database"] == "not_used"
        assert body["scheduler"] == "stopped"
        assert body["statistics"]["matched"] == 1
        assert body["statistics"]["enrollments"] == 1
