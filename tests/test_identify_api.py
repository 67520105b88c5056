"""
Tests for the Identify API.

Exercises POST /identify end to end over an in-memory contact store, plus
the error mapping, the banner route and the health check.
"""
import logging

import pytest
from unittest.mock import MagicMock

from api.services.errors import RepositoryError
from api.services.identity_resolver import IdentityResolver

# Mark all tests in this module as unit tests
pytestmark = pytest.mark.unit


@pytest.fixture
def api_resolver(memory_store, monkeypatch):
    """Route the endpoint to a resolver over the in-memory store."""
    resolver = IdentityResolver(store=memory_store, normalize=False)
    monkeypatch.setattr("api.routes.identify.get_identity_resolver", lambda: resolver)
    monkeypatch.setattr("api.services.contact_store._contact_store", memory_store)
    return resolver


@pytest.fixture
def client():
    """Create test client."""
    from fastapi.testclient import TestClient
    from api.main import app
    return TestClient(app)


class TestIdentifyAPI:
    """Tests for POST /identify."""

    def test_new_contact(self, client, api_resolver):
        """First sighting creates a primary."""
        response = client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"})

        assert response.status_code == 200
        assert response.json() == {
            "primaryContactId": 1,
            "emails": ["lorraine@hillvalley.edu"],
            "phoneNumbers": ["123456"],
            "secondaryContactIds": [],
        }

    def test_secondary_created_for_new_email(self, client, api_resolver, memory_store):
        """Shared phone with a new email links a secondary."""
        client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"})
        response = client.post("/identify", json={"email": "mcfly@hillvalley.edu", "phoneNumber": "123456"})

        assert response.status_code == 200
        assert response.json() == {
            "primaryContactId": 1,
            "emails": ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"],
            "phoneNumbers": ["123456"],
            "secondaryContactIds": [2],
        }
        assert memory_store.count() == 2

    @pytest.mark.parametrize("body", [
        {"email": None, "phoneNumber": "123456"},
        {"email": "lorraine@hillvalley.edu", "phoneNumber": None},
        {"email": "mcfly@hillvalley.edu"},
        {"phoneNumber": "123456"},
    ])
    def test_partial_requests_return_whole_cluster(self, client, api_resolver, body):
        """Any single identifier from the cluster returns the same view."""
        client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"})
        client.post("/identify", json={"email": "mcfly@hillvalley.edu", "phoneNumber": "123456"})

        response = client.post("/identify", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["primaryContactId"] == 1
        assert data["emails"] == ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"]
        assert data["secondaryContactIds"] == [2]

    def test_merge_two_primaries(self, client, api_resolver, memory_store):
        """A bridging request merges clusters under the older primary."""
        client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "919191"})
        client.post("/identify", json={"email": "biffsucks@hillvalley.edu", "phoneNumber": "717171"})

        response = client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "717171"})

        assert response.status_code == 200
        assert response.json() == {
            "primaryContactId": 1,
            "emails": ["george@hillvalley.edu", "biffsucks@hillvalley.edu"],
            "phoneNumbers": ["919191", "717171"],
            "secondaryContactIds": [2],
        }
        assert memory_store.find_by_id(2).linked_id == 1

    def test_numeric_phone_number(self, client, api_resolver):
        """JSON numbers are accepted for phoneNumber."""
        response = client.post("/identify", json={"email": "doc@hillvalley.edu", "phoneNumber": 123456})

        assert response.status_code == 200
        assert response.json()["phoneNumbers"] == ["123456"]

    @pytest.mark.parametrize("body", [
        {},
        {"email": None, "phoneNumber": None},
        {"email": "", "phoneNumber": ""},
    ])
    def test_missing_identifiers_rejected(self, client, api_resolver, memory_store, body):
        """Requests without identifiers get 400 and write nothing."""
        response = client.post("/identify", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": "Email or phoneNumber is required"}
        assert memory_store.count() == 0

    def test_malformed_body_rejected(self, client, api_resolver):
        """Wrong field types are a 400 validation error."""
        response = client.post("/identify", json={"email": ["not", "a", "string"]})

        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"

    def test_repository_failure_is_500(self, client, monkeypatch, caplog):
        """Store failures return a generic 500 and log the traceback."""
        resolver = MagicMock()
        resolver.resolve.side_effect = RepositoryError("insert", "database is locked")
        monkeypatch.setattr("api.routes.identify.get_identity_resolver", lambda: resolver)

        with caplog.at_level(logging.ERROR, logger="api.routes.identify"):
            response = client.post("/identify", json={"email": "a@x.com"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        records = [r for r in caplog.records if r.name == "api.routes.identify"]
        assert records and records[0].exc_info is not None
        assert records[0].exc_info[0] is RepositoryError

    def test_unexpected_failure_is_500(self, client, monkeypatch):
        """Unexpected exceptions are also mapped to 500."""
        resolver = MagicMock()
        resolver.resolve.side_effect = RuntimeError("bug")
        monkeypatch.setattr("api.routes.identify.get_identity_resolver", lambda: resolver)

        response = client.post("/identify", json={"email": "a@x.com"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


class TestServiceRoutes:
    """Tests for the banner and health endpoints."""

    def test_root_banner(self, client):
        """GET / answers with a plain-text banner."""
        response = client.get("/")

        assert response.status_code == 200
        assert "Identity API" in response.text

    def test_health_healthy(self, client, api_resolver):
        """Health reports the database check."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"] is True

    def test_health_degraded(self, client, monkeypatch):
        """A failing store makes health degraded."""
        store = MagicMock()
        store.count.side_effect = RepositoryError("count", "unable to open database file")
        monkeypatch.setattr("api.services.contact_store._contact_store", store)

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["checks"]["database"] is False
