"""Integration tests for the chat and itinerary endpoints."""

from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from backend.app.api.deps import ServiceContainer
from backend.app.main import create_app
from backend.app.models.itinerary import Itinerary

TRIP = "trip_paris"


@pytest.fixture
def client(container: ServiceContainer, itinerary: Itinerary) -> Iterator[TestClient]:
    """Test client with the Paris itinerary already created."""
    with TestClient(create_app(container)) as client:
        response = client.post(
            "/itineraries", json=itinerary.model_dump(mode="json", by_alias=True)
        )
        assert response.status_code == 201
        yield client


def _chat(client: TestClient, text: str, **extra: Any) -> dict[str, Any]:
    response = client.post("/chat", json={"itineraryId": TRIP, "text": text, **extra})
    assert response.status_code == 200
    data: dict[str, Any] = response.json()
    return data


def _node_entry(diff: dict[str, Any], node_id: str) -> dict[str, Any] | None:
    return next(
        (e for e in diff["entries"] if e["entity"] == "node" and e["ref"] == node_id), None
    )


class TestItineraryRoutes:
    def test_create_returns_baseline_revision(
        self, container: ServiceContainer, itinerary: Itinerary
    ) -> None:
        with TestClient(create_app(container)) as client:
            response = client.post(
                "/itineraries", json=itinerary.model_dump(mode="json", by_alias=True)
            )

        assert response.status_code == 201
        data = response.json()
        assert data["itinerary"]["version"] == 1
        assert data["revision"]["version"] == 1
        assert data["revision"]["itineraryId"] == TRIP

    def test_create_duplicate_is_conflict(self, client: TestClient, itinerary: Itinerary) -> None:
        response = client.post(
            "/itineraries", json=itinerary.model_dump(mode="json", by_alias=True)
        )

        assert response.status_code == 409

    def test_get_itinerary_uses_camel_case(self, client: TestClient) -> None:
        response = client.get(f"/itineraries/{TRIP}")

        assert response.status_code == 200
        data = response.json()
        assert data["days"][0]["dayNumber"] == 1
        assert data["days"][0]["nodes"][1]["timing"]["startTime"] == "12:00"

    def test_unknown_itinerary_is_404(self, client: TestClient) -> None:
        assert client.get("/itineraries/nope").status_code == 404
        assert client.get("/itineraries/nope/revisions").status_code == 404

    def test_rollback_appends_revision(self, client: TestClient) -> None:
        _chat(client, "delete breakfast", autoApply=True)
        revisions = client.get(f"/itineraries/{TRIP}/revisions").json()
        assert [r["version"] for r in revisions] == [1, 2]

        response = client.post(f"/itineraries/{TRIP}/revisions/{revisions[0]['id']}/rollback")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["version"] == 3
        assert data["revision"]["description"] == "Rolled back to version 1"
        itinerary = client.get(f"/itineraries/{TRIP}").json()
        assert itinerary["days"][0]["nodes"][0]["id"] == "n_breakfast"
        assert len(client.get(f"/itineraries/{TRIP}/revisions").json()) == 3

    def test_rollback_to_unknown_revision_is_404(self, client: TestClient) -> None:
        response = client.post(f"/itineraries/{TRIP}/revisions/rev_missing/rollback")

        assert response.status_code == 404


class TestChatRoutes:
    def test_two_lunches_disambiguation_end_to_end(self, client: TestClient) -> None:
        """Moving "lunch" with two Lunch nodes asks first, then moves only the chosen one."""
        first = _chat(client, "move lunch to 2pm")

        assert first["needsDisambiguation"] is True
        assert first["errorCode"] == "AMBIGUOUS_TARGET"
        assert [c["id"] for c in first["candidates"]] == ["n_lunch_1", "n_lunch_2"]
        assert "changeSet" not in first or first["changeSet"] is None

        response = client.post(
            "/chat/disambiguate",
            json={
                "itineraryId": TRIP,
                "originalText": "move lunch to 2pm",
                "selectedCandidate": first["candidates"][0],
                "autoApply": True,
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["applied"] is True
        assert data["version"] == 2
        entry = _node_entry(data["diff"], "n_lunch_1")
        assert entry is not None
        assert entry["after"]["timing"]["startTime"] == "14:00"
        assert _node_entry(data["diff"], "n_lunch_2") is None

        itinerary = client.get(f"/itineraries/{TRIP}").json()
        assert itinerary["version"] == 2
        lunches = {
            n["id"]: n["timing"]["startTime"]
            for n in itinerary["days"][0]["nodes"]
            if n["title"] == "Lunch"
        }
        assert lunches == {"n_lunch_1": "14:00", "n_lunch_2": "17:00"}

    def test_disambiguate_accepts_bare_node_id(self, client: TestClient) -> None:
        _chat(client, "move lunch to 2pm")

        response = client.post(
            "/chat/disambiguate",
            json={
                "itineraryId": TRIP,
                "originalText": "move lunch to 2pm",
                "selectedCandidate": "n_lunch_2",
            },
        )

        data = response.json()
        assert data["applied"] is False
        assert data["changeSet"]["ops"][0]["target"]["nodeId"] == "n_lunch_2"

    def test_preview_then_apply_then_stale_apply(self, client: TestClient) -> None:
        preview = _chat(client, "delete breakfast on day 1")
        assert preview["applied"] is False
        body = {"itineraryId": TRIP, "changeSet": preview["changeSet"]}

        applied = client.post("/chat/apply", json=body)
        stale = client.post("/chat/apply", json=body)

        assert applied.status_code == 200
        assert applied.json()["success"] is True
        assert applied.json()["version"] == 2
        assert stale.status_code == 200
        assert stale.json()["success"] is False
        assert stale.json()["errorCode"] == "STALE_VERSION_CONFLICT"
        assert stale.json()["version"] == 2

    def test_chat_on_unknown_itinerary_is_404(self, client: TestClient) -> None:
        response = client.post("/chat", json={"itineraryId": "nope", "text": "hello"})

        assert response.status_code == 404

    def test_empty_text_is_rejected(self, client: TestClient) -> None:
        response = client.post("/chat", json={"itineraryId": TRIP, "text": ""})

        assert response.status_code == 422

    def test_history_and_clear(self, client: TestClient) -> None:
        _chat(client, "hello")
        _chat(client, "what's on day 1?")

        history = client.get(f"/chat/{TRIP}/history").json()
        assert [m["sender"] for m in history] == ["user", "assistant", "user", "assistant"]
        assert history[0]["text"] == "hello"

        latest = client.get(f"/chat/{TRIP}/history", params={"limit": 1}).json()
        assert [m["sender"] for m in latest] == ["assistant"]

        cleared = client.delete(f"/chat/{TRIP}/history")
        assert cleared.json() == {"deleted": 4}
        assert client.get(f"/chat/{TRIP}/history").json() == []
        assert client.get(f"/itineraries/{TRIP}").json()["version"] == 1
