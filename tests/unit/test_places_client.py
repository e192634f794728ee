"""Tests for the place lookup adapter."""

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from backend.app.adapters.places import PlaceCache, PlaceLookupClient, PlaceResolution

SEARCH_RESPONSE = {
    "places": [
        {
            "id": "ChIJLU7jZClu5kcR4PcOOO6p3I0",
            "displayName": {"text": "Eiffel Tower", "languageCode": "en"},
            "formattedAddress": "Av. Gustave Eiffel, 75007 Paris, France",
            "location": {"latitude": 48.8583701, "longitude": 2.2944813},
            "rating": 4.7,
        }
    ]
}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_resolve_parses_text_search_response() -> None:
    """Test that a Text Search hit becomes a PlaceResolution."""
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json=SEARCH_RESPONSE)

    async with _client(handler) as http:
        places = PlaceLookupClient(api_key="test_key", client=http)
        place = await places.resolve("Eiffel Tower, Paris")

    assert place is not None
    assert place.place_id == "ChIJLU7jZClu5kcR4PcOOO6p3I0"
    assert place.name == "Eiffel Tower"
    assert place.address == "Av. Gustave Eiffel, 75007 Paris, France"
    assert place.coordinates is not None
    assert place.coordinates.lat == pytest.approx(48.8583701)
    assert place.rating == 4.7

    # Verify request shape
    request = captured[0]
    assert request.headers["X-Goog-Api-Key"] == "test_key"
    assert "places.formattedAddress" in request.headers["X-Goog-FieldMask"]
    assert json.loads(request.content) == {"textQuery": "Eiffel Tower, Paris", "maxResultCount": 1}


@pytest.mark.asyncio
async def test_resolve_uses_cache_for_same_normalized_query() -> None:
    """Test that repeated lookups (differing only in case/spacing) hit the cache."""
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=SEARCH_RESPONSE)

    async with _client(handler) as http:
        places = PlaceLookupClient(api_key="test_key", client=http)
        first = await places.resolve("Eiffel Tower")
        second = await places.resolve("  eiffel   TOWER ")

    assert calls == 1
    assert first == second


@pytest.mark.asyncio
async def test_resolve_returns_none_without_api_key() -> None:
    """Test that lookups are disabled (no HTTP call) without a key."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async with _client(handler) as http:
        places = PlaceLookupClient(api_key=None, client=http)

        assert places.enabled is False
        assert await places.resolve("Eiffel Tower") is None


@pytest.mark.asyncio
async def test_resolve_returns_none_on_http_error() -> None:
    """Test that provider errors degrade to None instead of raising."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": {"message": "backend unavailable"}})

    async with _client(handler) as http:
        places = PlaceLookupClient(api_key="test_key", client=http)

        assert await places.resolve("Eiffel Tower") is None


@pytest.mark.asyncio
async def test_resolve_returns_none_on_network_error() -> None:
    """Test that transport failures degrade to None."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as http:
        places = PlaceLookupClient(api_key="test_key", client=http)

        assert await places.resolve("Eiffel Tower") is None


@pytest.mark.asyncio
async def test_resolve_returns_none_when_nothing_found() -> None:
    """Test that an empty result set is not cached as a hit."""
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={})

    async with _client(handler) as http:
        places = PlaceLookupClient(api_key="test_key", client=http)

        assert await places.resolve("Nowhere in particular") is None
        assert await places.resolve("Nowhere in particular") is None

    assert calls == 2


@pytest.mark.asyncio
async def test_blank_query_is_not_looked_up() -> None:
    places = PlaceLookupClient(api_key="test_key")

    assert await places.resolve("   ") is None


def test_cache_is_bounded_and_drops_expired_entries_first() -> None:
    cache = PlaceCache(max_entries=2)
    now = datetime(2025, 6, 10, tzinfo=UTC)
    place = PlaceResolution(place_id="p1", name="Somewhere")

    cache.set("stale", place, ttl_seconds=60, now=now)
    cache.set("fresh", place, ttl_seconds=3600, now=now)
    later = now + timedelta(minutes=5)
    cache.set("new", place, ttl_seconds=3600, now=later)

    assert len(cache) == 2
    assert cache.get("stale", later) is None
    assert cache.get("fresh", later) is not None

    cache.set("newest", place, ttl_seconds=3600, now=later)

    # Nothing expired, so the oldest entry goes
    assert len(cache) == 2
    assert cache.get("fresh", later) is None
    assert cache.get("newest", later) is not None
