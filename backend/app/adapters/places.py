"""Place lookup adapter using the Google Places Text Search API.

Lookup failure is a soft condition: `resolve` returns None on a missing key,
HTTP/network errors or empty results, and callers proceed without the
enriched fields.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from backend.app.config import Settings, get_settings
from backend.app.models.common import Coordinates, WireModel
from backend.app.utils.metrics import PrometheusChatMetrics

logger = logging.getLogger(__name__)

FIELD_MASK = "places.id,places.displayName,places.formattedAddress,places.location,places.rating"


class PlaceResolution(WireModel):
    """Resolved place details."""

    place_id: str
    name: str | None = None
    address: str | None = None
    coordinates: Coordinates | None = None
    rating: float | None = None


@dataclass
class CacheEntry:
    """Cached resolution with metadata."""

    value: PlaceResolution
    cached_at: datetime
    ttl_seconds: int

    def is_fresh(self, now: datetime) -> bool:
        """Check if cache entry is still valid."""
        return (now - self.cached_at).total_seconds() < self.ttl_seconds


class PlaceCache:
    """In-memory TTL cache for place resolutions, bounded to max_entries."""

    def __init__(self, max_entries: int = 1024) -> None:
        self.max_entries = max(1, max_entries)
        self._cache: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._cache)

    def make_key(self, query: str) -> str:
        """Generate deterministic cache key from a normalized query."""
        normalized = " ".join(query.lower().split())
        return f"places:{hashlib.sha256(normalized.encode()).hexdigest()}"

    def get(self, key: str, now: datetime) -> PlaceResolution | None:
        """Get cached value if fresh, None otherwise."""
        entry = self._cache.get(key)
        if entry and entry.is_fresh(now):
            return entry.value
        elif entry:
            # Expired - remove
            del self._cache[key]
        return None

    def set(self, key: str, value: PlaceResolution, ttl_seconds: int, now: datetime) -> None:
        """Store value in cache with TTL, evicting expired then oldest entries when full."""
        self._cache.pop(key, None)
        if len(self._cache) >= self.max_entries:
            self.purge_expired(now)
        while len(self._cache) >= self.max_entries:
            # dicts keep insertion order, so the first key is the oldest
            del self._cache[next(iter(self._cache))]
        self._cache[key] = CacheEntry(value=value, cached_at=now, ttl_seconds=ttl_seconds)

    def purge_expired(self, now: datetime) -> int:
        expired = [k for k, entry in self._cache.items() if not entry.is_fresh(now)]
        for key in expired:
            del self._cache[key]
        return len(expired)


def _parse_place(data: dict[str, Any]) -> PlaceResolution | None:
    places = data.get("places") or []
    if not places:
        return None
    place = places[0]
    location = place.get("location") or {}
    coordinates = None
    if "latitude" in location and "longitude" in location:
        coordinates = Coordinates(lat=location["latitude"], lng=location["longitude"])
    return PlaceResolution(
        place_id=place["id"],
        name=(place.get("displayName") or {}).get("text"),
        address=place.get("formattedAddress"),
        coordinates=coordinates,
        rating=place.get("rating"),
    )


class PlaceLookupClient:
    """Thin cached client for place resolution."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://places.googleapis.com/v1/places:searchText",
        timeout: float = 4.0,
        cache_ttl_seconds: int = 24 * 3600,
        cache_max_entries: int = 1024,
        client: httpx.AsyncClient | None = None,
        metrics: PrometheusChatMetrics | None = None,
    ) -> None:
        """Initialize lookup client.

        Args:
            api_key: Places API key; None disables lookups
            base_url: Text Search endpoint
            timeout: Request timeout in seconds
            cache_ttl_seconds: How long resolutions stay cached
            cache_max_entries: Upper bound on cached resolutions
            client: Optional httpx client (for testing with mocks)
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.cache_ttl_seconds = cache_ttl_seconds
        self.cache = PlaceCache(cache_max_entries)
        self._client = client
        self.metrics = metrics or PrometheusChatMetrics()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PlaceLookupClient":
        settings = settings or get_settings()
        key = settings.places_api_key.get_secret_value() if settings.places_api_key else None
        return cls(
            api_key=key or None,
            base_url=settings.places_base_url,
            timeout=settings.places_timeout_seconds,
            cache_ttl_seconds=settings.places_cache_ttl_seconds,
            cache_max_entries=settings.places_cache_max_entries,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def resolve(self, query: str) -> PlaceResolution | None:
        """Resolve free text to a place, or None when the lookup fails."""
        if not query.strip():
            return None
        if not self.enabled:
            self.metrics.inc_place_lookup("disabled")
            return None

        now = datetime.now(UTC)
        key = self.cache.make_key(query)
        cached = self.cache.get(key, now)
        if cached is not None:
            self.metrics.inc_place_lookup("cache_hit")
            return cached

        try:
            resolution = _parse_place(await self._search(query))
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Place lookup failed for '{query}': {type(e).__name__}: {e}")
            self.metrics.inc_place_lookup("error")
            return None

        if resolution is None:
            self.metrics.inc_place_lookup("not_found")
            return None

        self.cache.set(key, resolution, self.cache_ttl_seconds, now)
        self.metrics.inc_place_lookup("success")
        return resolution

    async def _search(self, query: str) -> dict[str, Any]:
        headers = {
            "X-Goog-Api-Key": self.api_key or "",
            "X-Goog-FieldMask": FIELD_MASK,
        }
        body = {"textQuery": query, "maxResultCount": 1}

        close_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=self.timeout)
            close_client = True

        try:
            response = await client.post(self.base_url, json=body, headers=headers)
            response.raise_for_status()
            data: dict[str, Any] = response.json()
            return data
        finally:
            if close_client:
                await client.aclose()
