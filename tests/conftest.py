"""Shared pytest fixtures for all test suites."""

import os
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from backend.app.adapters.places import PlaceResolution
from backend.app.api.deps import ServiceContainer, build_container
from backend.app.changes.revisions import RevisionStore
from backend.app.changes.service import ChangeService
from backend.app.config import Settings
from backend.app.db.inmemory import InMemoryItineraryRepository, InMemoryRevisionRepository
from backend.app.db.models import Base
from backend.app.llm.client import LLMUnavailableError
from backend.app.models.common import Coordinates, NodeType
from backend.app.models.itinerary import Day, Itinerary, Node, NodeLocation, NodeTiming
from backend.app.realtime.hub import SyncHub

NodeFactory = Callable[..., Node]


class FakeLLM:
    """Structured generation client returning queued responses in order.

    Queue strings (JSON) or exceptions; an empty queue behaves like a
    missing API key.
    """

    def __init__(self, *responses: str | Exception) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def generate(self, prompt: str, *, schema: dict[str, Any], system_prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise LLMUnavailableError("no response queued")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakePlaces:
    """Place lookup resolving only the queries it was given, by substring."""

    def __init__(self, known: dict[str, PlaceResolution] | None = None, enabled: bool = True):
        self.known = known or {}
        self._enabled = enabled
        self.queries: list[str] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def resolve(self, query: str) -> PlaceResolution | None:
        self.queries.append(query)
        if not self._enabled:
            return None
        for key, place in self.known.items():
            if key.lower() in query.lower():
                return place
        return None


@pytest.fixture
def make_llm() -> type[FakeLLM]:
    return FakeLLM


@pytest.fixture
def make_places() -> type[FakePlaces]:
    return FakePlaces


@pytest.fixture
def make_node() -> NodeFactory:
    """Build a node with terse arguments."""

    def _make(
        node_id: str,
        title: str,
        start: str | None = None,
        end: str | None = None,
        *,
        type: NodeType = NodeType.activity,
        locked: bool = False,
        **fields: Any,
    ) -> Node:
        return Node(
            id=node_id,
            type=type,
            title=title,
            timing=NodeTiming(start_time=start, end_time=end),
            locked=locked,
            location=fields.pop("location", NodeLocation(name=title)),
            **fields,
        )

    return _make


@pytest.fixture
def itinerary(make_node: NodeFactory) -> Itinerary:
    """Two-day Paris trip; day 1 has two nodes titled "Lunch"."""
    return Itinerary(
        id="trip_paris",
        version=1,
        title="Paris long weekend",
        start_date="2025-06-10",
        end_date="2025-06-11",
        days=[
            Day(
                day_number=1,
                date="2025-06-10",
                location="Paris",
                nodes=[
                    make_node("n_breakfast", "Breakfast at the hotel", "08:00", "09:00",
                              type=NodeType.meal),
                    make_node("n_lunch_1", "Lunch", "12:00", "13:00", type=NodeType.meal),
                    make_node("n_louvre", "Louvre Museum", "13:30", "16:30",
                              type=NodeType.attraction),
                    make_node("n_lunch_2", "Lunch", "17:00", "18:00", type=NodeType.meal),
                ],
            ),
            Day(
                day_number=2,
                date="2025-06-11",
                location="Paris",
                nodes=[
                    make_node("n_orsay", "Musée d'Orsay", "10:00", "12:00",
                              type=NodeType.attraction),
                    make_node("n_bistro", "Dinner at Le Comptoir", "19:30", "21:00",
                              type=NodeType.meal),
                    make_node("n_train", "Train to Lyon", "22:00", None,
                              type=NodeType.transport, locked=True),
                ],
            ),
        ],
    )  # fmt: skip


@pytest.fixture
def eiffel() -> PlaceResolution:
    return PlaceResolution(
        place_id="place_eiffel",
        name="Eiffel Tower",
        address="Champ de Mars, 5 Av. Anatole France, 75007 Paris",
        coordinates=Coordinates(lat=48.8584, lng=2.2945),
        rating=4.7,
    )


@pytest.fixture
def hub() -> SyncHub:
    return SyncHub(queue_size=100)


@pytest.fixture
def service(hub: SyncHub) -> ChangeService:
    """Change service over in-memory repositories."""
    return ChangeService(
        InMemoryItineraryRepository(),
        RevisionStore(InMemoryRevisionRepository()),
        hub,
    )


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url=None,
        openai_api_key=None,
        places_api_key=None,
    )


@pytest.fixture
def container(settings: Settings) -> ServiceContainer:
    """In-memory application wiring with fake LLM and place lookup."""
    return build_container(settings, llm=FakeLLM(), places=FakePlaces())  # type: ignore[arg-type]


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for PostgreSQL integration tests.

    Requires DATABASE_URL to be set to a real PostgreSQL connection string.
    Tests using this fixture should be marked with @pytest.mark.postgres.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping postgres test")

    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(database_url, poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()
