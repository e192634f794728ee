"""Service wiring shared by the routes."""

import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.adapters.places import PlaceLookupClient
from backend.app.agents.booking import BookingAgent
from backend.app.agents.editor import EditorAgent
from backend.app.agents.enrichment import EnrichmentAgent
from backend.app.agents.planner import PlannerAgent
from backend.app.changes.engine import ChangeEngine
from backend.app.changes.revisions import RevisionStore
from backend.app.changes.service import ChangeService
from backend.app.config import Settings, get_settings
from backend.app.db.engine import create_async_engine_from_settings, create_session_factory
from backend.app.db.inmemory import (
    InMemoryChatHistoryRepository,
    InMemoryItineraryRepository,
    InMemoryRevisionRepository,
)
from backend.app.db.repositories import (
    ChatHistoryRepository,
    ItineraryRepository,
    RevisionRepository,
)
from backend.app.db.sql_repositories import (
    SqlChatHistoryRepository,
    SqlItineraryRepository,
    SqlRevisionRepository,
)
from backend.app.llm.client import StructuredGenerationClient, get_llm_client
from backend.app.orchestration.classifier import IntentClassifier
from backend.app.orchestration.disambiguation import DisambiguationResolver
from backend.app.orchestration.orchestrator import ChatOrchestrator
from backend.app.orchestration.registry import AgentRegistry
from backend.app.realtime.hub import SyncHub
from backend.app.utils.metrics import PrometheusChatMetrics

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything the routes need, built once per application."""

    settings: Settings
    service: ChangeService
    orchestrator: ChatOrchestrator
    chat_history: ChatHistoryRepository
    hub: SyncHub
    registry: AgentRegistry
    places: PlaceLookupClient
    db_engine: AsyncEngine | None = None


def build_registry(
    llm: StructuredGenerationClient, places: PlaceLookupClient, engine: ChangeEngine
) -> AgentRegistry:
    return AgentRegistry(
        [
            EditorAgent(llm, places=places, engine=engine),
            BookingAgent(engine=engine),
            PlannerAgent(llm, places=places, engine=engine),
            EnrichmentAgent(places, engine=engine),
        ]
    )


def build_container(
    settings: Settings | None = None,
    *,
    llm: StructuredGenerationClient | None = None,
    places: PlaceLookupClient | None = None,
) -> ServiceContainer:
    """Wire repositories, services, agents and the orchestrator.

    SQL repositories are used when DATABASE_URL is set; otherwise state lives
    in memory for the lifetime of the process.
    """
    settings = settings or get_settings()
    metrics = PrometheusChatMetrics()

    db_engine = None
    itineraries: ItineraryRepository
    revisions: RevisionRepository
    chat_history: ChatHistoryRepository
    if settings.database_url:
        db_engine = create_async_engine_from_settings(settings)
        session_factory = create_session_factory(db_engine)
        itineraries = SqlItineraryRepository(session_factory)
        revisions = SqlRevisionRepository(session_factory)
        chat_history = SqlChatHistoryRepository(session_factory)
        logger.info("Using SQL repositories")
    else:
        itineraries = InMemoryItineraryRepository()
        revisions = InMemoryRevisionRepository()
        chat_history = InMemoryChatHistoryRepository()
        logger.info("DATABASE_URL not set, using in-memory repositories")

    llm = llm or get_llm_client(settings)
    places = places or PlaceLookupClient.from_settings(settings)
    engine = ChangeEngine()
    hub = SyncHub(queue_size=settings.realtime_queue_size, metrics=metrics)
    service = ChangeService(
        itineraries, RevisionStore(revisions), hub, engine=engine, metrics=metrics
    )
    registry = build_registry(llm, places, engine)
    orchestrator = ChatOrchestrator(
        service,
        IntentClassifier(llm, threshold=settings.intent_confidence_threshold),
        registry,
        DisambiguationResolver(settings.disambiguation_idle_timeout_seconds),
        chat_history,
        settings=settings,
        metrics=metrics,
    )
    return ServiceContainer(
        settings=settings,
        service=service,
        orchestrator=orchestrator,
        chat_history=chat_history,
        hub=hub,
        registry=registry,
        places=places,
        db_engine=db_engine,
    )


def get_container(request: Request) -> ServiceContainer:
    container: ServiceContainer = request.app.state.container
    return container
