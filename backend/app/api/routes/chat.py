"""Chat endpoints - chat turns, disambiguation selections, explicit apply, history."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from backend.app.api.deps import ServiceContainer, get_container
from backend.app.db.repositories import ItineraryNotFoundError
from backend.app.models.chat import (
    ApplyRequest,
    ApplyResponse,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    DisambiguateRequest,
)

router = APIRouter(prefix="/chat", tags=["chat"])

Container = Annotated[ServiceContainer, Depends(get_container)]


class ClearHistoryResponse(BaseModel):
    """Response for DELETE /chat/{itinerary_id}/history."""

    deleted: int


def _not_found(e: ItineraryNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Itinerary {e.itinerary_id} not found",
    )


@router.post("", response_model=ChatResponse)
async def chat(request: ChatRequest, container: Container) -> ChatResponse:
    """Run one chat turn against an itinerary.

    Proposals come back as a preview unless `autoApply` is set (or enabled
    by default in settings).
    """
    try:
        return await container.orchestrator.handle_chat(request)
    except ItineraryNotFoundError as e:
        raise _not_found(e) from e


@router.post("/disambiguate", response_model=ChatResponse)
async def disambiguate(request: DisambiguateRequest, container: Container) -> ChatResponse:
    """Resolve a pending "which one did you mean?" with the chosen candidate."""
    try:
        return await container.orchestrator.handle_disambiguation(request)
    except ItineraryNotFoundError as e:
        raise _not_found(e) from e


@router.post("/apply", response_model=ApplyResponse)
async def apply(request: ApplyRequest, container: Container) -> ApplyResponse:
    """Apply a previewed ChangeSet.

    Conflicts and validation failures are reported in the body with
    `success=false`, not as HTTP errors.
    """
    try:
        return await container.orchestrator.apply_change_set(request)
    except ItineraryNotFoundError as e:
        raise _not_found(e) from e


@router.get("/{itinerary_id}/history", response_model=list[ChatMessage])
async def get_history(
    itinerary_id: str,
    container: Container,
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
) -> list[ChatMessage]:
    """Chat log for an itinerary, oldest first."""
    return await container.chat_history.list_for(itinerary_id, limit=limit)


@router.delete("/{itinerary_id}/history", response_model=ClearHistoryResponse)
async def clear_history(itinerary_id: str, container: Container) -> ClearHistoryResponse:
    """Clear the chat log. The itinerary and its revisions are untouched."""
    deleted = await container.chat_history.clear(itinerary_id)
    return ClearHistoryResponse(deleted=deleted)
