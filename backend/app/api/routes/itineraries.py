"""Itinerary endpoints - create, fetch, revision history and rollback."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from backend.app.api.deps import ServiceContainer, get_container
from backend.app.changes.engine import VersionConflict
from backend.app.changes.service import Committed
from backend.app.db.repositories import ItineraryNotFoundError, RevisionNotFoundError
from backend.app.models.changes import RevisionInfo
from backend.app.models.chat import ApplyResponse
from backend.app.models.common import ErrorCode, WireModel
from backend.app.models.itinerary import Itinerary

router = APIRouter(prefix="/itineraries", tags=["itineraries"])

Container = Annotated[ServiceContainer, Depends(get_container)]


class CreateItineraryResponse(WireModel):
    """Response for POST /itineraries."""

    itinerary: Itinerary
    revision: RevisionInfo


class RollbackResponse(ApplyResponse):
    """Response for POST /itineraries/{id}/revisions/{revision_id}/rollback."""

    revision: RevisionInfo | None = None


def _itinerary_not_found(itinerary_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Itinerary {itinerary_id} not found",
    )


@router.post("", response_model=CreateItineraryResponse, status_code=status.HTTP_201_CREATED)
async def create_itinerary(itinerary: Itinerary, container: Container) -> CreateItineraryResponse:
    """Store a new itinerary and record its baseline revision."""
    try:
        stored, revision = await container.service.create_itinerary(itinerary)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return CreateItineraryResponse(itinerary=stored, revision=revision)


@router.get("/{itinerary_id}", response_model=Itinerary)
async def get_itinerary(itinerary_id: str, container: Container) -> Itinerary:
    try:
        return await container.service.get_itinerary(itinerary_id)
    except ItineraryNotFoundError as e:
        raise _itinerary_not_found(itinerary_id) from e


@router.get("/{itinerary_id}/revisions", response_model=list[RevisionInfo])
async def list_revisions(itinerary_id: str, container: Container) -> list[RevisionInfo]:
    """Revision history, oldest first."""
    try:
        await container.service.get_itinerary(itinerary_id)
    except ItineraryNotFoundError as e:
        raise _itinerary_not_found(itinerary_id) from e
    return await container.service.revisions.list_revisions(itinerary_id)


@router.post("/{itinerary_id}/revisions/{revision_id}/rollback", response_model=RollbackResponse)
async def rollback(itinerary_id: str, revision_id: str, container: Container) -> RollbackResponse:
    """Restore a revision's content as a new version.

    History is never rewritten: the rollback is itself a new revision.
    """
    try:
        result = await container.service.rollback_to_revision(itinerary_id, revision_id)
    except ItineraryNotFoundError as e:
        raise _itinerary_not_found(itinerary_id) from e
    except RevisionNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Revision {e.revision_id} not found",
        ) from e

    if isinstance(result, Committed):
        return RollbackResponse(
            success=True,
            message=result.revision.description,
            version=result.itinerary.version,
            diff=result.diff,
            revision=result.revision,
        )
    if isinstance(result, VersionConflict):
        return RollbackResponse(
            success=False,
            message=result.message,
            version=result.current_version,
            error_code=ErrorCode.STALE_VERSION_CONFLICT,
        )
    return RollbackResponse(
        success=False, message=result.message, error_code=ErrorCode.VALIDATION_ERROR
    )
