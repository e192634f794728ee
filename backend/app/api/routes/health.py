"""Health check endpoints.

- /health: liveness, always 200 while the process is up
- /healthz: component status; 503 if the database is unreachable
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.api.deps import ServiceContainer, get_container

router = APIRouter()


async def check_db(engine: AsyncEngine | None) -> tuple[bool, str]:
    """Check database connectivity.

    Returns:
        (is_ok, status_message)
    """
    if engine is None:
        return (True, "in_memory")

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


def check_llm(container: ServiceContainer) -> str:
    key = container.settings.openai_api_key
    return "configured" if key and key.get_secret_value() else "stub"


def check_places(container: ServiceContainer) -> str:
    return "configured" if container.places.enabled else "disabled"


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> dict[str, Any] | JSONResponse:
    """Component health.

    The LLM and place lookup are optional: without them the service still
    answers, with fewer capabilities, so they never fail the check.
    """
    db_ok, db_status = await check_db(container.db_engine)

    response_body = {
        "status": "ok" if db_ok else "degraded",
        "components": {
            "db": db_status,
            "llm": check_llm(container),
            "places": check_places(container),
            "agents": ",".join(a.name for a in container.registry.agents()),
        },
    }

    if not db_ok:
        return JSONResponse(content=response_body, status_code=503)

    return response_body
