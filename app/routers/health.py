"""
Health check endpoint: database and Ollama reachability.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db, ping
from app.dependencies.services import get_llm_service
from app.models.schemas import HealthCheckResponse
from app.services.llm_service import OllamaLLMService

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    llm: OllamaLLMService = Depends(get_llm_service),
) -> HealthCheckResponse:
    """
    ``healthy`` when both dependencies answer, ``degraded`` otherwise.

    A missing model server only degrades the service: uploads still
    complete with fallback mind maps and questions.
    """
    database_ok = await ping(db)
    ollama_ok = await llm.check_health()

    return HealthCheckResponse(
        status="healthy" if database_ok and ollama_ok else "degraded",
        database="ok" if database_ok else "error",
        ollama="ok" if ollama_ok else "error",
        timestamp=datetime.now(timezone.utc),
    )
