"""
Health check endpoint.

Reports the database and the embedding API separately; the service is
``degraded`` rather than down when only the embedding API is unreachable.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timezone

from app.database import get_db, ping_db
from app.dependencies.services import get_embedding_client
from app.models.schemas import HealthCheckResponse
from app.services.embedding import EmbeddingClient

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    client: EmbeddingClient = Depends(get_embedding_client),
):
    db_status = "ok" if await ping_db(db) else "error"
    embedding_status = "ok" if await client.check_health() else "error"

    return HealthCheckResponse(
        status="healthy" if db_status == embedding_status == "ok" else "degraded",
        database=db_status,
        embedding_api=embedding_status,
        timestamp=datetime.now(timezone.utc),
    )
