"""
Achievement embedding endpoint.

Route summary
-------------
POST /{achievement_id}/embedding: (re)generate one achievement's embedding
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_or_create_user
from app.dependencies.services import get_embedder
from app.models.database_models import User
from app.models.schemas import EmbeddingResponse
from app.services.embedding import AchievementEmbedder

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{achievement_id}/embedding", response_model=EmbeddingResponse)
async def embed_achievement(
    achievement_id: str,
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
    embedder: AchievementEmbedder = Depends(get_embedder),
):
    """
    Embed a single owned achievement.

    404 when missing or owned by someone else, 400 when it has no text,
    500 on an embedding API failure or a wrong-sized vector.
    """
    vector = await embedder.embed_one(achievement_id, db, user_id=user.id)
    return EmbeddingResponse(
        achievement_id=achievement_id,
        embedding_model=embedder.model,
        dimensions=len(vector),
    )
