"""
Achievement embedding generation via an OpenAI-compatible embeddings API.

Provides:
- format_achievement_for_embedding: project + title + summary (+ short details) text
- EmbeddingClient: single-shot httpx client for POST /embeddings
- AchievementEmbedder: embed one achievement, or every missing/outdated one
  for a user with a bounded worker pool
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import WorkstreamConfig
from app.errors import (
    DimensionMismatchError,
    EmptyContentError,
    NotFoundError,
    UpstreamFailureError,
)
from app.models.database_models import Achievement, Project

logger = logging.getLogger(__name__)

# Details at or above this length add noise and are left out
MAX_DETAILS_LENGTH = 500


def format_achievement_for_embedding(
    achievement: Achievement,
    project_name: Optional[str] = None,
) -> str:
    """Join project context, title, summary and short details with ``". "``."""
    parts: List[str] = []
    if project_name:
        parts.append(f"Project: {project_name}")
    if achievement.title:
        parts.append(achievement.title)
    if achievement.summary:
        parts.append(achievement.summary)
    if achievement.details and len(achievement.details) < MAX_DETAILS_LENGTH:
        parts.append(achievement.details)
    return ". ".join(p.strip() for p in parts if p and p.strip()).strip()


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

class EmbeddingClient:
    """
    Thin client for an OpenAI-compatible ``POST /embeddings`` endpoint.

    Single attempt per call; any transport error, non-200 status or malformed
    body raises :class:`UpstreamFailureError`.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: WorkstreamConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "EmbeddingClient":
        return cls(
            base_url=config.embedding_base_url,
            model=config.embedding_model,
            api_key=config.embedding_api_key,
            timeout=config.embedding_timeout,
            transport=transport,
        )

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Return one vector per input text, in input order."""
        t0 = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/embeddings",
                    headers=self._headers(),
                    json={"model": self.model, "input": texts},
                )
        except httpx.HTTPError as exc:
            raise UpstreamFailureError(f"Embedding API request failed: {exc}") from exc

        if resp.status_code != 200:
            raise UpstreamFailureError(
                f"Embedding API returned HTTP {resp.status_code}: {resp.text[:300]}"
            )

        try:
            data = sorted(resp.json()["data"], key=lambda item: item.get("index", 0))
            vectors = [[float(x) for x in item["embedding"]] for item in data]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise UpstreamFailureError(f"Malformed embedding API response: {exc}") from exc

        if len(vectors) != len(texts):
            raise UpstreamFailureError(
                f"Embedding API returned {len(vectors)} vectors for {len(texts)} inputs"
            )

        logger.debug(
            "Embedded %d text(s) in %.1f ms",
            len(texts),
            (time.perf_counter() - t0) * 1000,
        )
        return vectors

    async def check_health(self) -> bool:
        """Return ``True`` if the embedding API answers ``GET /models`` with 200."""
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
                resp = await client.get(f"{self.base_url}/models", headers=self._headers())
            return resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.error("Embedding API health check failed: %s", exc)
            return False


# ---------------------------------------------------------------------------
# Achievement embedder
# ---------------------------------------------------------------------------

@dataclass
class _PendingEmbedding:
    achievement_id: str
    text: str


class AchievementEmbedder:
    """
    Generates and persists achievement embeddings.

    * ``embed_one``: single achievement; errors propagate to the caller
    * ``embed_missing``: every missing/outdated embedding for a user; API calls
      run concurrently (capped by ``config.max_concurrency``), failures are
      logged and skipped, writes happen afterwards on the request session
    """

    def __init__(self, config: WorkstreamConfig, client: EmbeddingClient) -> None:
        # The stored model label must name the model the client requests
        if client.model != config.embedding_model:
            raise ValueError(
                f"Embedding client uses model {client.model!r} but the configured "
                f"model is {config.embedding_model!r}"
            )
        self.config = config
        self.client = client

    @property
    def model(self) -> str:
        return self.client.model

    def needs_embedding(self, achievement: Achievement) -> bool:
        return achievement.embedding is None or achievement.embedding_model != self.model

    async def embed_one(
        self,
        achievement_id: str,
        db: AsyncSession,
        user_id: Optional[str] = None,
    ) -> List[float]:
        """
        Embed and persist a single achievement.

        When *user_id* is given, achievements owned by anyone else are
        reported as not found.
        """
        query = (
            select(Achievement, Project.name)
            .outerjoin(Project, Achievement.project_id == Project.id)
            .where(Achievement.id == achievement_id)
        )
        if user_id is not None:
            query = query.where(Achievement.user_id == user_id)
        row = (await db.execute(query)).first()
        if row is None:
            raise NotFoundError(f"Achievement {achievement_id} not found.")

        achievement, project_name = row
        text = format_achievement_for_embedding(achievement, project_name)
        if not text:
            raise EmptyContentError(achievement_id)

        vectors = await self.client.embed([text])
        vector = self._validated(vectors[0])
        await self._store(db, achievement_id, vector)
        logger.info("embed_one: achievement %s embedded (%d dims)", achievement_id, len(vector))
        return vector

    async def embed_missing(self, user_id: str, db: AsyncSession) -> int:
        """
        Embed every non-archived achievement of *user_id* that has no
        embedding or one produced by a different model.

        Returns the number of embeddings written.
        """
        res = await db.execute(
            select(Achievement, Project.name)
            .outerjoin(Project, Achievement.project_id == Project.id)
            .where(Achievement.user_id == user_id)
            .where(Achievement.is_archived.is_(False))
        )
        pending: List[_PendingEmbedding] = []
        for achievement, project_name in res.all():
            if not self.needs_embedding(achievement):
                continue
            text = format_achievement_for_embedding(achievement, project_name)
            if not text:
                logger.warning(
                    "embed_missing: skipping achievement %s: %s",
                    achievement.id,
                    EmptyContentError(achievement.id).message,
                )
                continue
            pending.append(_PendingEmbedding(achievement.id, text))

        if not pending:
            return 0

        logger.info(
            "embed_missing: generating %d embedding(s) for user %s with model %s",
            len(pending),
            user_id,
            self.model,
        )

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def _fetch(item: _PendingEmbedding) -> List[float]:
            async with semaphore:
                vectors = await self.client.embed([item.text])
            return self._validated(vectors[0])

        gathered = await asyncio.gather(
            *[_fetch(item) for item in pending],
            return_exceptions=True,
        )

        stored = 0
        for item, result in zip(pending, gathered):
            if isinstance(result, BaseException):
                logger.error(
                    "embed_missing: achievement %s failed: %s",
                    item.achievement_id,
                    result,
                )
                continue
            await self._store(db, item.achievement_id, result)
            stored += 1

        logger.info(
            "embed_missing: %d/%d embeddings generated successfully",
            stored,
            len(pending),
        )
        return stored

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _validated(self, vector: List[float]) -> List[float]:
        if len(vector) != self.config.vector_dimension:
            raise DimensionMismatchError(self.config.vector_dimension, len(vector))
        return vector

    async def _store(self, db: AsyncSession, achievement_id: str, vector: List[float]) -> None:
        # Vector, model and timestamp always land in the same statement
        await db.execute(
            update(Achievement)
            .where(Achievement.id == achievement_id)
            .values(
                embedding=vector,
                embedding_model=self.model,
                embedding_generated_at=datetime.now(timezone.utc),
            )
        )
