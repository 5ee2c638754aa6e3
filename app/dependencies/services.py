"""
Service wiring for FastAPI routes.

Every component receives the frozen ``WorkstreamConfig`` at construction;
tests override ``get_embedding_client`` / ``get_workstream_namer`` to avoid
network calls.
"""
from __future__ import annotations

from fastapi import Depends

from app.config import workstream_config
from app.services.assignment import IncrementalAssigner
from app.services.clustering import WorkstreamClusterer
from app.services.embedding import AchievementEmbedder, EmbeddingClient
from app.services.naming import WorkstreamNamer
from app.services.workstreams import WorkstreamService


def get_embedding_client() -> EmbeddingClient:
    return EmbeddingClient.from_config(workstream_config)


def get_workstream_namer() -> WorkstreamNamer:
    return WorkstreamNamer()


def get_embedder(
    client: EmbeddingClient = Depends(get_embedding_client),
) -> AchievementEmbedder:
    return AchievementEmbedder(workstream_config, client)


def get_workstream_service(
    embedder: AchievementEmbedder = Depends(get_embedder),
    namer: WorkstreamNamer = Depends(get_workstream_namer),
) -> WorkstreamService:
    return WorkstreamService(
        config=workstream_config,
        embedder=embedder,
        clusterer=WorkstreamClusterer(workstream_config, namer),
        assigner=IncrementalAssigner(workstream_config),
    )
