"""Database and schema models for the workstreams backend."""
from app.models.database_models import (
    User,
    Project,
    Achievement,
    Workstream,
    WorkstreamMetadata,
    WorkstreamSource,
    EventDuration,
)
from app.models.schemas import (
    WorkstreamResponse,
    WorkstreamListResponse,
    WorkstreamUpdateRequest,
    AssignRequest,
    AssignResponse,
    GenerationResponse,
    AutoAssignResponse,
    EmbeddingResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "User",
    "Project",
    "Achievement",
    "Workstream",
    "WorkstreamMetadata",
    "WorkstreamSource",
    "EventDuration",
    # Pydantic schemas
    "WorkstreamResponse",
    "WorkstreamListResponse",
    "WorkstreamUpdateRequest",
    "AssignRequest",
    "AssignResponse",
    "GenerationResponse",
    "AutoAssignResponse",
    "EmbeddingResponse",
    "HealthCheckResponse",
]
