"""
Pydantic schemas for request/response validation.

All JSON keys are camelCase on the wire (``alias_generator=to_camel``);
snake_case names are accepted on input as well.
"""
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime
from enum import Enum


class CamelModel(BaseModel):
    """Base schema serialised with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class StrategySchema(str, Enum):
    """Strategy chosen by a generation run."""

    FULL = "full"
    INCREMENTAL = "incremental"


# Workstream Schemas
class WorkstreamResponse(CamelModel):
    """Workstream as returned to clients (centroid never included)."""

    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    achievement_count: int = 0
    is_archived: bool = False
    centroid_updated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class WorkstreamListResponse(CamelModel):
    """Response for GET /api/workstreams."""

    workstreams: List[WorkstreamResponse]
    unassigned_count: int
    achievement_count: int


class WorkstreamUpdateRequest(CamelModel):
    """Partial update for PUT /api/workstreams/{id}."""

    name: Optional[str] = Field(None, min_length=1, max_length=256)
    description: Optional[str] = Field(None, max_length=1000)
    color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")


class SuccessResponse(CamelModel):
    success: bool = True


# Assignment Schemas
class AssignRequest(CamelModel):
    """Body for POST /api/workstreams/assign; ``workstreamId: null`` unassigns."""

    achievement_id: str = Field(..., min_length=1)
    workstream_id: Optional[str] = None


class AssignResponse(CamelModel):
    success: bool = True
    achievement_id: str
    workstream_id: Optional[str] = None
    workstream_source: Optional[str] = None


# Generation Schemas
class AchievementSummaryResponse(CamelModel):
    id: str
    title: str
    summary: Optional[str] = None
    event_start: Optional[datetime] = None
    impact: Optional[int] = None
    project_id: Optional[str] = None
    project_name: Optional[str] = None


class WorkstreamBreakdownResponse(CamelModel):
    workstream_id: str
    workstream_name: str
    workstream_color: Optional[str] = None
    is_new: bool
    achievements: List[AchievementSummaryResponse]


class GenerationResponse(CamelModel):
    """Response for POST /api/workstreams/generate."""

    strategy: StrategySchema
    reason: str
    workstreams_created: int
    achievements_assigned: int
    embeddings_generated: int
    outliers: int = 0
    workstreams: List[WorkstreamBreakdownResponse] = Field(default_factory=list)
    unassigned_achievements: List[AchievementSummaryResponse] = Field(default_factory=list)


class AutoAssignResponse(CamelModel):
    """Response for POST /api/workstreams/auto-assign."""

    strategy: StrategySchema = StrategySchema.INCREMENTAL
    reason: str
    embeddings_generated: int
    assigned: int
    unassigned: int
    assignments_by_workstream: List[WorkstreamBreakdownResponse] = Field(default_factory=list)
    unassigned_achievements: List[AchievementSummaryResponse] = Field(default_factory=list)


# Embedding Schemas
class EmbeddingResponse(CamelModel):
    """Response for POST /api/achievements/{id}/embedding."""

    achievement_id: str
    embedding_model: str
    dimensions: int


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str
    database: str
    embedding_api: str
    timestamp: datetime
