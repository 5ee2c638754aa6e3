"""
Workstream generation, assignment, and management endpoints.

Route summary
-------------
POST   /generate      embed missing achievements, then full or incremental clustering
POST   /auto-assign   incremental assignment to existing workstreams only
POST   /assign        manual assign / unassign of one achievement
GET    /              active workstreams (optional startDate / endDate filter)
GET    /{id}          one workstream
PUT    /{id}          rename / describe / recolour
DELETE /{id}          archive and unassign members
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_or_create_user
from app.dependencies.services import get_workstream_service
from app.errors import GenerationFailedError, ValidationError, WorkstreamError
from app.models.database_models import User
from app.models.schemas import (
    AssignRequest,
    AssignResponse,
    AutoAssignResponse,
    GenerationResponse,
    SuccessResponse,
    WorkstreamListResponse,
    WorkstreamResponse,
    WorkstreamUpdateRequest,
)
from app.services.workstreams import WorkstreamService
from app.utils.helpers import parse_date_param

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /generate
# ---------------------------------------------------------------------------

@router.post("/generate", response_model=GenerationResponse)
async def generate_workstreams(
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
    service: WorkstreamService = Depends(get_workstream_service),
):
    """
    Generate or update the caller's workstreams.

    Returns 400 ``Insufficient achievements`` below the minimum count, and
    500 ``Failed to generate workstreams`` (with all writes rolled back) on
    any unexpected failure.
    """
    try:
        result = await service.generate(user.id, db)
    except WorkstreamError:
        raise
    except Exception as exc:
        logger.exception("Workstream generation failed for user %s", user.id)
        await db.rollback()
        raise GenerationFailedError("An unexpected error occurred; no changes were saved.") from exc

    return GenerationResponse.model_validate(result)


# ---------------------------------------------------------------------------
# POST /auto-assign
# ---------------------------------------------------------------------------

@router.post("/auto-assign", response_model=AutoAssignResponse)
async def auto_assign_workstreams(
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
    service: WorkstreamService = Depends(get_workstream_service),
):
    """Assign unassigned achievements to existing workstreams without re-clustering."""
    try:
        result = await service.auto_assign(user.id, db)
    except WorkstreamError:
        raise
    except Exception as exc:
        logger.exception("Auto-assign failed for user %s", user.id)
        await db.rollback()
        raise GenerationFailedError("An unexpected error occurred; no changes were saved.") from exc

    return AutoAssignResponse.model_validate(result)


# ---------------------------------------------------------------------------
# POST /assign
# ---------------------------------------------------------------------------

@router.post("/assign", response_model=AssignResponse)
async def assign_achievement(
    body: AssignRequest,
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
    service: WorkstreamService = Depends(get_workstream_service),
):
    achievement = await service.assign_achievement(
        user.id, body.achievement_id, body.workstream_id, db
    )
    return AssignResponse(
        achievement_id=achievement.id,
        workstream_id=achievement.workstream_id,
        workstream_source=achievement.workstream_source,
    )


# ---------------------------------------------------------------------------
# GET /
# ---------------------------------------------------------------------------

@router.get("", response_model=WorkstreamListResponse)
async def list_workstreams(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
    service: WorkstreamService = Depends(get_workstream_service),
):
    """
    List the caller's active workstreams, largest first.

    ``startDate`` / ``endDate`` (``YYYY-MM-DD`` or ISO-8601) must be given
    together; counts are then scoped to achievements in the range.
    """
    try:
        start = parse_date_param(start_date)
        end = parse_date_param(end_date, end_of_day=True)
    except ValueError:
        raise ValidationError("startDate and endDate must be YYYY-MM-DD or ISO-8601 datetimes.")

    if (start is None) != (end is None):
        raise ValidationError("Both startDate and endDate must be provided together.")
    if start is not None and end is not None and start > end:
        raise ValidationError("startDate must be less than or equal to endDate.")

    listing = await service.list_workstreams(user.id, db, start=start, end=end)
    return WorkstreamListResponse(
        workstreams=[
            WorkstreamResponse.model_validate(row.workstream).model_copy(
                update={"achievement_count": row.achievement_count}
            )
            for row in listing.workstreams
        ],
        unassigned_count=listing.unassigned_count,
        achievement_count=listing.achievement_count,
    )


# ---------------------------------------------------------------------------
# GET / PUT / DELETE /{workstream_id}
# ---------------------------------------------------------------------------

@router.get("/{workstream_id}", response_model=WorkstreamResponse)
async def get_workstream(
    workstream_id: str,
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
    service: WorkstreamService = Depends(get_workstream_service),
):
    return await service.get_workstream(user.id, workstream_id, db)


@router.put("/{workstream_id}", response_model=WorkstreamResponse)
async def update_workstream(
    workstream_id: str,
    body: WorkstreamUpdateRequest,
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
    service: WorkstreamService = Depends(get_workstream_service),
):
    changes = body.model_dump(exclude_unset=True)
    if changes.get("name", "") is None:
        raise ValidationError("name cannot be null.")
    return await service.update_workstream(user.id, workstream_id, changes, db)


@router.delete("/{workstream_id}", response_model=SuccessResponse)
async def delete_workstream(
    workstream_id: str,
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
    service: WorkstreamService = Depends(get_workstream_service),
):
    """Archive (never hard-delete) the workstream and unassign its achievements."""
    await service.archive_workstream(user.id, workstream_id, db)
    return SuccessResponse(success=True)
