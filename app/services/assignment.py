"""
Incremental assignment of new achievements to existing workstream centroids.

Public API
----------
IncrementalAssigner.assign_unassigned(user_id, db, params) → AssignmentResult
IncrementalAssigner.update_workstream_centroid(workstream_id, db)
IncrementalAssigner.on_achievement_workstream_change(old_id, new_id, db)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import numpy as np
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import WorkstreamConfig
from app.models.database_models import Achievement, Workstream, WorkstreamSource
from app.services.clustering import (
    ClusteringParams,
    calculate_centroid,
    cosine_distances_between,
)

logger = logging.getLogger(__name__)


@dataclass
class AssignmentResult:
    assigned: List[str] = field(default_factory=list)
    unassigned: List[str] = field(default_factory=list)
    # achievement id → workstream id
    assignments: Dict[str, str] = field(default_factory=dict)


class IncrementalAssigner:
    """
    Nearest-centroid assignment that never creates or removes workstreams.
    """

    def __init__(self, config: WorkstreamConfig) -> None:
        self.config = config

    async def assign_unassigned(
        self,
        user_id: str,
        db: AsyncSession,
        params: ClusteringParams,
    ) -> AssignmentResult:
        """
        Assign every unassigned, embedded, non-archived achievement to its
        nearest active centroid when the cosine distance is below
        ``1 - params.outlier_threshold``; leave the rest unassigned.
        """
        ach_res = await db.execute(
            select(Achievement.id, Achievement.embedding)
            .where(Achievement.user_id == user_id)
            .where(Achievement.is_archived.is_(False))
            .where(Achievement.workstream_id.is_(None))
            .where(Achievement.embedding.isnot(None))
            .order_by(Achievement.created_at, Achievement.id)
        )
        candidates = ach_res.all()
        if not candidates:
            return AssignmentResult()

        ws_res = await db.execute(
            select(Workstream.id, Workstream.centroid_embedding)
            .where(Workstream.user_id == user_id)
            .where(Workstream.is_archived.is_(False))
            .where(Workstream.centroid_embedding.isnot(None))
        )
        workstreams = ws_res.all()
        result = AssignmentResult()
        if not workstreams:
            result.unassigned = [c.id for c in candidates]
            return result

        X = np.array([np.asarray(c.embedding, dtype=float) for c in candidates])
        C = np.array([np.asarray(w.centroid_embedding, dtype=float) for w in workstreams])
        D = cosine_distances_between(X, C)
        nearest = D.argmin(axis=1)

        for i, candidate in enumerate(candidates):
            distance = float(D[i, nearest[i]])
            if distance < params.max_assign_distance:
                ws_id = workstreams[nearest[i]].id
                result.assignments[candidate.id] = ws_id
                result.assigned.append(candidate.id)
            else:
                result.unassigned.append(candidate.id)

        by_workstream: Dict[str, List[str]] = {}
        for ach_id, ws_id in result.assignments.items():
            by_workstream.setdefault(ws_id, []).append(ach_id)

        for ws_id, ach_ids in by_workstream.items():
            await db.execute(
                update(Achievement)
                .where(Achievement.id.in_(ach_ids))
                .values(workstream_id=ws_id, workstream_source=WorkstreamSource.AI.value)
            )
            await self.update_workstream_centroid(ws_id, db)

        logger.info(
            "assign_unassigned: user %s → %d assigned to %d workstream(s), %d left unassigned",
            user_id,
            len(result.assigned),
            len(by_workstream),
            len(result.unassigned),
        )
        return result

    async def update_workstream_centroid(
        self, workstream_id: str, db: AsyncSession
    ) -> Optional[Workstream]:
        """
        Recompute centroid and cached count from current embedded members.

        A workstream left without any embedded member is archived and its
        remaining (unembedded) members are unassigned.
        """
        ws = await db.get(Workstream, workstream_id)
        if ws is None:
            return None

        res = await db.execute(
            select(Achievement.embedding)
            .where(Achievement.workstream_id == workstream_id)
            .where(Achievement.is_archived.is_(False))
            .where(Achievement.embedding.isnot(None))
        )
        embeddings = [np.asarray(e, dtype=float) for e in res.scalars().all()]

        if not embeddings:
            ws.is_archived = True
            ws.achievement_count = 0
            await db.execute(
                update(Achievement)
                .where(Achievement.workstream_id == workstream_id)
                .values(workstream_id=None, workstream_source=None)
            )
            logger.info("update_workstream_centroid: archived empty workstream %s", workstream_id)
        else:
            ws.centroid_embedding = calculate_centroid(embeddings).tolist()
            ws.centroid_updated_at = datetime.now(timezone.utc)
            ws.achievement_count = len(embeddings)
        await db.flush()
        return ws

    async def on_achievement_workstream_change(
        self,
        old_workstream_id: Optional[str],
        new_workstream_id: Optional[str],
        db: AsyncSession,
    ) -> None:
        """Keep both sides of a manual move consistent."""
        for ws_id in {old_workstream_id, new_workstream_id} - {None}:
            await self.update_workstream_centroid(ws_id, db)
