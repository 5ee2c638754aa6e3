"""
Workstream generation orchestrator and workstream management.

Public API
----------
decide_strategy(count, metadata, active_workstreams, config) → StrategyDecision
WorkstreamService.generate(user_id, db)                       → GenerationResult
WorkstreamService.auto_assign(user_id, db)                    → AutoAssignResult
WorkstreamService.assign_achievement(user_id, ach_id, ws_id, db)
WorkstreamService.list_workstreams(user_id, db, start, end)   → WorkstreamListing
WorkstreamService.get_workstream / update_workstream / archive_workstream

Concurrency note: two generate runs for the same user are not serialised.
Each runs in its own transaction, so the later commit wins on workstreams
and centroids.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import WorkstreamConfig
from app.errors import InsufficientDataError, NotFoundError, ValidationError
from app.models.database_models import (
    Achievement,
    Project,
    Workstream,
    WorkstreamMetadata,
    WorkstreamSource,
)
from app.services.assignment import IncrementalAssigner
from app.services.clustering import WorkstreamClusterer, get_clustering_parameters
from app.services.embedding import AchievementEmbedder

logger = logging.getLogger(__name__)

STRATEGY_FULL = "full"
STRATEGY_INCREMENTAL = "incremental"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StrategyDecision:
    strategy: str
    reason: str


@dataclass(frozen=True)
class AchievementSummary:
    id: str
    title: str
    summary: Optional[str]
    event_start: Optional[datetime]
    impact: Optional[int]
    project_id: Optional[str]
    project_name: Optional[str]


@dataclass(frozen=True)
class WorkstreamBreakdown:
    workstream_id: str
    workstream_name: str
    workstream_color: Optional[str]
    is_new: bool
    achievements: List[AchievementSummary]


@dataclass(frozen=True)
class GenerationResult:
    strategy: str
    reason: str
    workstreams_created: int
    achievements_assigned: int
    embeddings_generated: int
    outliers: int
    workstreams: List[WorkstreamBreakdown] = field(default_factory=list)
    unassigned_achievements: List[AchievementSummary] = field(default_factory=list)


@dataclass(frozen=True)
class AutoAssignResult:
    reason: str
    embeddings_generated: int
    assigned: int
    unassigned: int
    assignments_by_workstream: List[WorkstreamBreakdown] = field(default_factory=list)
    unassigned_achievements: List[AchievementSummary] = field(default_factory=list)


@dataclass(frozen=True)
class WorkstreamRow:
    workstream: Workstream
    achievement_count: int


@dataclass(frozen=True)
class WorkstreamListing:
    workstreams: List[WorkstreamRow]
    unassigned_count: int
    achievement_count: int


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------

def decide_strategy(
    current_count: int,
    metadata: Optional[WorkstreamMetadata],
    active_workstreams: int,
    config: WorkstreamConfig,
    now: Optional[datetime] = None,
) -> StrategyDecision:
    """
    Full re-clustering when never clustered, when the last run found nothing,
    when no active workstreams remain, or when growth/staleness crosses the
    configured thresholds; incremental otherwise.
    """
    if metadata is None:
        return StrategyDecision(STRATEGY_FULL, "Initial clustering")

    if metadata.workstream_count == 0:
        return StrategyDecision(STRATEGY_FULL, "No workstreams found in previous clustering")

    if active_workstreams == 0:
        return StrategyDecision(STRATEGY_FULL, "No active workstreams")

    previous = metadata.achievement_count_at_last_clustering or 0
    new_count = current_count - previous
    if previous > 0:
        growth = new_count / previous
        if growth >= config.recluster_percentage_threshold:
            return StrategyDecision(STRATEGY_FULL, f"{growth * 100:.1f}% growth in achievements")

    if new_count >= config.recluster_absolute_threshold:
        return StrategyDecision(STRATEGY_FULL, f"{new_count} new achievements since last clustering")

    now = now or datetime.now(timezone.utc)
    last = metadata.last_full_clustering_at
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    days = (now - last).total_seconds() / 86400
    if days > config.recluster_time_threshold_days:
        return StrategyDecision(STRATEGY_FULL, f"{int(days)} days since last clustering")

    return StrategyDecision(STRATEGY_INCREMENTAL, "Small number of new achievements")


# ---------------------------------------------------------------------------
# WorkstreamService
# ---------------------------------------------------------------------------

class WorkstreamService:
    """
    Entry point for the workstream API.

    Components are injected at construction so the same service can be
    wired with fake embedding clients in tests.
    """

    def __init__(
        self,
        config: WorkstreamConfig,
        embedder: AchievementEmbedder,
        clusterer: WorkstreamClusterer,
        assigner: IncrementalAssigner,
    ) -> None:
        self.config = config
        self.embedder = embedder
        self.clusterer = clusterer
        self.assigner = assigner

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(self, user_id: str, db: AsyncSession) -> GenerationResult:
        """
        Steps
        -----
        1. Reject users below the minimum achievement count (no side effects).
        2. Embed missing / outdated achievements.
        3. Choose full vs incremental.
        4. Run the chosen strategy and build the breakdown.
        """
        total = await self._count_achievements(user_id, db)
        if total < self.config.min_achievements:
            raise InsufficientDataError(found=total, required=self.config.min_achievements)

        embeddings_generated = await self.embedder.embed_missing(user_id, db)

        embedded = await self._count_achievements(user_id, db, embedded_only=True)
        params = get_clustering_parameters(embedded)
        if embedded < self.config.min_achievements or params is None:
            raise InsufficientDataError(found=embedded, required=self.config.min_achievements)

        metadata = await self._get_metadata(user_id, db)
        active = await self._count_active_workstreams(user_id, db)
        decision = decide_strategy(embedded, metadata, active, self.config)
        logger.info(
            "generate: user %s → %s strategy (%s)", user_id, decision.strategy, decision.reason
        )

        if decision.strategy == STRATEGY_FULL:
            full = await self.clusterer.cluster_user(user_id, db)
            breakdown = await self._build_breakdown(user_id, db, full.assignments, is_new=True)
            return GenerationResult(
                strategy=decision.strategy,
                reason=decision.reason,
                workstreams_created=full.workstreams_created,
                achievements_assigned=full.achievements_assigned,
                embeddings_generated=embeddings_generated,
                outliers=full.outliers,
                workstreams=breakdown,
                unassigned_achievements=await self._summaries(user_id, db, full.unassigned_ids),
            )

        inc = await self.assigner.assign_unassigned(user_id, db, params)
        breakdown = await self._build_breakdown(
            user_id, db, _group_by_workstream(inc.assignments), is_new=False
        )
        return GenerationResult(
            strategy=decision.strategy,
            reason=decision.reason,
            workstreams_created=0,
            achievements_assigned=len(inc.assigned),
            embeddings_generated=embeddings_generated,
            outliers=len(inc.unassigned),
            workstreams=breakdown,
            unassigned_achievements=await self._summaries(user_id, db, inc.unassigned),
        )

    async def auto_assign(self, user_id: str, db: AsyncSession) -> AutoAssignResult:
        """Incremental assignment only; requires existing workstreams."""
        active = await self._count_active_workstreams(user_id, db)
        if active == 0:
            raise ValidationError("No workstreams exist yet. Generate workstreams first.")

        embeddings_generated = await self.embedder.embed_missing(user_id, db)
        embedded = await self._count_achievements(user_id, db, embedded_only=True)
        params = get_clustering_parameters(embedded)
        if embedded < self.config.min_achievements or params is None:
            raise InsufficientDataError(found=embedded, required=self.config.min_achievements)

        inc = await self.assigner.assign_unassigned(user_id, db, params)
        return AutoAssignResult(
            reason="Incremental assignment to existing workstreams",
            embeddings_generated=embeddings_generated,
            assigned=len(inc.assigned),
            unassigned=len(inc.unassigned),
            assignments_by_workstream=await self._build_breakdown(
                user_id, db, _group_by_workstream(inc.assignments), is_new=False
            ),
            unassigned_achievements=await self._summaries(user_id, db, inc.unassigned),
        )

    # ------------------------------------------------------------------
    # Manual assignment
    # ------------------------------------------------------------------

    async def assign_achievement(
        self,
        user_id: str,
        achievement_id: str,
        workstream_id: Optional[str],
        db: AsyncSession,
    ) -> Achievement:
        """Move an achievement into *workstream_id*, or unassign it when ``None``."""
        res = await db.execute(
            select(Achievement)
            .where(Achievement.id == achievement_id)
            .where(Achievement.user_id == user_id)
            .where(Achievement.is_archived.is_(False))
        )
        achievement = res.scalar_one_or_none()
        if achievement is None:
            raise NotFoundError(f"Achievement {achievement_id} not found.")

        if workstream_id is not None:
            await self.get_workstream(user_id, workstream_id, db)

        previous = achievement.workstream_id
        achievement.workstream_id = workstream_id
        achievement.workstream_source = WorkstreamSource.USER.value if workstream_id else None
        await db.flush()

        await self.assigner.on_achievement_workstream_change(previous, workstream_id, db)
        logger.info(
            "assign_achievement: %s moved %s → %s by user", achievement_id, previous, workstream_id
        )
        return achievement

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def get_workstream(self, user_id: str, workstream_id: str, db: AsyncSession) -> Workstream:
        res = await db.execute(
            select(Workstream)
            .where(Workstream.id == workstream_id)
            .where(Workstream.user_id == user_id)
            .where(Workstream.is_archived.is_(False))
        )
        workstream = res.scalar_one_or_none()
        if workstream is None:
            raise NotFoundError(f"Workstream {workstream_id} not found.")
        return workstream

    async def update_workstream(
        self,
        user_id: str,
        workstream_id: str,
        changes: Dict[str, Any],
        db: AsyncSession,
    ) -> Workstream:
        workstream = await self.get_workstream(user_id, workstream_id, db)
        for key in ("name", "description", "color"):
            if key in changes:
                setattr(workstream, key, changes[key])
        await db.flush()
        await db.refresh(workstream)
        return workstream

    async def archive_workstream(self, user_id: str, workstream_id: str, db: AsyncSession) -> None:
        """Archive the workstream and unassign all of its members."""
        workstream = await self.get_workstream(user_id, workstream_id, db)
        result = await db.execute(
            update(Achievement)
            .where(Achievement.workstream_id == workstream_id)
            .values(workstream_id=None, workstream_source=None)
        )
        workstream.is_archived = True
        workstream.achievement_count = 0
        await db.flush()
        logger.info(
            "archive_workstream: %s archived, %d achievement(s) unassigned",
            workstream_id,
            result.rowcount,
        )

    async def list_workstreams(
        self,
        user_id: str,
        db: AsyncSession,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> WorkstreamListing:
        """
        Active workstreams with live member counts, largest first.

        With a date range only achievements whose ``event_start`` falls in
        the range are counted, and workstreams without any are omitted.
        """
        in_range = [Achievement.is_archived.is_(False)]
        if start is not None:
            in_range.append(Achievement.event_start >= start)
        if end is not None:
            in_range.append(Achievement.event_start <= end)
        filtered = start is not None or end is not None

        member_count = func.count(Achievement.id)
        query = (
            select(Workstream, member_count.label("member_count"))
            .outerjoin(
                Achievement,
                and_(Achievement.workstream_id == Workstream.id, *in_range),
            )
            .where(Workstream.user_id == user_id)
            .where(Workstream.is_archived.is_(False))
            .group_by(Workstream.id)
            .order_by(member_count.desc(), Workstream.created_at)
        )
        if filtered:
            query = query.having(member_count > 0)
        rows = [WorkstreamRow(ws, int(count)) for ws, count in (await db.execute(query)).all()]

        totals = await db.execute(
            select(
                func.count(Achievement.id),
                func.count(Achievement.id).filter(Achievement.workstream_id.is_(None)),
            )
            .where(Achievement.user_id == user_id)
            .where(*in_range)
        )
        total, unassigned = totals.one()
        return WorkstreamListing(
            workstreams=rows,
            unassigned_count=int(unassigned or 0),
            achievement_count=int(total or 0),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _count_achievements(
        self, user_id: str, db: AsyncSession, embedded_only: bool = False
    ) -> int:
        query = (
            select(func.count(Achievement.id))
            .where(Achievement.user_id == user_id)
            .where(Achievement.is_archived.is_(False))
        )
        if embedded_only:
            query = query.where(Achievement.embedding.isnot(None))
        return int((await db.execute(query)).scalar() or 0)

    async def _count_active_workstreams(self, user_id: str, db: AsyncSession) -> int:
        res = await db.execute(
            select(func.count(Workstream.id))
            .where(Workstream.user_id == user_id)
            .where(Workstream.is_archived.is_(False))
        )
        return int(res.scalar() or 0)

    async def _get_metadata(self, user_id: str, db: AsyncSession) -> Optional[WorkstreamMetadata]:
        res = await db.execute(
            select(WorkstreamMetadata).where(WorkstreamMetadata.user_id == user_id)
        )
        return res.scalar_one_or_none()

    async def _summaries(
        self, user_id: str, db: AsyncSession, achievement_ids: Iterable[str]
    ) -> List[AchievementSummary]:
        ids = list(achievement_ids)
        if not ids:
            return []
        res = await db.execute(
            select(
                Achievement.id,
                Achievement.title,
                Achievement.summary,
                Achievement.event_start,
                Achievement.impact,
                Achievement.project_id,
                Project.name,
            )
            .outerjoin(Project, Achievement.project_id == Project.id)
            .where(Achievement.user_id == user_id)
            .where(Achievement.id.in_(ids))
        )
        by_id = {
            row[0]: AchievementSummary(
                id=row[0],
                title=row[1],
                summary=row[2],
                event_start=row[3],
                impact=row[4],
                project_id=row[5],
                project_name=row[6],
            )
            for row in res.all()
        }
        return [by_id[i] for i in ids if i in by_id]

    async def _build_breakdown(
        self,
        user_id: str,
        db: AsyncSession,
        assignments: Dict[str, List[str]],
        is_new: bool,
    ) -> List[WorkstreamBreakdown]:
        if not assignments:
            return []
        res = await db.execute(
            select(Workstream.id, Workstream.name, Workstream.color)
            .where(Workstream.id.in_(list(assignments)))
        )
        breakdown = [
            WorkstreamBreakdown(
                workstream_id=ws_id,
                workstream_name=name,
                workstream_color=color,
                is_new=is_new,
                achievements=await self._summaries(user_id, db, assignments[ws_id]),
            )
            for ws_id, name, color in res.all()
        ]
        breakdown.sort(key=lambda b: len(b.achievements), reverse=True)
        return breakdown


def _group_by_workstream(assignments: Dict[str, str]) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for achievement_id, workstream_id in assignments.items():
        grouped.setdefault(workstream_id, []).append(achievement_id)
    return grouped
