"""
Achievement clustering: DBSCAN over cosine distance plus centroid refinement.

Public API
----------
cosine_distance(a, b)                      → float in [0, 2]
calculate_centroid(embeddings)             → np.ndarray
cosine_distance_matrix(X)                  → (n, n) np.ndarray
find_optimal_epsilon(distances, k)         → float
get_clustering_parameters(n)               → ClusteringParams | None
cluster_embeddings(X, params, config)      → ClusteringResult
WorkstreamClusterer.cluster_user(user_id, db) → FullClusteringResult
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import numpy as np
from sklearn.cluster import DBSCAN
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import WorkstreamConfig
from app.errors import InsufficientDataError
from app.models.database_models import (
    Achievement,
    Workstream,
    WorkstreamMetadata,
    WorkstreamSource,
)

logger = logging.getLogger(__name__)

# Colours handed out to new workstreams, cycled in cluster order
WORKSTREAM_COLORS = [
    "#3B82F6",
    "#10B981",
    "#F59E0B",
    "#EF4444",
    "#8B5CF6",
    "#06B6D4",
    "#F97316",
    "#84CC16",
    "#EC4899",
]

# Maximum cosine distance; returned when either vector has zero magnitude
MAX_DISTANCE = 2.0


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClusteringParams:
    min_pts: int
    min_cluster_size: int
    # Similarity floor; an outlier joins a centroid only when
    # its distance is below 1 - outlier_threshold.
    outlier_threshold: float

    @property
    def max_assign_distance(self) -> float:
        return 1.0 - self.outlier_threshold


@dataclass
class ClusteringResult:
    clusters: List[List[int]]       # member indices per cluster, largest first
    labels: List[int]               # cluster index per point, -1 for outliers
    centroids: List[np.ndarray]
    epsilon: float
    outlier_count: int


@dataclass
class FullClusteringResult:
    user_id: str
    workstreams_created: int
    achievements_assigned: int
    outliers: int
    epsilon: float
    min_pts: int
    # workstream id → member achievement ids
    assignments: Dict[str, List[str]] = field(default_factory=dict)
    unassigned_ids: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Pure vector helpers
# ---------------------------------------------------------------------------

def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """``1 - cosine_similarity``; 2.0 when either vector is all zeros."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(
            f"Vectors must have the same length ({va.shape[0]} != {vb.shape[0]})"
        )
    na = np.linalg.norm(va)
    nb = np.linalg.norm(vb)
    if na == 0.0 or nb == 0.0:
        return MAX_DISTANCE
    sim = float(np.dot(va, vb) / (na * nb))
    return float(np.clip(1.0 - sim, 0.0, MAX_DISTANCE))


def calculate_centroid(embeddings: Sequence[Sequence[float]]) -> np.ndarray:
    """Element-wise mean of equal-length vectors."""
    if len(embeddings) == 0:
        raise ValueError("Cannot calculate centroid of an empty set")
    arr = np.asarray(embeddings, dtype=float)
    if arr.ndim != 2:
        raise ValueError("Embeddings must all have the same length")
    return arr.mean(axis=0)


def _unit_rows(X: np.ndarray) -> tuple:
    norms = np.linalg.norm(X, axis=1)
    safe = np.where(norms == 0, 1.0, norms)
    return X / safe[:, None], norms == 0


def cosine_distances_between(X: np.ndarray, C: np.ndarray) -> np.ndarray:
    """(n, k) cosine distances from every row of *X* to every row of *C*."""
    X = np.asarray(X, dtype=float)
    C = np.asarray(C, dtype=float)
    if X.shape[1] != C.shape[1]:
        raise ValueError("Vectors must have the same length")
    ux, zx = _unit_rows(X)
    uc, zc = _unit_rows(C)
    D = np.clip(1.0 - ux @ uc.T, 0.0, MAX_DISTANCE)
    D[zx, :] = MAX_DISTANCE
    D[:, zc] = MAX_DISTANCE
    return D


def cosine_distance_matrix(X: np.ndarray) -> np.ndarray:
    """Symmetric pairwise cosine distance matrix with a zero diagonal."""
    D = cosine_distances_between(X, X)
    np.fill_diagonal(D, 0.0)
    return D


def find_optimal_epsilon(distances: np.ndarray, k: int = 5) -> float:
    """
    Estimate DBSCAN epsilon from the elbow of the sorted k-distance curve.

    The elbow is the point right after the largest jump between consecutive
    sorted k-nearest-neighbour distances.
    """
    n = distances.shape[0]
    if n < k:
        return 0.5

    others = distances.astype(float).copy()
    np.fill_diagonal(others, np.inf)
    sorted_rows = np.sort(others, axis=1)
    kth = min(k - 1, n - 2)
    k_distances = np.sort(sorted_rows[:, kth])

    gaps = np.diff(k_distances)
    elbow = int(np.argmax(gaps)) + 1 if gaps.size and gaps.max() > 0 else 0
    return max(0.0001, float(k_distances[elbow]))


def get_clustering_parameters(achievement_count: int) -> Optional[ClusteringParams]:
    """Size-bracketed DBSCAN parameters; ``None`` below 20 achievements."""
    if achievement_count < 20:
        return None
    if achievement_count < 100:
        return ClusteringParams(min_pts=3, min_cluster_size=3, outlier_threshold=0.7)
    if achievement_count < 300:
        return ClusteringParams(min_pts=3, min_cluster_size=3, outlier_threshold=0.75)
    return ClusteringParams(min_pts=5, min_cluster_size=5, outlier_threshold=0.65)


# ---------------------------------------------------------------------------
# Clustering
# ---------------------------------------------------------------------------

def _drop_small(labels: np.ndarray, min_size: int) -> np.ndarray:
    labels = labels.copy()
    for lbl in set(labels.tolist()) - {-1}:
        mask = labels == lbl
        if int(mask.sum()) < min_size:
            labels[mask] = -1
    return labels


def _refine(
    X: np.ndarray,
    labels: np.ndarray,
    params: ClusteringParams,
    max_iter: int,
) -> np.ndarray:
    """
    Nearest-centroid passes until labels are stable.

    Clustered points follow their nearest centroid; outliers join only when
    they are within ``params.max_assign_distance`` of it.
    """
    labels = labels.copy()
    for iteration in range(max_iter):
        ids = sorted(set(labels.tolist()) - {-1})
        if not ids:
            break
        centroids = np.array([X[labels == lbl].mean(axis=0) for lbl in ids])
        D = cosine_distances_between(X, centroids)
        nearest = D.argmin(axis=1)
        nearest_dist = D[np.arange(len(X)), nearest]

        new_labels = np.array([ids[j] for j in nearest], dtype=int)
        too_far = (labels == -1) & (nearest_dist >= params.max_assign_distance)
        new_labels[too_far] = -1
        new_labels = _drop_small(new_labels, params.min_cluster_size)

        if np.array_equal(new_labels, labels):
            logger.debug("refine: converged after %d pass(es)", iteration + 1)
            break
        labels = new_labels
    return labels


def cluster_embeddings(
    X: np.ndarray,
    params: ClusteringParams,
    config: WorkstreamConfig,
) -> ClusteringResult:
    """
    Partition embeddings into coherent clusters, leaving outliers unassigned.

    An all-outlier result is returned as zero clusters, not raised.
    """
    X = np.asarray(X, dtype=float)
    n = X.shape[0] if X.ndim == 2 else 0
    if n == 0:
        return ClusteringResult(clusters=[], labels=[], centroids=[], epsilon=0.0, outlier_count=0)

    D = cosine_distance_matrix(X)
    calculated = find_optimal_epsilon(D, params.min_pts)
    epsilon = max(calculated, config.min_epsilon)
    logger.info(
        "Clustering %d embeddings: epsilon=%.4f (calculated %.4f), min_pts=%d",
        n, epsilon, calculated, params.min_pts,
    )

    raw = DBSCAN(eps=epsilon, min_samples=params.min_pts, metric="precomputed").fit_predict(D)
    labels = _drop_small(np.asarray(raw, dtype=int), params.min_cluster_size)
    labels = _refine(X, labels, params, config.refine_max_iter)

    # Relabel 0..k-1, largest cluster first
    ids = sorted(
        set(labels.tolist()) - {-1},
        key=lambda lbl: (-int((labels == lbl).sum()), int(np.argmax(labels == lbl))),
    )
    remap = {old: new for new, old in enumerate(ids)}
    final = np.array([remap.get(lbl, -1) for lbl in labels.tolist()], dtype=int)

    clusters = [np.flatnonzero(final == i).tolist() for i in range(len(ids))]
    centroids = [calculate_centroid(X[members]) for members in clusters]
    outliers = int((final == -1).sum())

    logger.info(
        "Clustering produced %d cluster(s), %d outlier(s)", len(clusters), outliers
    )
    return ClusteringResult(
        clusters=clusters,
        labels=final.tolist(),
        centroids=centroids,
        epsilon=epsilon,
        outlier_count=outliers,
    )


# ---------------------------------------------------------------------------
# WorkstreamClusterer
# ---------------------------------------------------------------------------

class WorkstreamClusterer:
    """
    Full re-clustering of a user's achievements into workstreams.

    Main entry point: ``cluster_user(user_id, db)``
    """

    def __init__(self, config: WorkstreamConfig, namer) -> None:
        self.config = config
        self.namer = namer

    async def cluster_user(self, user_id: str, db: AsyncSession) -> FullClusteringResult:
        """
        Steps
        -----
        1. Load embedded, non-archived achievements (>= min_achievements).
        2. Cluster them.
        3. Archive existing workstreams and clear every assignment.
        4. Name clusters in one batch.
        5. Write each workstream + member assignment inside its own SAVEPOINT.
        6. Upsert workstream_metadata.
        """
        # --- 1. Load ----------------------------------------------------------
        res = await db.execute(
            select(Achievement.id, Achievement.title, Achievement.summary, Achievement.embedding)
            .where(Achievement.user_id == user_id)
            .where(Achievement.is_archived.is_(False))
            .where(Achievement.embedding.isnot(None))
            .order_by(Achievement.created_at, Achievement.id)
        )
        rows = res.all()
        n = len(rows)
        params = get_clustering_parameters(n)
        if n < self.config.min_achievements or params is None:
            raise InsufficientDataError(found=n, required=self.config.min_achievements)

        ids = [r.id for r in rows]
        X = np.array([np.asarray(r.embedding, dtype=float) for r in rows])

        # --- 2. Cluster -------------------------------------------------------
        result = cluster_embeddings(X, params, self.config)

        # --- 3. Reset ---------------------------------------------------------
        archived = await db.execute(
            update(Workstream)
            .where(Workstream.user_id == user_id)
            .where(Workstream.is_archived.is_(False))
            .values(is_archived=True)
        )
        await db.execute(
            update(Achievement)
            .where(Achievement.user_id == user_id)
            .where(Achievement.workstream_id.isnot(None))
            .values(workstream_id=None, workstream_source=None)
        )
        logger.info(
            "cluster_user: archived %d previous workstream(s) for user %s",
            archived.rowcount, user_id,
        )

        # --- 4. Name ----------------------------------------------------------
        samples = [
            [{"title": rows[i].title, "summary": rows[i].summary} for i in members]
            for members in result.clusters
        ]
        names = await self.namer.name_clusters(samples) if samples else []

        # --- 5. Persist per cluster ------------------------------------------
        now = datetime.now(timezone.utc)
        assignments: Dict[str, List[str]] = {}
        for idx, members in enumerate(result.clusters):
            member_ids = [ids[i] for i in members]
            name, description = names[idx]
            try:
                async with db.begin_nested():
                    workstream = Workstream(
                        user_id=user_id,
                        name=name,
                        description=description,
                        color=WORKSTREAM_COLORS[idx % len(WORKSTREAM_COLORS)],
                        centroid_embedding=result.centroids[idx].tolist(),
                        centroid_updated_at=now,
                        achievement_count=len(member_ids),
                        is_archived=False,
                    )
                    db.add(workstream)
                    await db.flush()
                    await db.execute(
                        update(Achievement)
                        .where(Achievement.id.in_(member_ids))
                        .values(
                            workstream_id=workstream.id,
                            workstream_source=WorkstreamSource.AI.value,
                        )
                    )
                assignments[workstream.id] = member_ids
            except SQLAlchemyError as exc:
                logger.error(
                    "cluster_user: failed to write cluster %d (%d members): %s",
                    idx, len(member_ids), exc,
                )

        assigned_ids = {aid for members in assignments.values() for aid in members}
        unassigned = [aid for aid in ids if aid not in assigned_ids]

        # --- 6. Metadata ------------------------------------------------------
        await self._upsert_metadata(
            db,
            user_id=user_id,
            achievement_count=n,
            epsilon=result.epsilon,
            min_pts=params.min_pts,
            workstream_count=len(assignments),
            outlier_count=len(unassigned),
            now=now,
        )
        await db.flush()

        logger.info(
            "cluster_user: user %s → %d workstream(s), %d assigned, %d outlier(s)",
            user_id, len(assignments), len(assigned_ids), len(unassigned),
        )
        return FullClusteringResult(
            user_id=user_id,
            workstreams_created=len(assignments),
            achievements_assigned=len(assigned_ids),
            outliers=len(unassigned),
            epsilon=result.epsilon,
            min_pts=params.min_pts,
            assignments=assignments,
            unassigned_ids=unassigned,
        )

    @staticmethod
    async def _upsert_metadata(
        db: AsyncSession,
        *,
        user_id: str,
        achievement_count: int,
        epsilon: float,
        min_pts: int,
        workstream_count: int,
        outlier_count: int,
        now: datetime,
    ) -> None:
        res = await db.execute(
            select(WorkstreamMetadata).where(WorkstreamMetadata.user_id == user_id)
        )
        meta = res.scalar_one_or_none()
        if meta is None:
            meta = WorkstreamMetadata(user_id=user_id)
            db.add(meta)
        meta.last_full_clustering_at = now
        meta.achievement_count_at_last_clustering = achievement_count
        meta.epsilon = float(epsilon)
        meta.min_pts = min_pts
        meta.workstream_count = workstream_count
        meta.outlier_count = outlier_count
