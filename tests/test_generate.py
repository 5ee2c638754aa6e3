"""Tests for POST /api/workstreams/generate and /auto-assign."""
import numpy as np
import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.dependencies.services import get_workstream_namer
from app.main import app
from app.models.database_models import Achievement, Workstream, WorkstreamMetadata
from app.services import clustering
from app.services import workstreams as workstream_service
from app.services.clustering import ClusteringParams, cosine_distances_between
from app.services.workstreams import STRATEGY_FULL, StrategyDecision
from tests.conftest import (
    AUTH_HEADERS,
    AUTH_HEADERS_USER2,
    group_vector,
    random_vector,
    seed_achievements,
    three_group_vectors,
)

TOPICS = ["payments billing", "search indexing", "mobile onboarding"]


def _topic_vector(text: str):
    for group, topic in enumerate(TOPICS):
        if topic in text:
            return group_vector(group, abs(hash(text)) % 10000)
    return random_vector(abs(hash(text)) % 10000)


async def _active_workstreams(db, user_id="test-user-1"):
    res = await db.execute(
        select(Workstream)
        .where(Workstream.user_id == user_id)
        .where(Workstream.is_archived.is_(False))
    )
    return res.scalars().all()


@pytest.mark.asyncio
async def test_generate_requires_twenty_achievements(client: AsyncClient, db_session, fake_embedding_client):
    data = three_group_vectors(sizes=(5, 5, 5))
    await seed_achievements(db_session, [None] * 15, titles=data["titles"])

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Insufficient achievements"
    assert body["found"] == 15
    assert body["required"] == 20

    # No side effects: nothing embedded, nothing clustered
    assert fake_embedding_client.calls == []
    assert await _active_workstreams(db_session) == []
    meta = await db_session.execute(select(WorkstreamMetadata))
    assert meta.scalar_one_or_none() is None


@pytest.mark.asyncio
async def test_first_generate_embeds_and_clusters(client: AsyncClient, db_session, fake_embedding_client):
    fake_embedding_client.vector_for = _topic_vector
    data = three_group_vectors()
    await seed_achievements(db_session, [None] * 20, titles=data["titles"])

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["strategy"] == "full"
    assert body["reason"] == "Initial clustering"
    assert body["embeddingsGenerated"] == 20
    assert body["workstreamsCreated"] == 3
    assert body["achievementsAssigned"] == 20
    assert body["outliers"] == 0
    assert [len(w["achievements"]) for w in body["workstreams"]] == [7, 7, 6]
    assert all(w["isNew"] for w in body["workstreams"])

    # One topic per workstream, with keyword names from the titles
    for breakdown in body["workstreams"]:
        topics = {t for a in breakdown["achievements"] for t in TOPICS if t in a["title"]}
        assert len(topics) == 1

    meta = (await db_session.execute(select(WorkstreamMetadata))).scalar_one()
    assert meta.workstream_count == 3
    assert meta.achievement_count_at_last_clustering == 20
    assert meta.epsilon >= 0.7


@pytest.mark.asyncio
async def test_members_are_nearest_to_their_own_centroid(client: AsyncClient, db_session):
    data = three_group_vectors()
    await seed_achievements(db_session, data["vectors"], titles=data["titles"])

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 200

    workstreams = await _active_workstreams(db_session)
    ws_ids = [w.id for w in workstreams]
    C = np.array([np.asarray(w.centroid_embedding, dtype=float) for w in workstreams])

    res = await db_session.execute(
        select(Achievement.embedding, Achievement.workstream_id)
        .where(Achievement.workstream_id.isnot(None))
    )
    rows = res.all()
    assert len(rows) == 20
    X = np.array([np.asarray(r.embedding, dtype=float) for r in rows])
    D = cosine_distances_between(X, C)
    for i, row in enumerate(rows):
        assert ws_ids[int(D[i].argmin())] == row.workstream_id


@pytest.mark.asyncio
async def test_second_generate_is_incremental(client: AsyncClient, db_session, fake_embedding_client):
    data = three_group_vectors()
    await seed_achievements(db_session, data["vectors"], titles=data["titles"])
    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert resp.json()["workstreamsCreated"] == 3

    # One new achievement close to the first topic (5% growth)
    fake_embedding_client.vector_for = lambda text: group_vector(0, 4242)
    await seed_achievements(db_session, [None], titles=["Improved payments billing flow 99"])

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["strategy"] == "incremental"
    assert body["workstreamsCreated"] == 0
    assert body["embeddingsGenerated"] == 1
    assert body["achievementsAssigned"] == 1
    assert body["outliers"] == 0
    assert len(body["workstreams"]) == 1
    assert body["workstreams"][0]["isNew"] is False

    workstreams = await _active_workstreams(db_session)
    assert len(workstreams) == 3
    target = next(w for w in workstreams if w.id == body["workstreams"][0]["workstreamId"])
    assert target.achievement_count == 7


@pytest.mark.asyncio
async def test_all_outliers_creates_no_workstreams(client: AsyncClient, db_session, monkeypatch):
    monkeypatch.setattr(
        clustering,
        "get_clustering_parameters",
        lambda n: ClusteringParams(min_pts=3, min_cluster_size=50, outlier_threshold=0.7),
    )
    data = three_group_vectors()
    await seed_achievements(db_session, data["vectors"], titles=data["titles"])

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["strategy"] == "full"
    assert body["workstreamsCreated"] == 0
    assert body["achievementsAssigned"] == 0
    assert body["outliers"] == 20
    assert len(body["unassignedAchievements"]) == 20

    meta = (await db_session.execute(select(WorkstreamMetadata))).scalar_one()
    assert meta.workstream_count == 0
    assert meta.outlier_count == 20


@pytest.mark.asyncio
async def test_assigned_plus_outliers_covers_every_achievement(client: AsyncClient, db_session):
    await seed_achievements(db_session, [random_vector(7000 + i) for i in range(25)])

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["achievementsAssigned"] + body["outliers"] == 25

    listing = (await client.get("/api/workstreams", headers=AUTH_HEADERS)).json()
    counted = sum(w["achievementCount"] for w in listing["workstreams"])
    assert counted + listing["unassignedCount"] == 25
    assert listing["achievementCount"] == 25


@pytest.mark.asyncio
async def test_full_regenerate_archives_previous_workstreams(client: AsyncClient, db_session):
    data = three_group_vectors()
    await seed_achievements(db_session, data["vectors"], titles=data["titles"])
    first = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    first_ids = {w["workstreamId"] for w in first.json()["workstreams"]}

    # Drop every active workstream so the next run must recluster
    for ws_id in first_ids:
        await client.delete(f"/api/workstreams/{ws_id}", headers=AUTH_HEADERS)

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    body = resp.json()
    assert body["strategy"] == "full"
    assert body["workstreamsCreated"] == 3
    assert not first_ids & {w["workstreamId"] for w in body["workstreams"]}

    archived = await db_session.execute(
        select(func.count(Achievement.id))
        .join(Workstream, Achievement.workstream_id == Workstream.id)
        .where(Workstream.is_archived.is_(True))
    )
    assert archived.scalar() == 0


@pytest.mark.asyncio
async def test_generate_is_scoped_to_the_caller(client: AsyncClient, db_session):
    data = three_group_vectors()
    await seed_achievements(db_session, data["vectors"], titles=data["titles"])
    await seed_achievements(db_session, [None] * 3, user_id="test-user-2")

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 200

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 400
    assert await _active_workstreams(db_session, "test-user-2") == []

    listing = (await client.get("/api/workstreams", headers=AUTH_HEADERS_USER2)).json()
    assert listing["workstreams"] == []


@pytest.mark.asyncio
async def test_auto_assign_requires_existing_workstreams(client: AsyncClient, db_session):
    data = three_group_vectors()
    await seed_achievements(db_session, data["vectors"], titles=data["titles"])

    resp = await client.post("/api/workstreams/auto-assign", headers=AUTH_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Validation Error"


@pytest.mark.asyncio
async def test_auto_assign_places_new_achievements(client: AsyncClient, db_session, fake_embedding_client):
    data = three_group_vectors()
    await seed_achievements(db_session, data["vectors"], titles=data["titles"])
    await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)

    fake_embedding_client.vector_for = lambda text: group_vector(2, 31337)
    await seed_achievements(db_session, [None], titles=["Improved mobile onboarding flow 42"])

    resp = await client.post("/api/workstreams/auto-assign", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["strategy"] == "incremental"
    assert body["assigned"] == 1
    assert body["unassigned"] == 0
    titles = [a["title"] for a in body["assignmentsByWorkstream"][0]["achievements"]]
    assert titles == ["Improved mobile onboarding flow 42"]


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

class _FixedNamer:
    def __init__(self, names):
        self.names = names

    async def name_clusters(self, clusters):
        return self.names[:len(clusters)]


class _BrokenNamer:
    async def name_clusters(self, clusters):
        raise RuntimeError("naming backend exploded: secret-dsn")


@pytest.mark.asyncio
async def test_generate_skips_achievements_the_api_fails_to_embed(
    client: AsyncClient, db_session, fake_embedding_client
):
    fake_embedding_client.vector_for = _topic_vector
    fake_embedding_client.fail_for = lambda text: "Broken import" in text
    data = three_group_vectors()
    titles = data["titles"] + ["Broken import 1", "Broken import 2"]
    await seed_achievements(db_session, [None] * 22, titles=titles)

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["embeddingsGenerated"] == 20
    assert body["workstreamsCreated"] == 3
    assert body["achievementsAssigned"] == 20

    res = await db_session.execute(
        select(func.count(Achievement.id)).where(Achievement.embedding.is_(None))
    )
    assert res.scalar() == 2


@pytest.mark.asyncio
async def test_unexpected_failure_returns_500_and_keeps_previous_state(
    client: AsyncClient, db_session, monkeypatch
):
    data = three_group_vectors()
    await seed_achievements(db_session, data["vectors"], titles=data["titles"])
    first = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert first.status_code == 200
    await db_session.commit()
    before = {w.id for w in await _active_workstreams(db_session)}

    monkeypatch.setattr(
        workstream_service,
        "decide_strategy",
        lambda *args, **kwargs: StrategyDecision(STRATEGY_FULL, "Forced re-cluster"),
    )
    app.dependency_overrides[get_workstream_namer] = lambda: _BrokenNamer()

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "Failed to generate workstreams"
    assert "secret-dsn" not in body["message"]

    # Archiving and unassigning from the failed run were rolled back
    assert {w.id for w in await _active_workstreams(db_session)} == before
    res = await db_session.execute(
        select(func.count(Achievement.id)).where(Achievement.workstream_id.isnot(None))
    )
    assert res.scalar() == 20
    res = await db_session.execute(select(func.count(Workstream.id)))
    assert res.scalar() == 3
    meta = (await db_session.execute(select(WorkstreamMetadata))).scalar_one()
    assert meta.workstream_count == 3


@pytest.mark.asyncio
async def test_failed_cluster_write_only_loses_that_cluster(client: AsyncClient, db_session):
    # A name longer than the column fails the first cluster's INSERT
    app.dependency_overrides[get_workstream_namer] = lambda: _FixedNamer([
        ("n" * 300, "too long"),
        ("Second", "ok"),
        ("Third", "ok"),
    ])
    data = three_group_vectors()
    await seed_achievements(db_session, data["vectors"], titles=data["titles"])

    resp = await client.post("/api/workstreams/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["workstreamsCreated"] == 2
    assert body["achievementsAssigned"] == 13
    assert body["outliers"] == 7
    assert sorted(w["workstreamName"] for w in body["workstreams"]) == ["Second", "Third"]

    lost = {t for a in body["unassignedAchievements"] for t in TOPICS if t in a["title"]}
    assert len(lost) == 1

    assert len(await _active_workstreams(db_session)) == 2
    meta = (await db_session.execute(select(WorkstreamMetadata))).scalar_one()
    assert meta.workstream_count == 2
    assert meta.outlier_count == 7
