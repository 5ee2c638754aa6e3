"""Tests for full vs incremental strategy selection."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from app.config import WorkstreamConfig
from app.services.workstreams import STRATEGY_FULL, STRATEGY_INCREMENTAL, decide_strategy

CONFIG = WorkstreamConfig()
NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def _meta(count=100, workstreams=4, days_ago=1):
    return SimpleNamespace(
        achievement_count_at_last_clustering=count,
        workstream_count=workstreams,
        last_full_clustering_at=NOW - timedelta(days=days_ago),
    )


def test_initial_clustering_is_full():
    decision = decide_strategy(25, None, 0, CONFIG, now=NOW)
    assert decision.strategy == STRATEGY_FULL
    assert decision.reason == "Initial clustering"


def test_previous_run_without_workstreams_is_full():
    decision = decide_strategy(100, _meta(workstreams=0), 0, CONFIG, now=NOW)
    assert decision.strategy == STRATEGY_FULL


def test_no_active_workstreams_is_full():
    decision = decide_strategy(100, _meta(), 0, CONFIG, now=NOW)
    assert decision.strategy == STRATEGY_FULL


def test_ten_percent_growth_is_full():
    decision = decide_strategy(110, _meta(count=100), 4, CONFIG, now=NOW)
    assert decision.strategy == STRATEGY_FULL
    assert "growth" in decision.reason


def test_fifty_new_achievements_is_full():
    # 50 new on a base of 1000 is only 5% growth
    decision = decide_strategy(1050, _meta(count=1000), 4, CONFIG, now=NOW)
    assert decision.strategy == STRATEGY_FULL
    assert decision.reason.startswith("50 new achievements")


def test_stale_clustering_is_full():
    decision = decide_strategy(101, _meta(days_ago=31), 4, CONFIG, now=NOW)
    assert decision.strategy == STRATEGY_FULL
    assert "days" in decision.reason


def test_small_change_is_incremental():
    decision = decide_strategy(105, _meta(count=100, days_ago=29), 4, CONFIG, now=NOW)
    assert decision.strategy == STRATEGY_INCREMENTAL
    assert decision.reason == "Small number of new achievements"


def test_thresholds_are_configurable():
    strict = WorkstreamConfig(recluster_percentage_threshold=0.01)
    decision = decide_strategy(102, _meta(count=100), 4, strict, now=NOW)
    assert decision.strategy == STRATEGY_FULL
