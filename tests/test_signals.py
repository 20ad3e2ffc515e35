from __future__ import annotations

import pytest

from roadmap_planner.pipeline.signals import analyze_signals, resolve_metric, signal_confidence
from roadmap_planner.types import MetricsSnapshot, SignalMapping

SNAPSHOT = MetricsSnapshot(
    adoption={"copilot": 64},
    usage={
        "copilot": {"active_users": 150, "weekly_sessions": 1_400, "prompts": 90},
        "flag": True,
    },
)


def test_adoption_formula_caps_each_metric_at_target() -> None:
    mappings = {
        "copilot": SignalMapping(
            formula="adoption",
            metrics={"users": "copilot.active_users", "sessions": "copilot.weekly_sessions"},
            targets={"users": 300, "sessions": 1_000},
        )
    }
    progress = analyze_signals("copilot", SNAPSHOT, mappings)
    assert progress.metric_progress == {"users": 50.0, "sessions": 140.0}
    assert progress.progress_pct == 75.0
    assert progress.confidence == "medium"
    assert progress.signals == {"users": 150.0, "sessions": 1_400.0}


def test_usage_formula_caps_metrics_at_150_and_aggregate_at_100() -> None:
    mappings = {
        "copilot": SignalMapping(
            formula="usage",
            metrics={
                "users": "copilot.active_users",
                "sessions": "copilot.weekly_sessions",
                "prompts": "copilot.prompts",
            },
            targets={"users": 50, "sessions": 700, "prompts": 100},
        )
    }
    progress = analyze_signals("copilot", SNAPSHOT, mappings)
    # Uncapped values are kept for display.
    assert progress.metric_progress == {"users": 300.0, "sessions": 200.0, "prompts": 90.0}
    assert progress.progress_pct == 100.0
    assert progress.confidence == "high"


def test_usage_formula_below_cap() -> None:
    mappings = {
        "copilot": SignalMapping(
            formula="usage",
            metrics={"users": "copilot.active_users", "prompts": "copilot.prompts"},
            targets={"users": 200, "prompts": 100},
        )
    }
    progress = analyze_signals("copilot", SNAPSHOT, mappings)
    assert progress.progress_pct == pytest.approx((75 + 90) / 2, abs=0.1)


def test_missing_metrics_and_targets_are_ignored() -> None:
    mappings = {
        "copilot": SignalMapping(
            metrics={"users": "copilot.active_users", "ghost": "copilot.nothing", "flag": "flag", "untargeted": "copilot.prompts"},
            targets={"users": 300, "ghost": 10, "flag": 1, "untargeted": 0},
        )
    }
    progress = analyze_signals("copilot", SNAPSHOT, mappings)
    assert progress.metric_progress == {"users": 50.0}
    assert progress.confidence == "low"


def test_no_mapping_means_no_confidence() -> None:
    progress = analyze_signals("unknown", SNAPSHOT, {})
    assert progress.confidence == "none"
    assert progress.progress_pct == 0


def test_metric_paths_fall_back_to_whole_snapshot() -> None:
    assert resolve_metric(SNAPSHOT, "adoption.copilot") == 64.0
    assert resolve_metric(SNAPSHOT, "copilot.active_users") == 150.0
    assert resolve_metric(SNAPSHOT, "flag") is None


@pytest.mark.parametrize(("count", "expected"), [(0, "none"), (1, "low"), (2, "medium"), (3, "high"), (7, "high")])
def test_signal_confidence(count: int, expected: str) -> None:
    assert signal_confidence(count) == expected
