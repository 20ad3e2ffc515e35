"""Tier 2: behavioural usage signals against per-project targets."""
from __future__ import annotations

import logging
from collections.abc import Callable
from statistics import fmean
from typing import Any

from roadmap_planner.types import BehavioralProgress, Confidence, MetricsSnapshot, SignalFormula, SignalMapping
from roadmap_planner.utils import clip, get_path

log = logging.getLogger(__name__)

ADOPTION_CAP = 100.0
USAGE_METRIC_CAP = 150.0


def _adoption(ratios: list[float]) -> float:
    return fmean(min(ratio, ADOPTION_CAP) for ratio in ratios)


def _usage(ratios: list[float]) -> float:
    return min(fmean(min(ratio, USAGE_METRIC_CAP) for ratio in ratios), 100.0)


FORMULAS: dict[SignalFormula, Callable[[list[float]], float]] = {
    "adoption": _adoption,
    "usage": _usage,
}


def _numeric(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def resolve_metric(snapshot: MetricsSnapshot, path: str) -> float | None:
    """Look a dotted path up in ``snapshot.usage``, then in the whole snapshot."""
    value = _numeric(get_path(snapshot.usage, path))
    if value is None:
        value = _numeric(get_path(snapshot.model_dump(), path))
    return value


def signal_confidence(count: int) -> Confidence:
    if count >= 3:
        return "high"
    if count == 2:
        return "medium"
    if count == 1:
        return "low"
    return "none"


def analyze_signals(
    project_id: str,
    snapshot: MetricsSnapshot,
    mappings: dict[str, SignalMapping],
) -> BehavioralProgress:
    mapping = mappings.get(project_id)
    if mapping is None:
        return BehavioralProgress()

    signals: dict[str, float] = {}
    for name, path in mapping.metrics.items():
        value = resolve_metric(snapshot, path)
        if value is None:
            log.debug("%s: metric %s (%s) not in snapshot", project_id, name, path)
            continue
        signals[name] = value

    metric_progress: dict[str, float] = {}
    for name, value in signals.items():
        target = mapping.targets.get(name)
        if not target or target <= 0:
            continue
        metric_progress[name] = round(value / target * 100, 1)

    if not metric_progress:
        return BehavioralProgress(signals=signals, formula=mapping.formula)

    progress = clip(FORMULAS[mapping.formula](list(metric_progress.values())), 0.0, 100.0)
    return BehavioralProgress(
        progress_pct=round(progress, 1),
        signals=signals,
        metric_progress=metric_progress,
        formula=mapping.formula,
        confidence=signal_confidence(len(metric_progress)),
    )
