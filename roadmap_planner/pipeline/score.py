from __future__ import annotations

import logging
import math

from roadmap_planner.types import (
    DependencyGraph,
    ProjectRecord,
    QuarterWeighting,
    ScoreRecord,
    ScoringPolicy,
    ScoringResult,
)
from roadmap_planner.utils import clip, quarter_label, quarter_number

log = logging.getLogger(__name__)

DRIVER_BONUS = {
    "growth": 20.0,
    "win": 20.0,
    "retention": 15.0,
    "retain": 15.0,
    "innovation": 10.0,
    "innovate": 10.0,
}

MULTI_FACTOR_WEIGHTS = {
    "financial": 0.30,
    "strategic": 0.25,
    "feasibility": 0.25,
    "time_to_value": 0.20,
}


def get_weighting(quarter: str | int) -> QuarterWeighting:
    number = quarter_number(quarter)
    if number is None:
        raise ValueError(f"Unknown quarter: {quarter!r}")
    if number <= 2:
        return QuarterWeighting(
            multi_factor=0.7,
            roi=0.3,
            rationale="Early quarters: ROI forecasts are immature, multi-factor assessment dominates",
        )
    return QuarterWeighting(
        multi_factor=0.6,
        roi=0.4,
        rationale="Later quarters: ROI forecasts have matured, ROI weight increased",
    )


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


def financial_score(project: ProjectRecord) -> float:
    if project.value is None:
        return 0.0
    return clip(project.value / 1_000_000 * 25, 0.0, 100.0)


def strategic_score(project: ProjectRecord) -> float:
    # Driver tags are casefolded on the record.
    bonus = sum(DRIVER_BONUS.get(driver, 0.0) for driver in project.strategic_drivers)
    return clip(20.0 * len(project.strategic_pillars) + bonus, 0.0, 100.0)


def _mentions(text: str, keywords: list[str]) -> bool:
    lowered = text.casefold()
    return any(keyword.casefold() in lowered for keyword in keywords if keyword)


def feasibility_score(
    project: ProjectRecord,
    blocked_by: list[str],
    policy: ScoringPolicy | None = None,
) -> float:
    policy = policy or ScoringPolicy()
    score = 30.0 if not blocked_by else -50.0
    if policy.assume_domain_expertise:
        score += 20.0
    if any(_mentions(phase.name, policy.pilot_keywords) for phase in project.phases):
        score += 20.0
    vendor_deps = [
        dep.target_id for dep in project.declared_dependencies if _mentions(dep.target_id, policy.external_vendor_keywords)
    ]
    if not vendor_deps:
        score += 15.0
    if policy.assume_champion_availability:
        score += 15.0
    return clip(score, 0.0, 100.0)


def time_to_value_score(effort_days: float) -> float:
    quarters = math.ceil(max(effort_days, 0.0) / 60)
    if quarters < 1:
        return 100.0
    return {1: 80.0, 2: 60.0, 3: 40.0}.get(quarters, 20.0)


def roi_score(project: ProjectRecord) -> float:
    if project.roi_percent is None:
        return 0.0
    return clip(project.roi_percent / 5, 0.0, 100.0)


# ---------------------------------------------------------------------------
# Blend + rank
# ---------------------------------------------------------------------------


def score_project(
    project: ProjectRecord,
    graph: DependencyGraph,
    weighting: QuarterWeighting,
    policy: ScoringPolicy | None = None,
) -> ScoreRecord:
    financial = financial_score(project)
    strategic = strategic_score(project)
    feasibility = feasibility_score(project, graph.hard_dependencies(project.id), policy)
    time_to_value = time_to_value_score(project.effort_days)
    multi_factor = clip(
        MULTI_FACTOR_WEIGHTS["financial"] * financial
        + MULTI_FACTOR_WEIGHTS["strategic"] * strategic
        + MULTI_FACTOR_WEIGHTS["feasibility"] * feasibility
        + MULTI_FACTOR_WEIGHTS["time_to_value"] * time_to_value,
        0.0,
        100.0,
    )
    roi = roi_score(project)
    final = clip(weighting.multi_factor * multi_factor + weighting.roi * roi, 0.0, 100.0)
    return ScoreRecord(
        project_id=project.id,
        name=project.name,
        financial_score=round(financial, 2),
        strategic_score=round(strategic, 2),
        feasibility_score=round(feasibility, 2),
        time_to_value_score=round(time_to_value, 2),
        multi_factor_score=round(multi_factor, 2),
        roi_score=round(roi, 2),
        final_score=round(final, 2),
    )


def score_projects(
    projects: list[ProjectRecord],
    graph: DependencyGraph,
    quarter: str | int = "Q1",
    policy: ScoringPolicy | None = None,
) -> ScoringResult:
    """Score every project and rank by descending final score.

    ``sorted`` is stable, so ties keep their input order.
    """
    weighting = get_weighting(quarter)
    records = [score_project(project, graph, weighting, policy) for project in projects]
    ranked = sorted(records, key=lambda record: -record.final_score)
    for index, record in enumerate(ranked, start=1):
        record.rank = index

    label = quarter_label(quarter_number(quarter) or 1)
    if ranked:
        log.info("Scored %d projects for %s; top=%s (%.1f)", len(ranked), label, ranked[0].project_id, ranked[0].final_score)
    return ScoringResult(quarter=label, weighting=weighting, ranked=ranked)
