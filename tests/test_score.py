from __future__ import annotations

import random

import pytest

from roadmap_planner.pipeline.dependencies import analyze_dependencies
from roadmap_planner.pipeline.score import (
    feasibility_score,
    get_weighting,
    score_projects,
    strategic_score,
    time_to_value_score,
)
from roadmap_planner.types import MetricsSnapshot, ProjectRecord, ScoringPolicy


def _score(projects: list[ProjectRecord], quarter: str = "Q1", policy: ScoringPolicy | None = None):
    graph = analyze_dependencies(projects, MetricsSnapshot())
    return score_projects(projects, graph, quarter, policy)


def test_reference_project_scores() -> None:
    project = ProjectRecord(
        id="growth-pilot",
        name="Growth Pilot",
        value=2_000_000,
        roi_percent=300,
        effort_days=60,
        strategic_pillars=["customer experience"],
        strategic_drivers=["growth"],
        phases=[{"name": "Pilot with two sales teams"}, {"name": "Company-wide rollout"}],
    )
    record = _score([project]).ranked[0]

    assert record.financial_score == 50
    assert record.strategic_score == 40
    assert record.feasibility_score == 80
    assert record.time_to_value_score == 80
    assert record.multi_factor_score == pytest.approx(61)
    assert record.roi_score == 60
    assert record.final_score == pytest.approx(60.7)
    assert record.rank == 1


def test_absent_value_and_roi_score_zero() -> None:
    record = _score([ProjectRecord(id="bare", name="Bare", value=None, roi_percent=None)]).ranked[0]
    assert record.financial_score == 0
    assert record.roi_score == 0
    assert 0 <= record.final_score <= 100


def test_components_are_clamped() -> None:
    project = ProjectRecord(
        id="huge",
        name="Huge",
        value=50_000_000,
        roi_percent=5_000,
        effort_days=0,
        strategic_pillars=["a", "b", "c", "d", "e", "f"],
        strategic_drivers=["growth", "retention", "innovation"],
    )
    record = _score([project], "Q4").ranked[0]
    assert record.financial_score == 100
    assert record.strategic_score == 100
    assert record.roi_score == 100
    assert record.time_to_value_score == 100
    assert record.final_score <= 100


def test_driver_bonus_needs_an_exact_tag() -> None:
    assert strategic_score(ProjectRecord(id="a", name="A", strategic_drivers=["Growth"])) == 20
    assert strategic_score(ProjectRecord(id="w", name="W", strategic_drivers=["Win", "Retain"])) == 35
    assert strategic_score(ProjectRecord(id="b", name="B", strategic_drivers=["non-growth", "retention-ish"])) == 0
    assert strategic_score(ProjectRecord(id="c", name="C", strategic_drivers=["retention", "innovation"])) == 25


def test_hard_dependency_floors_feasibility() -> None:
    projects = [
        ProjectRecord(id="app", name="App", declared_dependencies=[{"target_id": "core", "kind": "HARD"}]),
        ProjectRecord(id="core", name="Core"),
    ]
    scores = _score(projects).by_id()
    assert scores["app"].feasibility_score == 0
    assert scores["core"].feasibility_score == 60


def test_feasibility_policy_bonuses() -> None:
    project = ProjectRecord(
        id="crm",
        name="CRM sync",
        phases=[{"name": "Prototype"}],
        declared_dependencies=[{"target_id": "salesforce-connector", "kind": "SOFT"}],
    )
    assert feasibility_score(project, []) == 30 + 20 + 15
    assert feasibility_score(project, [], ScoringPolicy(assume_domain_expertise=True)) == 30 + 20 + 20 + 15
    assert feasibility_score(project, [], ScoringPolicy(assume_champion_availability=False)) == 30 + 20


@pytest.mark.parametrize(
    ("effort", "expected"),
    [(0, 100), (30, 80), (60, 80), (61, 60), (120, 60), (180, 40), (181, 20), (600, 20)],
)
def test_time_to_value_buckets(effort: float, expected: float) -> None:
    assert time_to_value_score(effort) == expected


def test_weighting_shifts_towards_roi_in_later_quarters() -> None:
    assert (get_weighting("Q1").multi_factor, get_weighting("Q1").roi) == (0.7, 0.3)
    assert (get_weighting(2).multi_factor, get_weighting(2).roi) == (0.7, 0.3)
    assert (get_weighting("q3").multi_factor, get_weighting("q3").roi) == (0.6, 0.4)
    assert (get_weighting("Q4").multi_factor, get_weighting("Q4").roi) == (0.6, 0.4)
    with pytest.raises(ValueError):
        get_weighting("Q7")


def test_ties_keep_input_order() -> None:
    projects = [ProjectRecord(id=f"p{i}", name=f"P{i}") for i in range(5)]
    ranked = _score(projects).ranked
    assert [r.project_id for r in ranked] == ["p0", "p1", "p2", "p3", "p4"]
    assert [r.rank for r in ranked] == [1, 2, 3, 4, 5]


def test_ranking_descends_by_final_score() -> None:
    projects = [
        ProjectRecord(id="low", name="Low", value=100_000),
        ProjectRecord(id="high", name="High", value=4_000_000, roi_percent=400),
        ProjectRecord(id="mid", name="Mid", value=1_000_000),
    ]
    result = _score(projects, "Q3")
    assert [r.project_id for r in result.ranked] == ["high", "mid", "low"]
    assert result.quarter == "Q3"


def test_scores_stay_in_range_for_random_inputs() -> None:
    rng = random.Random(7)
    projects = []
    for i in range(60):
        projects.append(
            ProjectRecord(
                id=f"p{i}",
                name=f"P{i}",
                value=rng.choice([None, -5_000, rng.uniform(0, 20_000_000)]),
                roi_percent=rng.choice([None, -100, rng.uniform(0, 2_000)]),
                effort_days=rng.uniform(0, 400),
                strategic_pillars=[f"pillar-{n}" for n in range(rng.randint(0, 7))],
                strategic_drivers=rng.sample(["growth", "retention", "innovation", "cost"], rng.randint(0, 4)),
                declared_dependencies=[
                    {"target_id": f"p{rng.randrange(60)}", "kind": rng.choice(["HARD", "SOFT"])}
                    for _ in range(rng.randint(0, 3))
                ],
            )
        )
    for quarter in ("Q1", "Q2", "Q3", "Q4"):
        for record in _score(projects, quarter).ranked:
            for value in (
                record.financial_score,
                record.strategic_score,
                record.feasibility_score,
                record.time_to_value_score,
                record.multi_factor_score,
                record.roi_score,
                record.final_score,
            ):
                assert 0 <= value <= 100
