"""Greedy quarter allocation under fixed capacity.

One forward pass per quarter, in chronological order, over the ranked
projects. A project is placed only after its HARD dependencies are placed
and only if its effort fits the quarter's remaining capacity; nothing is
ever revisited or force-assigned.
"""
from __future__ import annotations

import logging

from roadmap_planner.types import (
    CommittedPolicy,
    DeferredProject,
    DependencyGraph,
    ProjectRecord,
    QuarterCapacity,
    QuarterSchedule,
    ScheduleResult,
    ScoreRecord,
    ScoringResult,
)
from roadmap_planner.utils import quarter_label, quarter_number

log = logging.getLogger(__name__)

DEFAULT_EFFORT_DAYS = 60.0


def effort_for(
    project: ProjectRecord | None,
    estimates: dict[str, float] | None = None,
    default: float = DEFAULT_EFFORT_DAYS,
) -> float:
    if project is None:
        return default
    if estimates and project.id in estimates:
        return max(estimates[project.id], 0.0)
    return max(project.effort_days, 0.0) if project.effort_days is not None else default


def _ordered_quarters(capacity_model: dict[str, QuarterCapacity]) -> list[tuple[str, QuarterCapacity]]:
    ordered: list[tuple[int, str, QuarterCapacity]] = []
    for key, capacity in capacity_model.items():
        number = quarter_number(key)
        if number is None:
            log.warning("Ignoring capacity entry with unknown quarter %r", key)
            continue
        ordered.append((number, quarter_label(number), capacity))
    ordered.sort(key=lambda item: item[0])
    return [(label, capacity) for _, label, capacity in ordered]


def _schedule_quarter(
    quarter: str,
    capacity: QuarterCapacity,
    ranked: list[ScoreRecord],
    projects: dict[str, ProjectRecord],
    graph: DependencyGraph,
    scheduled: frozenset[str],
    *,
    estimates: dict[str, float],
    committed_ids: list[str] | None = None,
    consumed_days: float = 0.0,
    reserved: frozenset[str] = frozenset(),
) -> tuple[QuarterSchedule, frozenset[str]]:
    """Run one quarter's pass; returns the quarter record and the grown scheduled set.

    Ids in *reserved* belong to the committed quarter and are never picked by the greedy pass.
    """
    total = float(capacity.total_days or 0.0)
    allocated = min(max(consumed_days, 0.0), total)
    placed = set(scheduled)
    placed.update(committed_ids or [])
    schedule = QuarterSchedule(
        quarter=quarter,
        committed_ids=list(committed_ids or []),
        capacity=total,
        notes=capacity.notes,
    )

    for record in ranked:
        project_id = record.project_id
        if project_id in placed or project_id in reserved:
            continue
        unmet = [dep for dep in graph.hard_dependencies(project_id) if dep not in placed]
        if unmet:
            log.debug("%s: %s waiting on %s", quarter, project_id, ", ".join(unmet))
            continue
        effort = effort_for(projects.get(project_id), estimates)
        if effort > total - allocated:
            log.debug("%s: %s needs %.0f days, %.0f left", quarter, project_id, effort, total - allocated)
            continue
        # Placed immediately, so later dependents in this same pass can start.
        placed.add(project_id)
        allocated += effort
        schedule.scheduled_ids.append(project_id)
        schedule.allocations[project_id] = effort

    schedule.allocated_days = allocated
    schedule.buffer_days = total - allocated
    return schedule, frozenset(placed)


def schedule_projects(
    projects: list[ProjectRecord],
    graph: DependencyGraph,
    scoring: ScoringResult,
    capacity_model: dict[str, QuarterCapacity],
    committed: CommittedPolicy | None = None,
    effort_estimates: dict[str, float] | None = None,
) -> ScheduleResult:
    by_id = {project.id: project for project in projects}
    estimates = effort_estimates or {}
    committed = committed or CommittedPolicy()
    committed_quarter = quarter_label(quarter_number(committed.quarter) or 1)

    committed_ids: list[str] = []
    for project_id in committed.ids:
        if project_id not in by_id:
            log.warning("Committed project %s is not in the project set", project_id)
        elif project_id not in committed_ids:
            committed_ids.append(project_id)
    reserved = frozenset(committed_ids)
    ordered = _ordered_quarters(capacity_model)
    if reserved and committed_quarter not in {label for label, _ in ordered}:
        log.warning("Committed quarter %s has no capacity entry; committed projects stay unscheduled", committed_quarter)

    scheduled: frozenset[str] = frozenset()
    quarters: list[QuarterSchedule] = []
    for label, capacity in ordered:
        seeds: list[str] = []
        consumed = 0.0
        if label == committed_quarter and committed_ids:
            seeds = committed_ids
            consumed = committed.consumed_days if committed.consumed_days is not None else float(capacity.total_days or 0.0)
        quarter_schedule, scheduled = _schedule_quarter(
            label,
            capacity,
            scoring.ranked,
            by_id,
            graph,
            scheduled,
            estimates=estimates,
            committed_ids=seeds,
            consumed_days=consumed,
            reserved=reserved,
        )
        quarters.append(quarter_schedule)

    deferred: list[DeferredProject] = []
    for record in scoring.ranked:
        if record.project_id in scheduled:
            continue
        unmet = [dep for dep in graph.hard_dependencies(record.project_id) if dep not in scheduled]
        if unmet:
            reason, blocker = f"Blocked by: {unmet[0]}", unmet[0]
        else:
            reason, blocker = "Insufficient capacity", None
        deferred.append(
            DeferredProject(
                project_id=record.project_id,
                name=record.name,
                score=record.final_score,
                reason=reason,
                blocked_by=blocker,
            )
        )

    result = ScheduleResult(quarters=quarters, deferred=deferred, capacity_model=dict(capacity_model))
    log.info("Schedule: %s", result.summary())
    return result


def startable_in_quarter(schedule: ScheduleResult, graph: DependencyGraph, quarter: str | int) -> list[str]:
    """Projects whose HARD dependencies are all scheduled in or before *quarter*."""
    limit = quarter_number(quarter)
    if limit is None:
        raise ValueError(f"Unknown quarter: {quarter!r}")
    ready: set[str] = set()
    for quarter_schedule in schedule.quarters:
        number = quarter_number(quarter_schedule.quarter)
        if number is not None and number <= limit:
            ready.update(quarter_schedule.project_ids)
    return [
        project_id
        for project_id in graph.nodes
        if all(dep in ready for dep in graph.hard_dependencies(project_id))
    ]
