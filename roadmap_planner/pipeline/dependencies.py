"""Dependency graph construction, HARD/SOFT classification and cycle detection."""
from __future__ import annotations

import logging
from collections.abc import Iterable

from roadmap_planner.types import (
    BlockingInfo,
    DependencyEdge,
    DependencyGraph,
    DependencyRationale,
    DroppedDependency,
    GraphNode,
    MetricsSnapshot,
    ProjectRecord,
    PromotionThresholds,
)

log = logging.getLogger(__name__)

SOFT_RATIONALE = "Can proceed without, but enhanced with this dependency"


def build_dependency_graph(projects: list[ProjectRecord]) -> DependencyGraph:
    """One node per project; explicit edges only for targets that exist."""
    nodes: dict[str, GraphNode] = {p.id: GraphNode(id=p.id, name=p.name) for p in projects}
    dropped: list[DroppedDependency] = []

    for project in projects:
        node = nodes[project.id]
        for dep in project.declared_dependencies:
            if dep.target_id not in nodes:
                log.warning("Dropping dependency %s -> %s: unknown project", project.id, dep.target_id)
                dropped.append(DroppedDependency(project_id=project.id, target_id=dep.target_id, kind=dep.kind))
                continue
            existing = next((e for e in node.depends_on if e.target == dep.target_id), None)
            if existing is not None:
                # Repeated declaration: the strongest kind wins.
                if dep.kind == "HARD":
                    existing.kind = "HARD"
                continue
            node.depends_on.append(DependencyEdge(target=dep.target_id, kind=dep.kind, origin="explicit"))
            nodes[dep.target_id].enablers.append(project.id)

    for node in nodes.values():
        node.blocked_by = _hard_targets(node.depends_on)
    return DependencyGraph(nodes=nodes, dropped_dependencies=dropped)


def _hard_targets(edges: Iterable[DependencyEdge]) -> list[str]:
    return [edge.target for edge in edges if edge.kind == "HARD"]


def _lookup(values: dict[str, float], tool: str) -> float:
    wanted = tool.casefold()
    for key, value in values.items():
        if key.casefold() == wanted:
            return float(value or 0.0)
    return 0.0


def _tool_value(values: dict[str, float], tool: str | None) -> float:
    if tool:
        return _lookup(values, tool)
    return max((float(v or 0.0) for v in values.values()), default=0.0)


def _perceived_value_gap(values: dict[str, float], tools: tuple[str, str] | None) -> float:
    if tools:
        return abs(_lookup(values, tools[0]) - _lookup(values, tools[1]))
    if len(values) < 2:
        return 0.0
    scores = [float(v or 0.0) for v in values.values()]
    return max(scores) - min(scores)


def promotion_reasons(metrics: MetricsSnapshot, thresholds: PromotionThresholds) -> list[str]:
    """Every external-metric threshold that is exceeded, as readable text.

    A non-empty result means explicit SOFT edges are upgraded to HARD.
    """
    reasons: list[str] = []
    productivity = _tool_value(metrics.productivity_multipliers, thresholds.productivity_tool)
    if productivity > thresholds.productivity_multiplier:
        reasons.append(f"{productivity:.1f}x productivity multiplier")

    engagement = _tool_value(metrics.engagement_multipliers, thresholds.engagement_tool)
    if engagement > thresholds.engagement_multiplier:
        reasons.append(f"{engagement:.1f}x engagement multiplier")

    gap = _perceived_value_gap(metrics.perceived_value, thresholds.perceived_value_tools)
    if gap > thresholds.perceived_value_gap:
        reasons.append(f"{gap:.0f} point perceived value gap")

    adoption = _tool_value(metrics.adoption, thresholds.adoption_tool)
    if adoption > thresholds.adoption_rate:
        reasons.append(f"{adoption:.0f}% adoption rate")
    return reasons


def classify_dependencies(
    graph: DependencyGraph,
    metrics: MetricsSnapshot,
    thresholds: PromotionThresholds | None = None,
) -> DependencyGraph:
    """Return a copy of *graph* with explicit SOFT edges promoted where metrics demand it.

    Only upgrades, never downgrades; applying it twice gives the same graph.
    """
    reasons = promotion_reasons(metrics, thresholds or PromotionThresholds())
    classified = graph.model_copy(deep=True)
    classified.promotion_reasons = reasons

    for node in classified.nodes.values():
        if reasons:
            for edge in node.depends_on:
                if edge.origin == "explicit" and edge.kind == "SOFT":
                    log.debug("Promoting %s -> %s from SOFT to HARD", node.id, edge.target)
                    edge.kind = "HARD"
                    edge.origin = "promoted"
        node.blocked_by = _hard_targets(node.depends_on)
    return classified


def detect_cycles(graph: DependencyGraph) -> list[list[str]]:
    """Depth-first search over ``depends_on``; each back edge is one reported cycle.

    A cycle is the closed path from the repeated node back to itself, so
    ``A -> B -> A`` is reported as ``["A", "B", "A"]`` and a self-loop as ``["A", "A"]``.
    """
    cycles: list[list[str]] = []
    visited: set[str] = set()
    on_stack: set[str] = set()
    path: list[str] = []

    def visit(node_id: str) -> None:
        visited.add(node_id)
        on_stack.add(node_id)
        path.append(node_id)
        for edge in graph.nodes[node_id].depends_on:
            target = edge.target
            if target in on_stack:
                start = path.index(target)
                cycles.append([*path[start:], target])
            elif target not in visited and target in graph.nodes:
                visit(target)
        path.pop()
        on_stack.discard(node_id)

    for node_id in graph.nodes:
        if node_id not in visited:
            visit(node_id)
    return cycles


def compute_blocking(graph: DependencyGraph) -> dict[str, BlockingInfo]:
    blocking: dict[str, BlockingInfo] = {}
    for project_id, node in graph.nodes.items():
        blocks = [
            enabler
            for enabler in node.enablers
            if enabler in graph.nodes and project_id in graph.nodes[enabler].blocked_by
        ]
        blocking[project_id] = BlockingInfo(
            is_blocked=bool(node.blocked_by),
            blocked_by=list(node.blocked_by),
            blocks=blocks,
            can_start_when=f"After {', '.join(node.blocked_by)} complete" if node.blocked_by else "No blockers",
        )
    return blocking


def generate_rationales(graph: DependencyGraph) -> list[DependencyRationale]:
    rationales: list[DependencyRationale] = []
    for project_id, node in graph.nodes.items():
        for edge in node.depends_on:
            if edge.kind == "SOFT":
                text = SOFT_RATIONALE
            elif edge.origin == "promoted":
                text = "Promoted from SOFT: " + ", ".join(graph.promotion_reasons)
            else:
                text = "Declared prerequisite (architecture foundation)"
            rationales.append(
                DependencyRationale(
                    source=project_id,
                    target=edge.target,
                    kind=edge.kind,
                    origin=edge.origin,
                    rationale=text,
                )
            )
    return rationales


def startable_projects(graph: DependencyGraph, completed: Iterable[str]) -> list[str]:
    """Projects not yet completed whose HARD dependencies are all in *completed*."""
    done = set(completed)
    return [
        project_id
        for project_id, node in graph.nodes.items()
        if project_id not in done and all(target in done for target in node.blocked_by)
    ]


def analyze_dependencies(
    projects: list[ProjectRecord],
    metrics: MetricsSnapshot,
    thresholds: PromotionThresholds | None = None,
) -> DependencyGraph:
    graph = classify_dependencies(build_dependency_graph(projects), metrics, thresholds)
    graph.cycles = detect_cycles(graph)
    for cycle in graph.cycles:
        log.warning("Circular dependency detected: %s", " -> ".join(cycle))
    graph.blocking = compute_blocking(graph)
    graph.rationales = generate_rationales(graph)
    log.info("Dependency analysis: %s", graph.summary())
    return graph
