from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

import httpx

from roadmap_planner.config import Settings, get_settings
from roadmap_planner.pipeline.phases import analyze_phases
from roadmap_planner.pipeline.repo_activity import (
    GitHubActivityClient,
    analyze_repository,
    open_github_client,
    should_analyze_repository,
)
from roadmap_planner.pipeline.signals import analyze_signals
from roadmap_planner.types import (
    BehavioralProgress,
    Confidence,
    DeliveryStatus,
    DependencyGraph,
    FusionWeights,
    MetricsSnapshot,
    PhaseProgress,
    ProgressReport,
    ProjectRecord,
    RepositoryProgress,
    ScheduleResult,
    SignalMapping,
)
from roadmap_planner.utils import clip, quarter_label, quarter_number, quarter_of, utc_now

log = logging.getLogger(__name__)

_CONFIDENCE_BY_TIERS: dict[int, Confidence] = {0: "none", 1: "low", 2: "medium", 3: "high"}


# ---------------------------------------------------------------------------
# Fusion + delivery status
# ---------------------------------------------------------------------------


def fuse_progress(
    tier1: PhaseProgress,
    tier2: BehavioralProgress,
    tier3: RepositoryProgress | None,
    weights: FusionWeights | None = None,
) -> float:
    """Confidence-weighted blend of the available tiers.

    Without tier 3 the fallback weights apply. Tiers with confidence ``none``
    are left out and the remaining weights renormalised; nothing available
    gives 0.
    """
    weights = weights or FusionWeights()
    if tier3 is not None and tier3.confidence != "none":
        parts = [
            (weights.tier1, tier1.progress_pct, tier1.confidence),
            (weights.tier2, tier2.progress_pct, tier2.confidence),
            (weights.tier3, tier3.progress_pct, tier3.confidence),
        ]
    else:
        parts = [
            (weights.fallback_tier1, tier1.progress_pct, tier1.confidence),
            (weights.fallback_tier2, tier2.progress_pct, tier2.confidence),
        ]
    included = [(weight, pct) for weight, pct, confidence in parts if confidence != "none"]
    total = sum(weight for weight, _ in included)
    if total <= 0:
        return 0.0
    return round(clip(sum(weight * pct for weight, pct in included) / total, 0.0, 100.0), 1)


def available_tiers(tier1: PhaseProgress, tier2: BehavioralProgress, tier3: RepositoryProgress | None) -> int:
    count = int(tier1.confidence != "none") + int(tier2.confidence != "none")
    return count + int(tier3 is not None and tier3.confidence != "none")


def expected_progress(planned_quarter: str | None, current_quarter: int) -> float | None:
    """Expected completion for a due project; ``None`` when not yet due or unplanned."""
    planned = quarter_number(planned_quarter)
    if planned is None or planned > current_quarter:
        return None
    return 50.0 if planned == current_quarter else 100.0


def classify_delivery(actual: float, expected: float | None) -> tuple[DeliveryStatus, float]:
    if expected is None:
        return "on-track", 0.0
    variance = round(actual - expected, 1)
    if variance > 20:
        return "ahead", variance
    if variance > -10:
        return "on-track", variance
    if variance > -30:
        return "behind", variance
    return "at-risk", variance


def collect_blockers(
    project: ProjectRecord,
    tier3: RepositoryProgress | None,
    graph: DependencyGraph | None,
    schedule: ScheduleResult | None,
) -> list[str]:
    blockers = [risk for risk in project.risks if risk.strip()]
    if tier3 is not None and tier3.activity.open_issue_count:
        blockers.append(f"{tier3.activity.open_issue_count} open issues in {tier3.repository}")
    deferral = schedule.deferral_for(project.id) if schedule else None
    if deferral is not None:
        unmet = [
            dep for dep in (graph.hard_dependencies(project.id) if graph else []) if schedule.quarter_for(dep) is None
        ]
        if unmet:
            blockers.extend(f"Waiting on HARD dependency {dep}" for dep in unmet)
        else:
            blockers.append(f"Deferred: {deferral.reason}")
    return blockers


def build_report(
    project: ProjectRecord,
    tier1: PhaseProgress,
    tier2: BehavioralProgress,
    tier3: RepositoryProgress | None,
    *,
    planned_quarter: str | None,
    current_quarter: int,
    analyzed_at: datetime,
    weights: FusionWeights | None = None,
    blockers: list[str] | None = None,
) -> ProgressReport:
    overall = fuse_progress(tier1, tier2, tier3, weights)
    expected = expected_progress(planned_quarter, current_quarter)
    status, variance = classify_delivery(overall, expected)
    return ProgressReport(
        project_id=project.id,
        name=project.name,
        status=project.status,
        tier1=tier1,
        tier2=tier2,
        tier3=tier3,
        overall_progress_pct=overall,
        delivery_status=status,
        planned_quarter=planned_quarter,
        current_quarter=quarter_label(current_quarter),
        expected_progress_pct=expected or 0.0,
        variance=variance,
        blockers=blockers or [],
        velocity=tier3.velocity if tier3 is not None else "unknown",
        confidence=_CONFIDENCE_BY_TIERS[available_tiers(tier1, tier2, tier3)],
        analyzed_at=analyzed_at,
    )


# ---------------------------------------------------------------------------
# Tier 3 dispatch
# ---------------------------------------------------------------------------


async def _analyze_repositories(
    targets: list[tuple[ProjectRecord, str]],
    settings: Settings,
    as_of: datetime,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, RepositoryProgress | None]:
    if not targets:
        return {}
    if not settings.github_token:
        log.info("GITHUB_TOKEN not set; repository activity skipped for %d projects", len(targets))
        return {}

    semaphore = asyncio.Semaphore(max(1, settings.github_max_concurrency))
    async with open_github_client(settings, transport) as http:
        client = GitHubActivityClient(http, settings.load_roadmap_files())

        async def one(project: ProjectRecord, url: str) -> RepositoryProgress | None:
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        analyze_repository(client, project, url, as_of),
                        timeout=settings.repository_timeout_seconds,
                    )
                except TimeoutError:
                    log.warning("%s: repository analysis timed out after %.0fs", project.id, settings.repository_timeout_seconds)
                    return None

        results = await asyncio.gather(*(one(project, url) for project, url in targets))
    return {project.id: result for (project, _), result in zip(targets, results)}


async def track_progress(
    projects: list[ProjectRecord],
    snapshot: MetricsSnapshot,
    *,
    schedule: ScheduleResult | None = None,
    graph: DependencyGraph | None = None,
    settings: Settings | None = None,
    signal_mappings: dict[str, SignalMapping] | None = None,
    repositories: dict[str, str] | None = None,
    weights: FusionWeights | None = None,
    as_of: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[ProgressReport]:
    """One progress report per project, tiers 1 and 2 locally and tier 3 concurrently."""
    cfg = settings or get_settings()
    as_of = as_of or utc_now()
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=UTC)
    current_quarter = quarter_of(as_of.date())
    mappings = cfg.load_signal_mappings() if signal_mappings is None else signal_mappings
    repo_table = cfg.load_repository_mappings() if repositories is None else repositories
    weights = weights or cfg.load_fusion_weights()

    planned = {project.id: schedule.quarter_for(project.id) if schedule else None for project in projects}
    targets: list[tuple[ProjectRecord, str]] = []
    for project in projects:
        url = repo_table.get(project.id) or project.repo_url
        if should_analyze_repository(project, url, planned[project.id], current_quarter):
            targets.append((project, url))
    tier3_results = await _analyze_repositories(targets, cfg, as_of, transport)

    reports: list[ProgressReport] = []
    for project in projects:
        tier3 = tier3_results.get(project.id)
        reports.append(
            build_report(
                project,
                analyze_phases(project, current_quarter),
                analyze_signals(project.id, snapshot, mappings),
                tier3,
                planned_quarter=planned[project.id],
                current_quarter=current_quarter,
                analyzed_at=as_of,
                weights=weights,
                blockers=collect_blockers(project, tier3, graph, schedule),
            )
        )

    statuses: dict[str, int] = {}
    for report in reports:
        statuses[report.delivery_status] = statuses.get(report.delivery_status, 0) + 1
    log.info("Progress tracked for %d projects (%d with repository data): %s", len(reports), sum(1 for r in tier3_results.values() if r), statuses)
    return reports
