"""Runs ingestion -> graph -> scores -> schedule -> progress in strict order."""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx

from roadmap_planner.config import Settings, get_settings
from roadmap_planner.db import finish_pipeline_run, init_db, session_scope, start_pipeline_run
from roadmap_planner.ingest import load_metrics, load_projects
from roadmap_planner.models import PipelineRun
from roadmap_planner.pipeline.dependencies import analyze_dependencies
from roadmap_planner.pipeline.progress import track_progress
from roadmap_planner.pipeline.schedule import schedule_projects
from roadmap_planner.pipeline.score import score_projects
from roadmap_planner.types import MetricsSnapshot, PlanResult, ProjectRecord
from roadmap_planner.utils import quarter_label, quarter_number, quarter_of, utc_now

log = logging.getLogger(__name__)

PLAN_FILENAME = "roadmap-plan.json"
PROGRESS_FILENAME = "roadmap-progress.json"


@contextmanager
def _run_ledger(db_url: str | None, stage: str) -> Iterator[dict[str, Any]]:
    """Record the run in ``pipeline_runs`` when a database is configured."""
    details: dict[str, Any] = {}
    if not db_url:
        yield details
        return

    init_db(db_url)
    with session_scope(db_url) as session:
        run_id = start_pipeline_run(session, stage).id
    try:
        yield details
    except Exception as exc:
        with session_scope(db_url) as session:
            finish_pipeline_run(session, session.get(PipelineRun, run_id), status="failed", details=details, error_message=str(exc))
        raise
    with session_scope(db_url) as session:
        finish_pipeline_run(session, session.get(PipelineRun, run_id), status="success", details=details)


def load_inputs(settings: Settings | None = None) -> tuple[list[ProjectRecord], MetricsSnapshot]:
    cfg = settings or get_settings()
    return load_projects(cfg.projects_file), load_metrics(cfg.metrics_file)


async def run_pipeline_async(
    projects: list[ProjectRecord] | None = None,
    snapshot: MetricsSnapshot | None = None,
    *,
    settings: Settings | None = None,
    quarter: str | int | None = None,
    as_of: datetime | None = None,
    db_url: str | None = None,
    track: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PlanResult:
    cfg = settings or get_settings()
    as_of = as_of or utc_now()
    label = quarter_label(quarter_number(quarter) or quarter_of(as_of.date()))

    with _run_ledger(db_url, "plan") as details:
        if projects is None:
            projects = load_projects(cfg.projects_file)
        if snapshot is None:
            snapshot = load_metrics(cfg.metrics_file)

        graph = analyze_dependencies(projects, snapshot, cfg.load_promotion_thresholds())
        scoring = score_projects(projects, graph, label, cfg.load_scoring_policy())
        schedule = schedule_projects(
            projects,
            graph,
            scoring,
            cfg.load_capacity_model(),
            committed=cfg.load_committed_policy(),
            effort_estimates=cfg.load_effort_estimates(),
        )
        progress = []
        if track:
            progress = await track_progress(
                projects,
                snapshot,
                schedule=schedule,
                graph=graph,
                settings=cfg,
                as_of=as_of,
                transport=transport,
            )

        result = PlanResult(
            generated_at=utc_now(),
            quarter=label,
            as_of=as_of.date(),
            graph=graph,
            scoring=scoring,
            schedule=schedule,
            progress=progress,
        )
        details.update(result.summary())
    return result


def run_pipeline(
    projects: list[ProjectRecord] | None = None,
    snapshot: MetricsSnapshot | None = None,
    **kwargs: Any,
) -> PlanResult:
    return asyncio.run(run_pipeline_async(projects, snapshot, **kwargs))


def export_plan(result: PlanResult, output_dir: str | Path) -> dict[str, Path]:
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    plan_path = out / PLAN_FILENAME
    plan_payload = {
        "generated_at": result.generated_at.isoformat(),
        "quarter": result.quarter,
        "summary": result.summary(),
        "dependencies": result.graph.model_dump(mode="json"),
        "graph_summary": result.graph.summary(),
        "scores": result.scoring.model_dump(mode="json"),
        "schedule": result.schedule.model_dump(mode="json"),
    }
    plan_path.write_text(json.dumps(plan_payload, indent=2, ensure_ascii=False), encoding="utf-8")

    progress_path = out / PROGRESS_FILENAME
    progress_payload = {
        "generated_at": result.generated_at.isoformat(),
        "as_of": result.as_of.isoformat(),
        "projects": [report.model_dump(mode="json") for report in result.progress],
    }
    progress_path.write_text(json.dumps(progress_payload, indent=2, ensure_ascii=False), encoding="utf-8")

    log.info("Wrote %s and %s", plan_path, progress_path)
    return {"plan": plan_path, "progress": progress_path}
