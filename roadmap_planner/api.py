from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query

from roadmap_planner.config import Settings, get_settings
from roadmap_planner.ingest import PlannerInputError
from roadmap_planner.pipeline.orchestrator import run_pipeline_async
from roadmap_planner.types import (
    DependencyGraph,
    PlanResult,
    ProgressReport,
    ScheduleResult,
    ScoringResult,
)
from roadmap_planner.utils import quarter_label, quarter_number

log = logging.getLogger(__name__)

app = FastAPI(
    title="Roadmap Planner",
    version="0.1.0",
    description=(
        "Read-only view over the prioritisation pipeline. Every request recomputes "
        "the dependency graph, scores, schedule and progress from the configured inputs."
    ),
    openapi_tags=[
        {"name": "Plan", "description": "Full pipeline output."},
        {"name": "Stages", "description": "Individual stage outputs."},
        {"name": "Progress", "description": "Per-project progress reports. Repository data needs GITHUB_TOKEN."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def settings_dependency() -> Settings:
    return get_settings()


def _quarter(quarter: str | None) -> str | None:
    if quarter is None:
        return None
    number = quarter_number(quarter)
    if number is None:
        raise HTTPException(422, "quarter must be one of Q1, Q2, Q3, Q4")
    return quarter_label(number)


async def _plan(settings: Settings, *, quarter: str | None = None, as_of: date | None = None, track: bool = True) -> PlanResult:
    when = datetime.combine(as_of, datetime.min.time()) if as_of else None
    try:
        return await run_pipeline_async(settings=settings, quarter=_quarter(quarter), as_of=when, track=track)
    except PlannerInputError as exc:
        log.error("Pipeline inputs unavailable: %s", exc)
        raise HTTPException(503, f"Pipeline inputs unavailable: {exc}") from exc


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Plan"], summary="Liveness check")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/plan", response_model=PlanResult, tags=["Plan"], summary="Run the full pipeline")
async def get_plan(
    quarter: str | None = Query(None, description="Scoring quarter (Q1-Q4)."),
    as_of: date | None = Query(None, description="Analysis date (YYYY-MM-DD)."),
    settings: Settings = Depends(settings_dependency),
):
    return await _plan(settings, quarter=quarter, as_of=as_of)


@app.get("/api/graph", response_model=DependencyGraph, tags=["Stages"], summary="Classified dependency graph")
async def get_graph(settings: Settings = Depends(settings_dependency)):
    return (await _plan(settings, track=False)).graph


@app.get("/api/scores", response_model=ScoringResult, tags=["Stages"], summary="Ranked hybrid scores")
async def get_scores(
    quarter: str | None = Query(None, description="Scoring quarter (Q1-Q4)."),
    settings: Settings = Depends(settings_dependency),
):
    return (await _plan(settings, quarter=quarter, track=False)).scoring


@app.get("/api/schedule", response_model=ScheduleResult, tags=["Stages"], summary="Quarter schedule and deferrals")
async def get_schedule(
    quarter: str | None = Query(None, description="Scoring quarter (Q1-Q4)."),
    settings: Settings = Depends(settings_dependency),
):
    return (await _plan(settings, quarter=quarter, track=False)).schedule


@app.get("/api/progress", response_model=list[ProgressReport], tags=["Progress"], summary="Progress for every project")
async def get_progress(
    as_of: date | None = Query(None, description="Analysis date (YYYY-MM-DD)."),
    settings: Settings = Depends(settings_dependency),
):
    return (await _plan(settings, as_of=as_of)).progress


@app.get("/api/progress/{project_id}", response_model=ProgressReport, tags=["Progress"], summary="Progress for one project")
async def get_project_progress(
    project_id: str,
    as_of: date | None = Query(None, description="Analysis date (YYYY-MM-DD)."),
    settings: Settings = Depends(settings_dependency),
) -> Any:
    result = await _plan(settings, as_of=as_of)
    for report in result.progress:
        if report.project_id == project_id:
            return report
    raise HTTPException(404, "Project not found")
