from __future__ import annotations

from datetime import datetime
import json
import logging
import os
from pathlib import Path
from typing import Any

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from roadmap_planner.config import get_settings
from roadmap_planner.db import init_db, list_pipeline_runs
from roadmap_planner.ingest import PlannerInputError
from roadmap_planner.pipeline.dependencies import analyze_dependencies
from roadmap_planner.pipeline.orchestrator import export_plan, load_inputs, run_pipeline
from roadmap_planner.pipeline.schedule import schedule_projects
from roadmap_planner.pipeline.score import score_projects
from roadmap_planner.types import MetricsSnapshot, PlanResult, ProjectRecord
from roadmap_planner.utils import from_json, quarter_label, quarter_number, quarter_of, utc_now

app = typer.Typer(help="Project prioritisation, quarterly scheduling and progress tracking")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.ERROR
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    project_root: str | None = typer.Option(
        None,
        "--project-root",
        help="Root containing config/ and data/ (projects.yaml, metrics.json).",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if project_root:
        os.environ["ROADMAP_PLANNER_HOME"] = str(Path(project_root).expanduser().resolve())
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _format_scalar(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.1f}"
    if value is None:
        return "-"
    return str(value)


def _render_table(title: str, rows: list[tuple[str, str]], *, border_style: str = "cyan") -> None:
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    for metric, value in rows:
        table.add_row(metric, value)
    console.print(Panel(table, title=title, border_style=border_style))


def _print(title: str, payload: dict[str, Any], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
        return
    rows = [(key, _format_scalar(value)) for key, value in payload.items() if not isinstance(value, (dict, list))]
    _render_table(title, rows)
    for key, value in payload.items():
        if isinstance(value, dict) and value:
            _render_table(
                f"{title} · {key}",
                [(str(k), _format_scalar(v)) for k, v in value.items()],
                border_style="magenta",
            )


def _resolve_quarter(quarter: str | None) -> str:
    if quarter is None:
        return quarter_label(quarter_of(utc_now().date()))
    number = quarter_number(quarter)
    if number is None:
        raise typer.BadParameter("quarter must be one of Q1, Q2, Q3, Q4")
    return quarter_label(number)


def _inputs() -> tuple[list[ProjectRecord], MetricsSnapshot]:
    try:
        return load_inputs(get_settings())
    except PlannerInputError as exc:
        console.print(f"[red]Cannot load inputs:[/red] {exc}")
        raise typer.Exit(code=1) from exc


def _run(**kwargs: Any) -> PlanResult:
    try:
        return run_pipeline(settings=get_settings(), **kwargs)
    except PlannerInputError as exc:
        console.print(f"[red]Cannot load inputs:[/red] {exc}")
        raise typer.Exit(code=1) from exc


# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------


@app.command("graph")
def graph_command(ctx: typer.Context) -> None:
    settings = get_settings()
    projects, snapshot = _inputs()
    graph = analyze_dependencies(projects, snapshot, settings.load_promotion_thresholds())

    if _wants_json(ctx):
        typer.echo(json.dumps(graph.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return

    _render_table("graph", [(key, str(value)) for key, value in graph.summary().items()])
    if graph.promotion_reasons:
        console.print(Panel("\n".join(graph.promotion_reasons), title="SOFT -> HARD promotion", border_style="magenta"))

    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Project", style="bold")
    table.add_column("Depends on")
    table.add_column("Blocks")
    table.add_column("Can start")
    for project_id, node in graph.nodes.items():
        info = graph.blocking.get(project_id)
        depends = ", ".join(f"{edge.target} ({edge.kind})" for edge in node.depends_on) or "-"
        table.add_row(
            project_id,
            depends,
            ", ".join(info.blocks) if info and info.blocks else "-",
            info.can_start_when if info else "-",
        )
    console.print(Panel(table, title="dependencies", border_style="cyan"))

    for cycle in graph.cycles:
        console.print(f"[yellow]cycle:[/yellow] {' -> '.join(cycle)}")


@app.command("score")
def score_command(
    ctx: typer.Context,
    quarter: str | None = typer.Option(None, help="Quarter context (Q1-Q4); defaults to the current quarter."),
) -> None:
    settings = get_settings()
    label = _resolve_quarter(quarter)
    projects, snapshot = _inputs()
    graph = analyze_dependencies(projects, snapshot, settings.load_promotion_thresholds())
    scoring = score_projects(projects, graph, label, settings.load_scoring_policy())

    if _wants_json(ctx):
        typer.echo(json.dumps(scoring.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return

    table = Table(show_header=True, header_style="bold yellow", box=ROUNDED)
    table.add_column("#", style="dim")
    table.add_column("Project", style="bold")
    for column in ("Fin", "Strat", "Feas", "TtV", "Multi", "ROI", "Final"):
        table.add_column(column, justify="right")
    for record in scoring.ranked:
        table.add_row(
            str(record.rank),
            record.name,
            _format_scalar(record.financial_score),
            _format_scalar(record.strategic_score),
            _format_scalar(record.feasibility_score),
            _format_scalar(record.time_to_value_score),
            _format_scalar(record.multi_factor_score),
            _format_scalar(record.roi_score),
            _format_scalar(record.final_score),
        )
    weighting = scoring.weighting
    title = f"scores · {scoring.quarter} (multi-factor {weighting.multi_factor:.0%} / ROI {weighting.roi:.0%})"
    console.print(Panel(table, title=title, border_style="yellow"))


@app.command("schedule")
def schedule_command(
    ctx: typer.Context,
    quarter: str | None = typer.Option(None, help="Quarter context used for scoring."),
) -> None:
    settings = get_settings()
    label = _resolve_quarter(quarter)
    projects, snapshot = _inputs()
    graph = analyze_dependencies(projects, snapshot, settings.load_promotion_thresholds())
    scoring = score_projects(projects, graph, label, settings.load_scoring_policy())
    schedule = schedule_projects(
        projects,
        graph,
        scoring,
        settings.load_capacity_model(),
        committed=settings.load_committed_policy(),
        effort_estimates=settings.load_effort_estimates(),
    )

    if _wants_json(ctx):
        typer.echo(json.dumps(schedule.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return

    table = Table(show_header=True, header_style="bold green", box=ROUNDED)
    table.add_column("Quarter", style="bold")
    table.add_column("Committed")
    table.add_column("Scheduled")
    table.add_column("Allocated", justify="right")
    table.add_column("Capacity", justify="right")
    table.add_column("Buffer", justify="right")
    for item in schedule.quarters:
        table.add_row(
            item.quarter,
            ", ".join(item.committed_ids) or "-",
            ", ".join(item.scheduled_ids) or "-",
            _format_scalar(item.allocated_days),
            _format_scalar(item.capacity),
            _format_scalar(item.buffer_days),
        )
    console.print(Panel(table, title="schedule", border_style="green"))

    if schedule.deferred:
        deferred = Table(show_header=True, header_style="bold red", box=ROUNDED)
        deferred.add_column("Project", style="bold")
        deferred.add_column("Score", justify="right")
        deferred.add_column("Reason")
        for item in schedule.deferred:
            deferred.add_row(item.name, _format_scalar(item.score), item.reason)
        console.print(Panel(deferred, title="deferred", border_style="red"))


def _render_progress(result: PlanResult, project_id: str | None) -> None:
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Project", style="bold")
    table.add_column("Planned")
    table.add_column("Phases", justify="right")
    table.add_column("Signals", justify="right")
    table.add_column("Repo", justify="right")
    table.add_column("Overall", justify="right")
    table.add_column("Status")
    table.add_column("Blockers")
    colours = {"ahead": "green", "on-track": "cyan", "behind": "yellow", "at-risk": "red"}
    for report in result.progress:
        if project_id and report.project_id != project_id:
            continue
        colour = colours[report.delivery_status]
        table.add_row(
            report.name,
            report.planned_quarter or "-",
            f"{report.tier1.progress_pct:.0f}% ({report.tier1.confidence})",
            f"{report.tier2.progress_pct:.0f}% ({report.tier2.confidence})",
            f"{report.tier3.progress_pct:.0f}% ({report.tier3.confidence})" if report.tier3 else "-",
            f"{report.overall_progress_pct:.0f}%",
            f"[{colour}]{report.delivery_status}[/{colour}]",
            "; ".join(report.blockers) or "-",
        )
    console.print(Panel(table, title=f"progress · as of {result.as_of.isoformat()}", border_style="cyan"))


@app.command("progress")
def progress_command(
    ctx: typer.Context,
    project_id: str | None = typer.Option(None, "--project", help="Only report on this project id."),
    as_of: datetime | None = typer.Option(None, "--as-of", formats=["%Y-%m-%d"], help="Analysis date."),
) -> None:
    result = _run(as_of=as_of)
    if project_id and all(report.project_id != project_id for report in result.progress):
        raise typer.BadParameter(f"unknown project id {project_id!r}")

    if _wants_json(ctx):
        reports = [r.model_dump(mode="json") for r in result.progress if not project_id or r.project_id == project_id]
        typer.echo(json.dumps(reports, indent=2, ensure_ascii=False))
        return
    _render_progress(result, project_id)


@app.command("plan")
def plan_command(
    ctx: typer.Context,
    quarter: str | None = typer.Option(None, help="Quarter context used for scoring."),
    as_of: datetime | None = typer.Option(None, "--as-of", formats=["%Y-%m-%d"], help="Analysis date."),
    output: Path | None = typer.Option(None, "--output", help="Write roadmap-plan.json and roadmap-progress.json here."),
    skip_progress: bool = typer.Option(False, "--skip-progress", help="Stop after scheduling."),
    db_url: str | None = typer.Option(default=None, help="Record the run in this SQLAlchemy DB URL."),
) -> None:
    label = _resolve_quarter(quarter) if quarter else None
    result = _run(quarter=label, as_of=as_of, db_url=db_url, track=not skip_progress)

    payload: dict[str, Any] = dict(result.summary())
    if output is not None:
        paths = export_plan(result, output)
        payload["outputs"] = {name: str(path) for name, path in paths.items()}
    _print("plan", payload, ctx)


# ---------------------------------------------------------------------------
# Run ledger
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db_command(
    ctx: typer.Context,
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    init_db(db_url)
    _print("init-db", {"status": "ok", "database_url_override": db_url}, ctx)


@app.command("runs")
def runs_command(
    ctx: typer.Context,
    limit: int = typer.Option(20, help="Number of runs to show."),
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    init_db(db_url)
    rows = list_pipeline_runs(limit=limit, db_url=db_url)
    payload = [
        {
            "id": row.id,
            "stage": row.stage,
            "status": row.status,
            "started_at": row.started_at.isoformat(),
            "finished_at": row.finished_at.isoformat() if row.finished_at else None,
            "details": from_json(row.details_json, {}),
            "error_message": row.error_message,
        }
        for row in rows
    ]

    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    table = Table(show_header=True, header_style="bold magenta", box=ROUNDED)
    table.add_column("#", style="dim")
    table.add_column("Stage", style="bold")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Error")
    for row in payload:
        status_cell = "[green]success[/green]" if row["status"] == "success" else f"[red]{row['status']}[/red]"
        table.add_row(str(row["id"]), row["stage"], status_cell, row["started_at"], row["error_message"] or "-")
    console.print(Panel(table, title="pipeline runs", border_style="magenta"))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
