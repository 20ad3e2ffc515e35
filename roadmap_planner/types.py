from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DependencyKind = Literal["HARD", "SOFT"]
EdgeOrigin = Literal["explicit", "promoted"]
ProjectStatus = Literal["proposed", "in-progress", "committed", "completed", "on-hold"]
Confidence = Literal["high", "medium", "low", "none"]
DeliveryStatus = Literal["on-track", "ahead", "behind", "at-risk"]
Velocity = Literal["high", "medium", "low", "unknown"]
SignalFormula = Literal["adoption", "usage"]
PhaseSource = Literal["structured", "table", "text"]


# ---------------------------------------------------------------------------
# Ingested records
# ---------------------------------------------------------------------------


class DeclaredDependency(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_id: str
    kind: DependencyKind = "SOFT"

    @field_validator("kind", mode="before")
    @classmethod
    def _upper_kind(cls, value: Any) -> Any:
        if value is None:
            return "SOFT"
        return str(value).strip().upper()


class Phase(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    timeline_hint: str = ""
    completed: bool = False
    status: str = ""
    description: str = ""


class ProjectRecord(BaseModel):
    """One proposed initiative, as handed over by ingestion. Never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    value: float | None = None
    roi_percent: float | None = None
    effort_days: float = 60.0
    declared_dependencies: list[DeclaredDependency] = Field(default_factory=list)
    strategic_pillars: frozenset[str] = Field(default_factory=frozenset)
    strategic_drivers: frozenset[str] = Field(default_factory=frozenset)
    phases: list[Phase] = Field(default_factory=list)
    status: ProjectStatus = "proposed"
    content: str = ""
    repo_url: str | None = None
    start_date: date | None = None
    risks: list[str] = Field(default_factory=list)

    @field_validator("effort_days", mode="before")
    @classmethod
    def _default_effort(cls, value: Any) -> Any:
        return 60.0 if value is None else value

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if value is None:
            return "proposed"
        return str(value).strip().lower().replace("_", "-").replace(" ", "-")

    @field_validator("declared_dependencies", mode="before")
    @classmethod
    def _coerce_dependencies(cls, value: Any) -> Any:
        if value is None:
            return []
        out = []
        for item in value:
            if isinstance(item, str):
                out.append({"target_id": item})
            else:
                out.append(item)
        return out

    @field_validator("strategic_pillars", "strategic_drivers", mode="before")
    @classmethod
    def _lower_tags(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        return frozenset(str(tag).strip().casefold() for tag in value if str(tag).strip())


class MetricsSnapshot(BaseModel):
    """External adoption/productivity figures, keyed by tool name."""

    adoption: dict[str, float] = Field(default_factory=dict)
    productivity_multipliers: dict[str, float] = Field(default_factory=dict)
    engagement_multipliers: dict[str, float] = Field(default_factory=dict)
    perceived_value: dict[str, float] = Field(default_factory=dict)
    usage: dict[str, Any] = Field(default_factory=dict)
    captured_at: datetime | None = None


# ---------------------------------------------------------------------------
# Policy tables (loaded from config/*.yaml)
# ---------------------------------------------------------------------------


class PromotionThresholds(BaseModel):
    productivity_multiplier: float = 10.0
    engagement_multiplier: float = 4.0
    perceived_value_gap: float = 30.0
    adoption_rate: float = 80.0
    productivity_tool: str | None = None
    engagement_tool: str | None = None
    perceived_value_tools: tuple[str, str] | None = None
    adoption_tool: str | None = None


class ScoringPolicy(BaseModel):
    assume_domain_expertise: bool = False
    assume_champion_availability: bool = True
    external_vendor_keywords: list[str] = Field(default_factory=lambda: ["gong", "salesforce", "mcp"])
    pilot_keywords: list[str] = Field(default_factory=lambda: ["pilot", "prototype", "proof of concept", "poc"])


class QuarterCapacity(BaseModel):
    core_days: float = 0.0
    champion_days: float = 0.0
    total_days: float | None = None
    notes: str = ""

    @model_validator(mode="after")
    def _fill_total(self) -> QuarterCapacity:
        if self.total_days is None:
            self.total_days = self.core_days + self.champion_days
        return self


class CommittedPolicy(BaseModel):
    quarter: str = "Q1"
    ids: list[str] = Field(default_factory=list)
    consumed_days: float | None = None


class SignalMapping(BaseModel):
    metrics: dict[str, str] = Field(default_factory=dict)
    targets: dict[str, float] = Field(default_factory=dict)
    formula: SignalFormula = "adoption"


class FusionWeights(BaseModel):
    tier1: float = 0.4
    tier2: float = 0.3
    tier3: float = 0.3
    fallback_tier1: float = 0.5
    fallback_tier2: float = 0.5


# ---------------------------------------------------------------------------
# Dependency graph
# ---------------------------------------------------------------------------


class DependencyEdge(BaseModel):
    target: str
    kind: DependencyKind
    origin: EdgeOrigin = "explicit"


class GraphNode(BaseModel):
    id: str
    name: str
    depends_on: list[DependencyEdge] = Field(default_factory=list)
    enablers: list[str] = Field(default_factory=list)
    blocked_by: list[str] = Field(default_factory=list)


class BlockingInfo(BaseModel):
    is_blocked: bool
    blocked_by: list[str] = Field(default_factory=list)
    blocks: list[str] = Field(default_factory=list)
    can_start_when: str = "No blockers"


class DependencyRationale(BaseModel):
    source: str
    target: str
    kind: DependencyKind
    origin: EdgeOrigin
    rationale: str


class DroppedDependency(BaseModel):
    project_id: str
    target_id: str
    kind: DependencyKind


class DependencyGraph(BaseModel):
    nodes: dict[str, GraphNode] = Field(default_factory=dict)
    cycles: list[list[str]] = Field(default_factory=list)
    blocking: dict[str, BlockingInfo] = Field(default_factory=dict)
    rationales: list[DependencyRationale] = Field(default_factory=list)
    dropped_dependencies: list[DroppedDependency] = Field(default_factory=list)
    promotion_reasons: list[str] = Field(default_factory=list)

    def hard_dependencies(self, project_id: str) -> list[str]:
        node = self.nodes.get(project_id)
        return list(node.blocked_by) if node else []

    def summary(self) -> dict[str, int]:
        edges = [edge for node in self.nodes.values() for edge in node.depends_on]
        return {
            "total_projects": len(self.nodes),
            "total_dependencies": len(edges),
            "hard_dependencies": sum(1 for edge in edges if edge.kind == "HARD"),
            "soft_dependencies": sum(1 for edge in edges if edge.kind == "SOFT"),
            "promoted_dependencies": sum(1 for edge in edges if edge.origin == "promoted"),
            "dropped_dependencies": len(self.dropped_dependencies),
            "circular_dependencies": len(self.cycles),
        }


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


class QuarterWeighting(BaseModel):
    multi_factor: float
    roi: float
    rationale: str = ""


class ScoreRecord(BaseModel):
    project_id: str
    name: str
    financial_score: float
    strategic_score: float
    feasibility_score: float
    time_to_value_score: float
    multi_factor_score: float
    roi_score: float
    final_score: float
    rank: int = 0


class ScoringResult(BaseModel):
    quarter: str
    weighting: QuarterWeighting
    ranked: list[ScoreRecord] = Field(default_factory=list)

    def by_id(self) -> dict[str, ScoreRecord]:
        return {record.project_id: record for record in self.ranked}


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------


class QuarterSchedule(BaseModel):
    quarter: str
    committed_ids: list[str] = Field(default_factory=list)
    scheduled_ids: list[str] = Field(default_factory=list)
    allocations: dict[str, float] = Field(default_factory=dict)
    capacity: float
    allocated_days: float = 0.0
    buffer_days: float = 0.0
    notes: str = ""

    @property
    def project_ids(self) -> list[str]:
        return [*self.committed_ids, *self.scheduled_ids]


class DeferredProject(BaseModel):
    project_id: str
    name: str
    score: float
    reason: str
    blocked_by: str | None = None


class ScheduleResult(BaseModel):
    quarters: list[QuarterSchedule] = Field(default_factory=list)
    deferred: list[DeferredProject] = Field(default_factory=list)
    capacity_model: dict[str, QuarterCapacity] = Field(default_factory=dict)

    def quarter_for(self, project_id: str) -> str | None:
        for quarter in self.quarters:
            if project_id in quarter.committed_ids or project_id in quarter.scheduled_ids:
                return quarter.quarter
        return None

    def deferral_for(self, project_id: str) -> DeferredProject | None:
        for item in self.deferred:
            if item.project_id == project_id:
                return item
        return None

    def summary(self) -> dict[str, int]:
        scheduled = sum(len(q.project_ids) for q in self.quarters)
        return {"scheduled": scheduled, "deferred": len(self.deferred)}


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class PhaseProgress(BaseModel):
    progress_pct: float = 0.0
    completed_phases: int = 0
    total_phases: int = 0
    on_track: bool | None = None
    confidence: Confidence = "none"
    sources: list[PhaseSource] = Field(default_factory=list)


class BehavioralProgress(BaseModel):
    progress_pct: float = 0.0
    signals: dict[str, float] = Field(default_factory=dict)
    metric_progress: dict[str, float] = Field(default_factory=dict)
    formula: SignalFormula | None = None
    confidence: Confidence = "none"


class RoadmapChecklist(BaseModel):
    file: str
    total_tasks: int
    completed_tasks: int
    progress_pct: float


class RepositoryActivity(BaseModel):
    commit_count: int = 0
    pr_count: int = 0
    merged_pr_count: int = 0
    issue_count: int = 0
    open_issue_count: int = 0
    release_count: int = 0
    last_commit_date: datetime | None = None
    weekly_commit_avg: float = 0.0


class RepositoryProgress(BaseModel):
    repository: str
    progress_pct: float
    activity: RepositoryActivity = Field(default_factory=RepositoryActivity)
    roadmap: RoadmapChecklist | None = None
    velocity: Velocity = "unknown"
    confidence: Confidence = "medium"


class ProgressReport(BaseModel):
    project_id: str
    name: str
    status: ProjectStatus
    tier1: PhaseProgress
    tier2: BehavioralProgress
    tier3: RepositoryProgress | None = None
    overall_progress_pct: float = 0.0
    delivery_status: DeliveryStatus = "on-track"
    planned_quarter: str | None = None
    current_quarter: str
    expected_progress_pct: float = 0.0
    variance: float = 0.0
    blockers: list[str] = Field(default_factory=list)
    velocity: Velocity = "unknown"
    confidence: Confidence = "none"
    analyzed_at: datetime


# ---------------------------------------------------------------------------
# Full run
# ---------------------------------------------------------------------------


class PlanResult(BaseModel):
    generated_at: datetime
    quarter: str
    as_of: date
    graph: DependencyGraph
    scoring: ScoringResult
    schedule: ScheduleResult
    progress: list[ProgressReport] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        statuses: dict[str, int] = {}
        for report in self.progress:
            statuses[report.delivery_status] = statuses.get(report.delivery_status, 0) + 1
        top = self.scoring.ranked[0] if self.scoring.ranked else None
        return {
            "quarter": self.quarter,
            "as_of": self.as_of.isoformat(),
            "projects": len(self.graph.nodes),
            "cycles": len(self.graph.cycles),
            "top_project": top.project_id if top else None,
            **self.schedule.summary(),
            "delivery_status": statuses,
        }
