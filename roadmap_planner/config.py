from __future__ import annotations

from functools import lru_cache
import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from roadmap_planner.types import (
    CommittedPolicy,
    FusionWeights,
    PromotionThresholds,
    QuarterCapacity,
    ScoringPolicy,
    SignalMapping,
)

log = logging.getLogger(__name__)

DEFAULT_CAPACITY: dict[str, dict[str, Any]] = {
    "Q1": {"core_days": 72, "champion_days": 0, "total_days": 72, "notes": "Core team only; committed work holds the quarter"},
    "Q2": {"core_days": 84, "champion_days": 60, "total_days": 144, "notes": "Champion model starting to mature"},
    "Q3": {"core_days": 168, "champion_days": 120, "total_days": 288, "notes": "Established champion community"},
    "Q4": {"core_days": 252, "champion_days": 180, "total_days": 432, "notes": "Maximum capacity"},
}

DEFAULT_ROADMAP_FILES = ["README.md", "ROADMAP.md", "PLAN.md", "docs/ROADMAP.md"]


def _resolve_project_root() -> Path:
    override = os.getenv("ROADMAP_PLANNER_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


class Settings(BaseModel):
    project_root: Path = Field(default_factory=_resolve_project_root)
    data_dir: Path = Field(default_factory=lambda: _resolve_project_root() / "data")
    output_dir: Path = Field(default_factory=lambda: _resolve_project_root() / "data" / "output")
    config_dir: Path = Field(default_factory=lambda: _resolve_project_root() / "config")

    database_path: Path = Field(default_factory=lambda: _resolve_project_root() / "data" / "roadmap.db")

    projects_file: Path = Field(default_factory=lambda: _resolve_project_root() / "data" / "projects.yaml")
    metrics_file: Path = Field(default_factory=lambda: _resolve_project_root() / "data" / "metrics.json")

    capacity_file: Path = Field(default_factory=lambda: _resolve_project_root() / "config" / "capacity.yaml")
    planning_file: Path = Field(default_factory=lambda: _resolve_project_root() / "config" / "planning.yaml")
    signals_file: Path = Field(default_factory=lambda: _resolve_project_root() / "config" / "behavioral_signals.yaml")
    repositories_file: Path = Field(default_factory=lambda: _resolve_project_root() / "config" / "repositories.yaml")

    default_effort_days: float = 60.0

    user_agent: str = "RoadmapPlanner/1.0 (+https://roadmap-planner.local)"
    github_api_base: str = "https://api.github.com"
    github_token: str = Field(default_factory=lambda: os.getenv("GITHUB_TOKEN", "").strip())
    request_timeout_seconds: float = 15.0
    repository_timeout_seconds: float = 60.0
    github_max_concurrency: int = 4

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"

    def load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            log.warning("Ignoring unreadable config %s: %s", path, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return data

    def load_capacity_model(self) -> dict[str, QuarterCapacity]:
        raw = self.load_yaml(self.capacity_file).get("quarters")
        if not isinstance(raw, dict) or not raw:
            raw = DEFAULT_CAPACITY
        out: dict[str, QuarterCapacity] = {}
        for quarter, payload in raw.items():
            if not isinstance(payload, dict):
                continue
            try:
                out[str(quarter).upper()] = QuarterCapacity.model_validate(payload)
            except ValidationError as exc:
                log.warning("Skipping capacity entry %s: %s", quarter, exc)
        return out or {q: QuarterCapacity.model_validate(p) for q, p in DEFAULT_CAPACITY.items()}

    def _planning_section(self, key: str) -> dict[str, Any]:
        section = self.load_yaml(self.planning_file).get(key, {})
        return section if isinstance(section, dict) else {}

    def load_committed_policy(self) -> CommittedPolicy:
        return CommittedPolicy.model_validate(self._planning_section("committed"))

    def load_effort_estimates(self) -> dict[str, float]:
        payload = self._planning_section("effort_estimates")
        out: dict[str, float] = {}
        for key, value in payload.items():
            if isinstance(value, (int, float)) and value >= 0:
                out[str(key)] = float(value)
        return out

    def load_promotion_thresholds(self) -> PromotionThresholds:
        return PromotionThresholds.model_validate(self._planning_section("promotion_thresholds"))

    def load_scoring_policy(self) -> ScoringPolicy:
        return ScoringPolicy.model_validate(self._planning_section("scoring"))

    def load_fusion_weights(self) -> FusionWeights:
        return FusionWeights.model_validate(self._planning_section("fusion_weights"))

    def load_signal_mappings(self) -> dict[str, SignalMapping]:
        raw = self.load_yaml(self.signals_file).get("projects", {})
        if not isinstance(raw, dict):
            return {}
        out: dict[str, SignalMapping] = {}
        for project_id, payload in raw.items():
            try:
                out[str(project_id)] = SignalMapping.model_validate(payload)
            except ValidationError as exc:
                log.warning("Skipping behavioral mapping for %s: %s", project_id, exc)
        return out

    def load_repository_mappings(self) -> dict[str, str]:
        payload = self.load_yaml(self.repositories_file).get("repositories", {})
        if not isinstance(payload, dict):
            return {}
        return {str(k): str(v) for k, v in payload.items() if isinstance(v, str) and v.strip()}

    def load_roadmap_files(self) -> list[str]:
        files = self.load_yaml(self.repositories_file).get("roadmap_files")
        if not isinstance(files, list) or not files:
            return list(DEFAULT_ROADMAP_FILES)
        return [str(item) for item in files if str(item).strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
