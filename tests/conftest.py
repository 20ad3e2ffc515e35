from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest
import yaml

from roadmap_planner.config import Settings, get_settings

AS_OF = datetime(2026, 5, 15, 9, 0, tzinfo=UTC)

PROJECTS = {
    "projects": [
        {
            "id": "platform",
            "name": "Data Platform",
            "value": 2_000_000,
            "roi_percent": 300,
            "effort_days": 60,
            "strategic_pillars": ["efficiency"],
            "strategic_drivers": ["growth"],
            "status": "In Progress",
            "phases": [
                {"name": "Pilot", "timeline_hint": "Q1", "completed": True},
                {"name": "Rollout", "timeline_hint": "Q2"},
            ],
            "risks": ["Data owners not yet identified"],
        },
        {
            "id": "assistant",
            "name": "Sales Assistant",
            "value": 1_000_000,
            "roi_percent": 150,
            "effort_days": 90,
            "declared_dependencies": [
                {"target_id": "platform", "kind": "HARD"},
                {"target_id": "gong-integration", "kind": "SOFT"},
            ],
        },
        {
            "id": "insights",
            "name": "Insights Hub",
            "effort_days": 30,
            "declared_dependencies": ["assistant"],
        },
        {
            "id": "moonshot",
            "name": "Moonshot",
            "effort_days": 500,
        },
    ]
}

METRICS = {
    "adoption": {"chatgpt": 60, "copilot": 40},
    "productivity_multipliers": {"chatgpt": 3},
    "engagement_multipliers": {"chatgpt": 1.5},
    "perceived_value": {"chatgpt": 70, "copilot": 55},
    "usage": {"platform": {"active_users": 120, "queries": 900}},
}


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("ROADMAP_PLANNER_HOME", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def project_root(tmp_path: Path, monkeypatch) -> Path:
    """A planner root with data/projects.yaml and data/metrics.json; config/ uses defaults."""
    data = tmp_path / "data"
    data.mkdir()
    (tmp_path / "config").mkdir()
    (data / "projects.yaml").write_text(yaml.safe_dump(PROJECTS, sort_keys=False), encoding="utf-8")
    (data / "metrics.json").write_text(json.dumps(METRICS), encoding="utf-8")
    monkeypatch.setenv("ROADMAP_PLANNER_HOME", str(tmp_path))
    get_settings.cache_clear()
    return tmp_path


@pytest.fixture()
def settings(project_root: Path) -> Settings:
    return Settings()
