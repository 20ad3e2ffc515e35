"""Loading of the clean project set and metrics snapshot.

Extraction from free-text project documents happens upstream; this module only
reads the already-structured records (JSON or YAML) and validates them.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from roadmap_planner.types import MetricsSnapshot, ProjectRecord

log = logging.getLogger(__name__)


class PlannerInputError(Exception):
    """The project set or metrics snapshot cannot be read. Aborts the run."""


def _read_structured(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PlannerInputError(f"Cannot read {path}: {exc}") from exc
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise PlannerInputError(f"Cannot parse {path}: {exc}") from exc


def parse_projects(payload: Any) -> list[ProjectRecord]:
    if isinstance(payload, dict):
        payload = payload.get("projects")
    if not isinstance(payload, list):
        raise PlannerInputError("Project set must be a list or a mapping with a 'projects' list")

    projects: list[ProjectRecord] = []
    seen: set[str] = set()
    for index, item in enumerate(payload):
        try:
            record = ProjectRecord.model_validate(item)
        except ValidationError as exc:
            raise PlannerInputError(f"Invalid project record at index {index}: {exc}") from exc
        if record.id in seen:
            log.warning("Duplicate project id %s at index %d ignored", record.id, index)
            continue
        seen.add(record.id)
        projects.append(record)
    return projects


def parse_metrics(payload: Any) -> MetricsSnapshot:
    if payload is None:
        return MetricsSnapshot()
    if not isinstance(payload, dict):
        raise PlannerInputError("Metrics snapshot must be a mapping")
    try:
        return MetricsSnapshot.model_validate(payload)
    except ValidationError as exc:
        raise PlannerInputError(f"Invalid metrics snapshot: {exc}") from exc


def load_projects(path: str | Path) -> list[ProjectRecord]:
    path = Path(path)
    projects = parse_projects(_read_structured(path))
    log.info("Loaded %d projects from %s", len(projects), path)
    return projects


def load_metrics(path: str | Path) -> MetricsSnapshot:
    path = Path(path)
    snapshot = parse_metrics(_read_structured(path))
    log.info("Loaded metrics snapshot from %s", path)
    return snapshot
