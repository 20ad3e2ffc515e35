"""Tier 1: completion of declared phases.

Phases come from three places, merged with structured > table > text
precedence on name collisions:

* ``ProjectRecord.phases`` (structured),
* markdown tables whose header has quarter columns (``| Task | Q1 | Q2 |``),
  one task per row, checked cells (✅/✓) meaning done,
* phase headings in free text (``### Phase 2``, ``**Phase 1: Pilot**``,
  ``1. Phase one rollout``) with completion and quarter hints in the next
  few lines.
"""
from __future__ import annotations

import logging
import re

from roadmap_planner.types import Confidence, Phase, PhaseProgress, PhaseSource, ProjectRecord
from roadmap_planner.utils import extract_quarter, normalize_name, quarter_label

log = logging.getLogger(__name__)

_LOOKAHEAD_LINES = 4

_HEADING_RE = re.compile(r"^\s*#{1,6}\s+(?P<name>.*\bphase\b.*?)\s*#*\s*$", re.IGNORECASE)
_BOLD_RE = re.compile(r"^\s*\*\*(?P<name>phase\s+\d+[^*]*)\*\*", re.IGNORECASE)
_NUMBERED_RE = re.compile(r"^\s*\d+[.)]\s+(?P<name>.*\bphase\b.*)$", re.IGNORECASE)
_ANY_HEADING_RE = re.compile(r"^\s*(#{1,6}\s|\*\*phase\s+\d+)", re.IGNORECASE)

_DONE_RE = re.compile(
    r"✅|✓\s*(?:complete|completed|done)\b|\bstatus\s*[:\-]\s*\**\s*(?:completed?|done)\b|\[x\]",
    re.IGNORECASE,
)
_CHECK_RE = re.compile(r"✅|✓|✔|\[x\]", re.IGNORECASE)
_MARKER_RE = re.compile(r"✅|✓|✔|\[[ x]\]|\(?\bQ[1-4]\b(?:\s*\d{4})?\)?|\b(?:complete|completed|done)\b", re.IGNORECASE)
_SEPARATOR_RE = re.compile(r"^\s*\|?\s*:?-{2,}:?\s*(\|\s*:?-{2,}:?\s*)*\|?\s*$")

_SOURCE_ORDER: tuple[PhaseSource, ...] = ("structured", "table", "text")


def phase_key(name: str) -> str:
    """Normalised identity used to deduplicate phases across sources."""
    return normalize_name(_MARKER_RE.sub(" ", name))


def _clean_name(raw: str) -> str:
    name = raw.strip().strip("*").strip()
    name = re.sub(r"[✅✓✔]", "", name)
    return name.rstrip(":-– ").strip()


# ---------------------------------------------------------------------------
# Free text
# ---------------------------------------------------------------------------


def _match_phase_line(line: str) -> str | None:
    for pattern in (_HEADING_RE, _BOLD_RE, _NUMBERED_RE):
        match = pattern.match(line)
        if match:
            return match.group("name")
    return None


def extract_text_phases(content: str) -> list[Phase]:
    lines = content.splitlines()
    phases: list[Phase] = []
    for index, line in enumerate(lines):
        raw_name = _match_phase_line(line)
        if raw_name is None:
            continue
        window = [line]
        for follow in lines[index + 1 : index + 1 + _LOOKAHEAD_LINES]:
            if _ANY_HEADING_RE.match(follow) or _match_phase_line(follow):
                break
            window.append(follow)
        text = "\n".join(window)
        quarter = extract_quarter(text)
        name = _clean_name(_MARKER_RE.sub(" ", raw_name)) or _clean_name(raw_name)
        phases.append(
            Phase(
                name=re.sub(r"\s+", " ", name),
                timeline_hint=quarter_label(quarter) if quarter else "",
                completed=bool(_DONE_RE.search(text)),
            )
        )
    return phases


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


def _cells(line: str) -> list[str]:
    stripped = line.strip()
    if stripped.startswith("|"):
        stripped = stripped[1:]
    if stripped.endswith("|"):
        stripped = stripped[:-1]
    return [cell.strip() for cell in stripped.split("|")]


def extract_table_phases(content: str) -> list[Phase]:
    phases: list[Phase] = []
    # None: outside a table. Empty dict: inside a table without quarter columns.
    quarter_columns: dict[int, int] | None = None
    name_column = 0

    for line in content.splitlines():
        if not line.strip().startswith("|"):
            quarter_columns = None
            continue
        if _SEPARATOR_RE.match(line):
            continue
        cells = _cells(line)
        if quarter_columns is None:
            found = {i: extract_quarter(cell) for i, cell in enumerate(cells)}
            quarter_columns = {i: q for i, q in found.items() if q is not None and len(cells[i]) <= 12}
            name_column = next((i for i in range(len(cells)) if i not in quarter_columns), 0)
            continue
        if not quarter_columns:
            continue

        name = _clean_name(cells[name_column]) if name_column < len(cells) else ""
        if not name:
            continue
        planned = [
            (quarter, cells[i])
            for i, quarter in quarter_columns.items()
            if i < len(cells) and cells[i] and cells[i] not in {"-", "–"}
        ]
        if not planned:
            continue
        completed = all(_CHECK_RE.search(cell) for _, cell in planned)
        latest = max(quarter for quarter, _ in planned)
        phases.append(Phase(name=name, timeline_hint=quarter_label(latest), completed=completed))
    return phases


# ---------------------------------------------------------------------------
# Merge + progress
# ---------------------------------------------------------------------------


def merge_phases(sources: dict[PhaseSource, list[Phase]]) -> list[tuple[PhaseSource, Phase]]:
    merged: dict[str, tuple[PhaseSource, Phase]] = {}
    for source in _SOURCE_ORDER:
        for phase in sources.get(source, []):
            key = phase_key(phase.name)
            if not key or key in merged:
                continue
            merged[key] = (source, phase)
    return list(merged.values())


def _confidence(sources: set[PhaseSource]) -> Confidence:
    if "structured" in sources:
        return "high"
    if "table" in sources:
        return "medium"
    if "text" in sources:
        return "low"
    return "none"


def phase_is_completed(phase: Phase) -> bool:
    return phase.completed or phase.status.strip().lower() in {"completed", "complete", "done"}


def analyze_phases(project: ProjectRecord, current_quarter: int) -> PhaseProgress:
    content = project.content or ""
    merged = merge_phases(
        {
            "structured": list(project.phases),
            "table": extract_table_phases(content),
            "text": extract_text_phases(content),
        }
    )
    if not merged:
        return PhaseProgress()

    phases = [phase for _, phase in merged]
    completed = sum(1 for phase in phases if phase_is_completed(phase))
    hints = [extract_quarter(phase.timeline_hint) for phase in phases]
    if any(hint is not None for hint in hints):
        due = sum(1 for hint in hints if hint is not None and hint <= current_quarter)
        on_track: bool | None = completed >= due
    else:
        on_track = None

    used = {source for source, _ in merged}
    log.debug("%s: %d/%d phases complete", project.id, completed, len(phases))
    return PhaseProgress(
        progress_pct=round(completed / len(phases) * 100, 1),
        completed_phases=completed,
        total_phases=len(phases),
        on_track=on_track,
        confidence=_confidence(used),
        sources=[source for source in _SOURCE_ORDER if source in used],
    )
