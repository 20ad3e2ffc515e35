"""Tier 3: external repository activity from the GitHub REST API.

Every failure (no token, bad URL, HTTP error, timeout) turns into ``None``
for the project concerned; nothing here aborts a pipeline run.
"""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

import httpx

from roadmap_planner.config import DEFAULT_ROADMAP_FILES, Settings
from roadmap_planner.types import (
    Confidence,
    ProjectRecord,
    RepositoryActivity,
    RepositoryProgress,
    RoadmapChecklist,
    Velocity,
)
from roadmap_planner.utils import clip, quarter_number

log = logging.getLogger(__name__)

ACTIVE_STATUSES = {"in-progress", "committed"}
VELOCITY_WINDOW_DAYS = 14
VELOCITY_BONUS = {"high": 10.0, "medium": 5.0}

_REPO_URL_RE = re.compile(
    r"^(?:https?://(?:www\.)?github\.com/|git@github\.com:|github\.com/)?"
    r"(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?(?:[/#?].*)?$"
)
_OPEN_TASK_RE = re.compile(r"^\s*[-*]\s+\[ \]", re.MULTILINE)
_DONE_TASK_RE = re.compile(r"^\s*[-*]\s+\[[xX]\]", re.MULTILINE)


class RepositoryUnavailable(Exception):
    """The repository API answered with an error status."""

    def __init__(self, path: str, status_code: int):
        super().__init__(f"GitHub API returned {status_code} for {path}")
        self.path = path
        self.status_code = status_code


def parse_repository_url(url: str | None) -> tuple[str, str] | None:
    """``https://github.com/acme/tool.git`` -> ``("acme", "tool")``."""
    if not url:
        return None
    match = _REPO_URL_RE.match(url.strip())
    if not match:
        return None
    owner, repo = match.group("owner"), match.group("repo")
    if owner in {".", ".."} or repo in {".", ".."}:
        return None
    return owner, repo


def should_analyze_repository(
    project: ProjectRecord,
    repo_url: str | None,
    planned_quarter: str | None,
    current_quarter: int,
) -> bool:
    if not repo_url:
        return False
    if project.status in ACTIVE_STATUSES:
        return True
    planned = quarter_number(planned_quarter)
    return planned is not None and planned <= current_quarter


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _commit_date(item: dict[str, Any]) -> datetime | None:
    commit = item.get("commit") or {}
    for role in ("committer", "author"):
        stamp = _parse_timestamp((commit.get(role) or {}).get("date"))
        if stamp is not None:
            return stamp
    return None


def start_of_analysis(project: ProjectRecord, as_of: datetime) -> datetime:
    """Project start date, or 1 January of the analysis year."""
    start: date = project.start_date or date(as_of.year, 1, 1)
    return datetime.combine(start, time.min, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def classify_velocity(commits_recent: int, prs_recent: int) -> Velocity:
    """Weekly rates over the last 14 days."""
    weeks = VELOCITY_WINDOW_DAYS / 7
    commits_per_week = commits_recent / weeks
    prs_per_week = prs_recent / weeks
    if commits_per_week > 10 or prs_per_week > 3:
        return "high"
    if commits_per_week > 5 or prs_per_week > 1:
        return "medium"
    return "low"


def activity_score(activity: RepositoryActivity, velocity: Velocity) -> float:
    """Mean of the signals that are present, scaled so a full commit signal (40) reads as 100."""
    signals: list[float] = []
    if activity.commit_count > 0:
        signals.append(min(40.0, activity.commit_count / 50 * 40))
    if activity.merged_pr_count > 0:
        signals.append(min(30.0, activity.merged_pr_count / 20 * 30))
    if activity.release_count > 0:
        signals.append(min(30.0, activity.release_count / 2 * 30))
    bonus = VELOCITY_BONUS.get(velocity)
    if bonus is not None:
        signals.append(bonus)
    if not signals:
        return 0.0
    return clip(sum(signals) / len(signals) * 100 / 40, 0.0, 100.0)


def count_checklist(text: str) -> tuple[int, int]:
    done = len(_DONE_TASK_RE.findall(text))
    return done + len(_OPEN_TASK_RE.findall(text)), done


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


def open_github_client(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    headers = {"Accept": "application/vnd.github+json", "User-Agent": settings.user_agent}
    if settings.github_token:
        headers["Authorization"] = f"Bearer {settings.github_token}"
    return httpx.AsyncClient(
        base_url=settings.github_api_base,
        headers=headers,
        timeout=httpx.Timeout(settings.request_timeout_seconds),
        transport=transport,
    )


class GitHubActivityClient:
    def __init__(self, client: httpx.AsyncClient, roadmap_files: list[str] | None = None):
        self._client = client
        self._roadmap_files = roadmap_files or list(DEFAULT_ROADMAP_FILES)

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        resp = await self._client.get(path, params=params)
        if resp.status_code >= 400:
            raise RepositoryUnavailable(path, resp.status_code)
        return resp.json()

    async def _get_list(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        data = await self._get(path, params)
        return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []

    async def fetch_activity(
        self, owner: str, repo: str, since: datetime, now: datetime
    ) -> tuple[RepositoryActivity, Velocity]:
        base = f"/repos/{owner}/{repo}"
        await self._get(base)

        commits, pulls, issues, releases = await asyncio.gather(
            self._get_list(f"{base}/commits", {"since": since.isoformat(), "per_page": 100}),
            self._get_list(f"{base}/pulls", {"state": "all", "per_page": 100}),
            self._get_list(f"{base}/issues", {"state": "all", "since": since.isoformat(), "per_page": 100}),
            self._get_list(f"{base}/releases", {"per_page": 20}),
        )

        recent = now - timedelta(days=VELOCITY_WINDOW_DAYS)
        commit_dates = [stamp for stamp in (_commit_date(item) for item in commits) if stamp is not None]
        pulls = [pr for pr in pulls if (_parse_timestamp(pr.get("created_at")) or now) >= since]
        issues = [issue for issue in issues if "pull_request" not in issue]
        releases = [
            release
            for release in releases
            if (_parse_timestamp(release.get("published_at") or release.get("created_at")) or since) >= since
        ]

        elapsed_weeks = max((now - since).days / 7, 1.0)
        activity = RepositoryActivity(
            commit_count=len(commits),
            pr_count=len(pulls),
            merged_pr_count=sum(1 for pr in pulls if pr.get("merged_at")),
            issue_count=len(issues),
            open_issue_count=sum(1 for issue in issues if issue.get("state") == "open"),
            release_count=len(releases),
            last_commit_date=max(commit_dates) if commit_dates else None,
            weekly_commit_avg=round(len(commits) / elapsed_weeks, 1),
        )
        velocity = classify_velocity(
            sum(1 for stamp in commit_dates if stamp >= recent),
            sum(1 for pr in pulls if (_parse_timestamp(pr.get("created_at")) or since) >= recent),
        )
        return activity, velocity

    async def fetch_roadmap(self, owner: str, repo: str) -> RoadmapChecklist | None:
        """First roadmap file exposing a markdown checklist, if any."""
        for name in self._roadmap_files:
            resp = await self._client.get(
                f"/repos/{owner}/{repo}/contents/{name}",
                headers={"Accept": "application/vnd.github.raw+json"},
            )
            if resp.status_code == 404:
                continue
            if resp.status_code >= 400:
                raise RepositoryUnavailable(name, resp.status_code)
            total, done = count_checklist(resp.text)
            if total:
                return RoadmapChecklist(
                    file=name,
                    total_tasks=total,
                    completed_tasks=done,
                    progress_pct=round(done / total * 100, 1),
                )
        return None


async def analyze_repository(
    client: GitHubActivityClient,
    project: ProjectRecord,
    repo_url: str,
    as_of: datetime,
) -> RepositoryProgress | None:
    parsed = parse_repository_url(repo_url)
    if parsed is None:
        log.warning("%s: cannot parse repository reference %r", project.id, repo_url)
        return None
    owner, repo = parsed
    try:
        activity, velocity = await client.fetch_activity(owner, repo, start_of_analysis(project, as_of), as_of)
        roadmap = await client.fetch_roadmap(owner, repo)
    except Exception as exc:  # noqa: BLE001
        log.warning("%s: repository analysis failed for %s/%s: %s", project.id, owner, repo, exc)
        return None

    if roadmap is not None:
        progress = roadmap.progress_pct
        confidence: Confidence = "high"
    else:
        progress = activity_score(activity, velocity)
        has_activity = activity.commit_count or activity.pr_count or activity.release_count
        confidence = "medium" if has_activity else "low"

    return RepositoryProgress(
        repository=f"{owner}/{repo}",
        progress_pct=round(progress, 1),
        activity=activity,
        roadmap=roadmap,
        velocity=velocity,
        confidence=confidence,
    )
