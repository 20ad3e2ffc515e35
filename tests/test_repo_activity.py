"""Tier 3 against a faked GitHub API (httpx.MockTransport)."""
from __future__ import annotations

from datetime import UTC, date, datetime

import httpx
import pytest

from roadmap_planner.config import Settings
from roadmap_planner.pipeline.repo_activity import (
    GitHubActivityClient,
    activity_score,
    analyze_repository,
    classify_velocity,
    count_checklist,
    open_github_client,
    parse_repository_url,
    should_analyze_repository,
    start_of_analysis,
)
from roadmap_planner.types import ProjectRecord, RepositoryActivity

AS_OF = datetime(2026, 5, 15, 9, 0, tzinfo=UTC)
BASE = "/repos/acme/copilot"


def _commit(day: str) -> dict:
    return {"sha": day, "commit": {"committer": {"date": f"{day}T12:00:00Z"}}}


def _routes(*, roadmap: str | None = None) -> dict[str, object]:
    routes: dict[str, object] = {
        BASE: {"full_name": "acme/copilot"},
        f"{BASE}/commits": [_commit("2026-05-1%d" % (i % 5)) for i in range(25)],
        f"{BASE}/pulls": [
            {"number": n, "created_at": "2026-05-10T08:00:00Z", "merged_at": "2026-05-11T08:00:00Z"} for n in range(4)
        ]
        + [{"number": 99, "created_at": "2025-11-01T08:00:00Z", "merged_at": None}],
        f"{BASE}/issues": [
            {"number": 1, "state": "open"},
            {"number": 2, "state": "open"},
            {"number": 3, "state": "closed", "pull_request": {"url": "x"}},
        ],
        f"{BASE}/releases": [
            {"tag_name": "v0.1", "published_at": "2026-03-01T00:00:00Z"},
            {"tag_name": "v0.0", "published_at": "2025-06-01T00:00:00Z"},
        ],
    }
    if roadmap is not None:
        routes[f"{BASE}/contents/ROADMAP.md"] = roadmap
    return routes


def _transport(routes: dict[str, object], seen: list[httpx.Request] | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        payload = routes.get(request.url.path)
        if payload is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if isinstance(payload, str):
            return httpx.Response(200, text=payload)
        return httpx.Response(200, json=payload)

    return httpx.MockTransport(handler)


def _project(**kwargs) -> ProjectRecord:
    return ProjectRecord(id="copilot", name="Copilot", status="in-progress", **kwargs)


async def _analyze(routes: dict[str, object], seen: list[httpx.Request] | None = None):
    settings = Settings(github_token="test-token")
    async with open_github_client(settings, _transport(routes, seen)) as http:
        client = GitHubActivityClient(http)
        return await analyze_repository(client, _project(), "https://github.com/acme/copilot", AS_OF)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://github.com/acme/copilot", ("acme", "copilot")),
        ("https://github.com/acme/copilot.git", ("acme", "copilot")),
        ("https://www.github.com/acme/copilot/tree/main", ("acme", "copilot")),
        ("git@github.com:acme/copilot.git", ("acme", "copilot")),
        ("acme/copilot", ("acme", "copilot")),
        ("https://gitlab.com/acme/copilot", None),
        ("not a repo", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_repository_url(url, expected) -> None:
    assert parse_repository_url(url) == expected


def test_should_analyze_repository() -> None:
    proposed = ProjectRecord(id="p", name="P")
    assert should_analyze_repository(_project(), "acme/x", None, 2)
    assert should_analyze_repository(ProjectRecord(id="c", name="C", status="committed"), "acme/x", None, 2)
    assert should_analyze_repository(proposed, "acme/x", "Q1", 2)
    assert should_analyze_repository(proposed, "acme/x", "Q2", 2)
    assert not should_analyze_repository(proposed, "acme/x", "Q3", 2)
    assert not should_analyze_repository(proposed, "acme/x", None, 2)
    assert not should_analyze_repository(_project(), None, "Q1", 2)


def test_start_of_analysis_defaults_to_start_of_year() -> None:
    assert start_of_analysis(_project(), AS_OF) == datetime(2026, 1, 1, tzinfo=UTC)
    assert start_of_analysis(_project(start_date=date(2026, 3, 2)), AS_OF) == datetime(2026, 3, 2, tzinfo=UTC)


@pytest.mark.parametrize(
    ("commits", "prs", "expected"),
    [(21, 0, "high"), (0, 7, "high"), (11, 0, "medium"), (0, 3, "medium"), (10, 2, "low"), (0, 0, "low")],
)
def test_classify_velocity(commits: int, prs: int, expected: str) -> None:
    assert classify_velocity(commits, prs) == expected


def test_activity_score_averages_present_signals() -> None:
    # A single full commit signal reads as complete.
    assert activity_score(RepositoryActivity(commit_count=50), "low") == 100
    assert activity_score(RepositoryActivity(commit_count=500), "low") == 100

    busy = RepositoryActivity(commit_count=50, merged_pr_count=20, release_count=2)
    assert activity_score(busy, "high") == pytest.approx((40 + 30 + 30 + 10) / 4 * 2.5)

    quiet = RepositoryActivity(commit_count=25, merged_pr_count=4, release_count=1)
    assert activity_score(quiet, "low") == pytest.approx((20 + 6 + 15) / 3 * 2.5)
    assert activity_score(quiet, "medium") == pytest.approx((20 + 6 + 15 + 5) / 4 * 2.5)

    assert activity_score(RepositoryActivity(), "low") == 0
    assert activity_score(RepositoryActivity(), "medium") == pytest.approx(12.5)


def test_count_checklist() -> None:
    assert count_checklist("- [x] one\n- [X] two\n* [ ] three\n- [ ] four\nplain - [ ] inline") == (4, 2)


@pytest.mark.asyncio
async def test_activity_composite_without_roadmap() -> None:
    seen: list[httpx.Request] = []
    result = await _analyze(_routes(), seen)

    assert result is not None
    assert result.repository == "acme/copilot"
    assert result.roadmap is None
    assert result.activity.commit_count == 25
    assert result.activity.pr_count == 4
    assert result.activity.merged_pr_count == 4
    assert result.activity.issue_count == 2
    assert result.activity.open_issue_count == 2
    assert result.activity.release_count == 1
    assert result.activity.last_commit_date == datetime(2026, 5, 14, 12, 0, tzinfo=UTC)
    assert result.velocity == "high"
    assert result.progress_pct == pytest.approx((20 + 6 + 15 + 10) / 4 * 2.5, abs=0.1)
    assert result.confidence == "medium"
    assert all(r.headers["Authorization"] == "Bearer test-token" for r in seen)
    commits_request = next(r for r in seen if r.url.path.endswith("/commits"))
    assert commits_request.url.params["since"].startswith("2026-01-01")


@pytest.mark.asyncio
async def test_roadmap_checklist_dominates() -> None:
    result = await _analyze(_routes(roadmap="# Roadmap\n- [x] a\n- [x] b\n- [ ] c\n- [ ] d\n"))
    assert result is not None
    assert result.roadmap is not None
    assert result.roadmap.file == "ROADMAP.md"
    assert (result.roadmap.total_tasks, result.roadmap.completed_tasks) == (4, 2)
    assert result.progress_pct == 50.0
    assert result.confidence == "high"


@pytest.mark.asyncio
async def test_missing_repository_degrades_to_none() -> None:
    assert await _analyze({}) is None


@pytest.mark.asyncio
async def test_server_error_degrades_to_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    async with open_github_client(Settings(github_token="t"), httpx.MockTransport(handler)) as http:
        result = await analyze_repository(GitHubActivityClient(http), _project(), "acme/copilot", AS_OF)
    assert result is None


@pytest.mark.asyncio
async def test_transport_error_degrades_to_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with open_github_client(Settings(github_token="t"), httpx.MockTransport(handler)) as http:
        result = await analyze_repository(GitHubActivityClient(http), _project(), "acme/copilot", AS_OF)
    assert result is None


@pytest.mark.asyncio
async def test_unparsable_reference_is_none() -> None:
    async with open_github_client(Settings(github_token="t"), _transport(_routes())) as http:
        result = await analyze_repository(GitHubActivityClient(http), _project(), "ftp://example.com", AS_OF)
    assert result is None
