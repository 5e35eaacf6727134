"""Unit tests for actions_dashboard/dashboard.py.

Uses an in-process fake GitHub client and memory-backed cache tiers to
cover the fast tier -> runs tier -> GitHub lookup chain, progress events,
degraded optional fetches and the workflow detail payload.
"""

import os
import sys
import threading
from datetime import datetime, timezone

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from actions_dashboard.cache_coordinator import (
    BackgroundRefresher,
    CacheCoordinator,
    CachePolicy,
    CacheTier,
    Freshness,
)
from actions_dashboard.cache_store import MemoryCacheStore
from actions_dashboard.dashboard import (
    FAST_TIER,
    RUNS_TIER,
    DashboardService,
    dashboard_cache_key,
    runs_cache_key,
)
from actions_dashboard.exceptions import (
    GitHubRequestError,
    GitHubUnauthorizedError,
    WorkflowNotFoundError,
)

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
HOUR = 3600

CI_YAML = """\
name: CI
on: push
jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - run: make
      - run: make dist
  lint:
    needs: build
    runs-on: ubuntu-latest
    steps:
      - run: make lint
"""

WORKFLOWS = [
    {"id": 1, "name": "CI", "path": ".github/workflows/ci.yml", "state": "active"},
    {"id": 2, "name": "CodeQL", "path": "dynamic/github-code-scanning/codeql", "state": "active"},
    {"id": 3, "name": "Old", "path": ".github/workflows/old.yml", "state": "disabled_manually"},
]


def _run(run_id, workflow_id=1, conclusion="success", day="2024-03-09"):
    return {
        "id": run_id,
        "workflow_id": workflow_id,
        "name": "CI",
        "status": "completed",
        "conclusion": conclusion,
        "head_branch": "main",
        "run_number": run_id,
        "created_at": f"{day}T10:00:00Z",
        "run_started_at": f"{day}T10:00:00Z",
        "updated_at": f"{day}T10:02:00Z",
        "actor": {"login": "octocat"},
    }


def _job(name, conclusion="success"):
    return {
        "name": name,
        "status": "completed",
        "conclusion": conclusion,
        "started_at": "2024-03-09T10:00:00Z",
        "completed_at": "2024-03-09T10:01:00Z",
        "labels": ["ubuntu-latest"],
    }


class FakeGitHubClient:
    def __init__(self, runs=None):
        self.runs = runs if runs is not None else [_run(1), _run(2, conclusion="failure"), _run(3, workflow_id=2)]
        self.files = {".github/workflows/ci.yml": CI_YAML}
        self.calls = {"workflows": 0, "runs": 0, "commits": 0, "files": [], "jobs": []}
        self.fail_commits = None
        self.fail_workflows = None
        self.fail_jobs = None

    def list_workflows(self, owner, repo):
        self.calls["workflows"] += 1
        if self.fail_workflows:
            raise self.fail_workflows
        return [dict(w) for w in WORKFLOWS]

    def list_all_runs(self, owner, repo, since, workflow_id=None, on_progress=None, abort=None):
        self.calls["runs"] += 1
        runs = [r for r in self.runs if workflow_id is None or r["workflow_id"] == workflow_id]
        if on_progress is not None:
            on_progress({"phase": "fetching", "fetched": len(runs), "total": len(runs), "page": 1})
        return runs

    def list_commits(self, owner, repo, path, since):
        self.calls["commits"] += 1
        if self.fail_commits:
            raise self.fail_commits
        return [{"date": "2024-03-05", "committed_at": "2024-03-05T12:00:00Z", "sha": "abcdef1", "message": "ci"}]

    def get_file_content(self, owner, repo, path):
        self.calls["files"].append(path)
        return self.files.get(path)

    def list_jobs(self, owner, repo, run_id):
        self.calls["jobs"].append(run_id)
        if self.fail_jobs:
            raise self.fail_jobs
        return [_job("build"), _job("lint", "failure" if run_id == 2 else "success")]


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _coordinator(clock):
    fast = CacheTier(FAST_TIER, MemoryCacheStore(clock=clock), CachePolicy(HOUR, 2 * HOUR, 2 * HOUR), clock=clock)
    slow = CacheTier(RUNS_TIER, MemoryCacheStore(clock=clock), CachePolicy(HOUR, 4 * HOUR, 24 * HOUR), clock=clock)
    return CacheCoordinator([fast, slow], BackgroundRefresher(max_workers=2), clock=clock)


@pytest.fixture
def setup():
    clock = FakeClock()
    client = FakeGitHubClient()
    coordinator = _coordinator(clock)
    service = DashboardService(client, coordinator, fetch_workers=4, clock=lambda: NOW)
    yield service, client, coordinator, clock
    coordinator.refresher.shutdown(wait=True)


class TestCacheKeys:
    def test_dashboard_key(self):
        assert dashboard_cache_key("u1", "octo", "hello", 30, "2024-02-09") == "dashboard:u1:octo/hello:30:2024-02-09"

    def test_runs_key_scopes(self):
        assert runs_cache_key("u1", "octo", "hello", None, "2024-02-09") == "runs:u1:octo/hello:all:2024-02-09"
        assert runs_cache_key("u1", "octo", "hello", 7, "2024-02-09") == "runs:u1:octo/hello:7:2024-02-09"


class TestGetDashboard:
    def test_miss_fetches_from_github(self, setup):
        service, client, _, _ = setup
        result = service.get_dashboard("u1", "octo", "hello", days=7)
        assert result.state is Freshness.MISS
        assert result.tier is None
        assert result.is_stale is False
        data = result.data
        assert data["owner"] == "octo"
        assert data["total_runs"] == 3
        assert data["active_workflows"] == 2
        assert data["time_window_days"] == 7
        assert len(data["run_trend"]) == 7
        assert len(data["workflow_metrics"]) == 3
        assert data["workflow_file_commits"][0]["sha"] == "abcdef1"
        assert data["generated_at"] == NOW.isoformat()
        assert client.calls["runs"] == 1

    def test_second_call_served_from_fast_tier(self, setup):
        service, client, _, clock = setup
        first = service.get_dashboard("u1", "octo", "hello", days=7)
        clock.now += 60
        second = service.get_dashboard("u1", "octo", "hello", days=7)
        assert second.state is Freshness.FRESH
        assert second.tier == FAST_TIER
        assert second.data == first.data
        assert client.calls["runs"] == 1
        assert client.calls["workflows"] == 1

    def test_runs_tier_used_when_fast_tier_empty(self, setup):
        service, client, coordinator, _ = setup
        key = runs_cache_key("u1", "octo", "hello", None, "2024-03-03")
        coordinator.store(RUNS_TIER, key, [_run(10), _run(11)])
        result = service.get_dashboard("u1", "octo", "hello", days=7)
        assert result.tier == RUNS_TIER
        assert result.state is Freshness.FRESH
        assert result.data["total_runs"] == 2
        assert client.calls["runs"] == 0

    def test_users_do_not_share_entries(self, setup):
        service, client, _, _ = setup
        service.get_dashboard("u1", "octo", "hello", days=7)
        service.get_dashboard("u2", "octo", "hello", days=7)
        assert client.calls["runs"] == 2

    def test_stale_fast_tier_refreshes_in_background(self, setup):
        service, client, coordinator, clock = setup
        service.get_dashboard("u1", "octo", "hello", days=7)
        client.runs = [_run(20)]
        clock.now += HOUR + 1

        stale = service.get_dashboard("u1", "octo", "hello", days=7)
        assert stale.is_stale
        assert stale.tier == FAST_TIER
        assert stale.data["total_runs"] == 3

        coordinator.refresher.shutdown(wait=True)
        key = dashboard_cache_key("u1", "octo", "hello", 7, "2024-03-03")
        refreshed = coordinator.lookup(FAST_TIER, key)
        assert refreshed.state is Freshness.FRESH
        assert refreshed.payload["total_runs"] == 1

    def test_progress_events(self, setup):
        service, _, _, _ = setup
        events = []
        service.get_dashboard("u1", "octo", "hello", days=7, on_progress=events.append)
        assert events[0]["phase"] == "fetching"
        assert events[-1] == {"phase": "computing"}

    def test_yaml_only_fetched_for_workflow_files(self, setup):
        service, client, _, _ = setup
        data = service.get_dashboard("u1", "octo", "hello", days=7).data
        assert sorted(client.calls["files"]) == [".github/workflows/ci.yml", ".github/workflows/old.yml"]
        by_id = {e["workflow_id"]: e for e in data["minutes"]["minutes_by_workflow"]}
        assert by_id[1]["runner_type"] == "ubuntu"
        assert by_id[2]["runner_detected"] is False

    def test_commit_failure_degrades(self, setup):
        service, client, _, _ = setup
        client.fail_commits = GitHubRequestError("rate limited", status_code=403)
        data = service.get_dashboard("u1", "octo", "hello", days=7).data
        assert data["workflow_file_commits"] == []

    def test_unauthorized_propagates(self, setup):
        service, client, _, _ = setup
        client.fail_workflows = GitHubUnauthorizedError("Bad credentials", status_code=401)
        with pytest.raises(GitHubUnauthorizedError):
            service.get_dashboard("u1", "octo", "hello", days=7)

    def test_abort_event_passed_to_run_fetch(self, setup):
        service, client, _, _ = setup
        seen = {}
        original = client.list_all_runs

        def capture(*args, **kwargs):
            seen["abort"] = kwargs.get("abort")
            return original(*args, **kwargs)

        client.list_all_runs = capture
        abort = threading.Event()
        service.get_dashboard("u1", "octo", "hello", days=7, abort=abort)
        assert seen["abort"] is abort

    def test_workflow_list_failure_stops_run_fetch(self, setup):
        service, client, _, _ = setup
        client.fail_workflows = GitHubRequestError("server error", status_code=502)
        stopped = threading.Event()

        def paging_runs(owner, repo, since, workflow_id=None, on_progress=None, abort=None):
            if abort is not None and abort.wait(timeout=5):
                stopped.set()
            return []

        client.list_all_runs = paging_runs
        with pytest.raises(GitHubRequestError):
            service.get_dashboard("u1", "octo", "hello", days=7)
        assert stopped.is_set()


class TestWorkflowDetail:
    def test_detail_payload(self, setup):
        service, client, _, _ = setup
        result = service.get_workflow_detail("u1", "octo", "hello", 1, days=7)
        data = result.data
        assert result.state is Freshness.MISS
        assert data["workflow_name"] == "CI"
        assert data["metrics"]["total_runs"] == 2
        assert data["runner"]["type"] == "ubuntu"
        assert data["runner"]["minutes"] == 4
        assert data["runner"]["billable_display"] == "4"
        assert sorted(client.calls["jobs"]) == [1, 2]

        graph = data["job_graph"]
        nodes = {n["id"]: n for n in graph["nodes"]}
        assert set(nodes) == {"build", "lint"}
        assert graph["edges"][0]["id"] == "build->lint"
        assert nodes["build"]["run_count"] == 2
        assert nodes["lint"]["success_rate"] == 50.0
        assert nodes["build"]["step_count"] == 2

    def test_runs_cached_per_workflow(self, setup):
        service, client, _, clock = setup
        service.get_workflow_detail("u1", "octo", "hello", 1, days=7)
        clock.now += 60
        again = service.get_workflow_detail("u1", "octo", "hello", 1, days=7)
        assert again.tier == RUNS_TIER
        assert client.calls["runs"] == 1

    def test_unknown_workflow(self, setup):
        service, _, _, _ = setup
        with pytest.raises(WorkflowNotFoundError):
            service.get_workflow_detail("u1", "octo", "hello", 999, days=7)

    def test_job_fetch_failure_degrades(self, setup):
        service, client, _, _ = setup
        client.fail_jobs = GitHubRequestError("boom", status_code=500)
        data = service.get_workflow_detail("u1", "octo", "hello", 1, days=7).data
        assert data["job_breakdown"] == []
        assert data["job_minutes"]["jobs"] == []
        assert {n["id"] for n in data["job_graph"]["nodes"]} == {"build", "lint"}

    def test_missing_yaml_uses_fallback_graph(self, setup):
        service, client, _, _ = setup
        client.files = {}
        data = service.get_workflow_detail("u1", "octo", "hello", 1, days=7).data
        assert data["runner"]["detected"] is False
        assert data["runner"]["billable_display"].startswith("~")
        assert data["job_graph"]["edges"] == []
        assert {n["id"] for n in data["job_graph"]["nodes"]} == {"build", "lint"}

    def test_stale_runs_served_and_refetched(self, setup):
        service, client, coordinator, clock = setup
        service.get_workflow_detail("u1", "octo", "hello", 1, days=7)
        client.runs = [_run(30)]
        clock.now += HOUR + 1

        result = service.get_workflow_detail("u1", "octo", "hello", 1, days=7)
        assert result.state is Freshness.STALE
        assert result.tier == RUNS_TIER
        assert result.data["metrics"]["total_runs"] == 2

        coordinator.refresher.shutdown(wait=True)
        key = runs_cache_key("u1", "octo", "hello", 1, "2024-03-03")
        refreshed = coordinator.lookup(RUNS_TIER, key)
        assert refreshed.state is Freshness.FRESH
        assert refreshed.payload == [_run(30)]
        assert client.calls["runs"] == 2

    def test_unknown_workflow_stops_run_fetch(self, setup):
        service, client, _, _ = setup
        stopped = threading.Event()

        def paging_runs(owner, repo, since, workflow_id=None, on_progress=None, abort=None):
            if abort is not None and abort.wait(timeout=5):
                stopped.set()
            return []

        client.list_all_runs = paging_runs
        with pytest.raises(WorkflowNotFoundError):
            service.get_workflow_detail("u1", "octo", "hello", 999, days=7)
        assert stopped.is_set()
