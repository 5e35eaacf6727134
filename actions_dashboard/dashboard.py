"""Builds the repo dashboard and workflow detail payloads behind the cache.

Lookup order for the repo dashboard is fast tier (computed payload), then
slow tier (raw runs), then GitHub.  A stale hit in either tier is served
as-is while a background task refetches from GitHub and rewrites both
tiers; that task runs on the coordinator's refresher and never sees the
request's ``abort`` event.

GitHub calls that don't depend on each other (workflows, runs, commits,
workflow files) are fanned out on a per-request thread pool.  Run pages are
fetched one after another.  Job records need the run list first and are
only fetched for the most recent few completed runs.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from actions_dashboard import dora, job_graph, metrics, minutes
from actions_dashboard.cache_coordinator import CacheCoordinator, Freshness
from actions_dashboard.exceptions import (
    GitHubNotFoundError,
    GitHubRequestError,
    WorkflowNotFoundError,
)
from actions_dashboard.github_client import WORKFLOWS_PATH, GitHubClient
from actions_dashboard.logging_config import sanitize_log
from actions_dashboard.models import DashboardData, ProgressEvent, WorkflowDetailData
from actions_dashboard.utils import utcnow, window_start

logger = logging.getLogger(__name__)

FAST_TIER = "dashboard"
RUNS_TIER = "runs"

DEFAULT_DAYS = 30
DETAIL_RECENT_RUNS = 20

# Failures that only cost a chart decoration; auth errors still propagate.
_OPTIONAL_FETCH_ERRORS = (GitHubRequestError, GitHubNotFoundError)


@dataclass(frozen=True)
class DashboardResult:
    data: dict
    state: Freshness
    tier: str | None = None

    @property
    def is_stale(self) -> bool:
        return self.state is Freshness.STALE


def dashboard_cache_key(user: str, owner: str, repo: str, days: int, start: str) -> str:
    return f"dashboard:{user}:{owner}/{repo}:{days}:{start}"


def runs_cache_key(user: str, owner: str, repo: str, workflow_id: int | None, start: str) -> str:
    scope = "all" if workflow_id is None else str(workflow_id)
    return f"runs:{user}:{owner}/{repo}:{scope}:{start}"


def _is_workflow_file(path: str) -> bool:
    return bool(path) and path.startswith(f"{WORKFLOWS_PATH}/")


class DashboardService:
    def __init__(
        self,
        client: GitHubClient,
        coordinator: CacheCoordinator,
        *,
        fetch_workers: int = 6,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.coordinator = coordinator
        self.fetch_workers = fetch_workers
        self._clock = clock

    # ------------------------------------------------------------------
    # Repo dashboard
    # ------------------------------------------------------------------

    def get_dashboard(
        self,
        user: str,
        owner: str,
        repo: str,
        days: int = DEFAULT_DAYS,
        on_progress: Callable[[ProgressEvent], None] | None = None,
        abort: threading.Event | None = None,
    ) -> DashboardResult:
        now = self._clock()
        start = window_start(days, now)
        dash_key = dashboard_cache_key(user, owner, repo, days, start)
        runs_key = runs_cache_key(user, owner, repo, None, start)
        log_extra = {"owner": sanitize_log(owner), "repo": sanitize_log(repo)}

        fast = self.coordinator.lookup(FAST_TIER, dash_key)
        if fast.state is not Freshness.MISS:
            if fast.state is Freshness.STALE:
                self._schedule_dashboard_refresh(owner, repo, days, dash_key, runs_key)
            logger.info("dashboard served from %s tier (%s)", FAST_TIER, fast.state.value, extra=log_extra)
            return DashboardResult(fast.payload, fast.state, FAST_TIER)

        slow = self.coordinator.lookup(RUNS_TIER, runs_key)
        if slow.state is not Freshness.MISS:
            data = self._build_dashboard(owner, repo, days, now, cached_runs=slow.payload)
            self.coordinator.store(FAST_TIER, dash_key, data)
            if slow.state is Freshness.STALE:
                self._schedule_dashboard_refresh(owner, repo, days, dash_key, runs_key)
            logger.info("dashboard built from %s tier (%s)", RUNS_TIER, slow.state.value, extra=log_extra)
            return DashboardResult(data, slow.state, RUNS_TIER)

        logger.info("dashboard cache miss; fetching from GitHub", extra=log_extra)
        data = self._build_dashboard(
            owner, repo, days, now, runs_key=runs_key, on_progress=on_progress, abort=abort,
        )
        self.coordinator.store(FAST_TIER, dash_key, data)
        return DashboardResult(data, Freshness.MISS, None)

    def _schedule_dashboard_refresh(self, owner: str, repo: str, days: int, dash_key: str, runs_key: str) -> None:
        def refresh() -> None:
            data = self._build_dashboard(owner, repo, days, self._clock(), runs_key=runs_key)
            self.coordinator.store(FAST_TIER, dash_key, data)

        self.coordinator.refresh_in_background(dash_key, refresh)

    def _build_dashboard(
        self,
        owner: str,
        repo: str,
        days: int,
        now: datetime,
        *,
        cached_runs: list[dict] | None = None,
        runs_key: str | None = None,
        on_progress: Callable[[ProgressEvent], None] | None = None,
        abort: threading.Event | None = None,
    ) -> DashboardData:
        since = now - timedelta(days=days)
        start = window_start(days, now)
        stop = abort if abort is not None else threading.Event()

        with ThreadPoolExecutor(max_workers=self.fetch_workers) as pool:
            workflows_future = pool.submit(self.client.list_workflows, owner, repo)
            commits_future = pool.submit(self._workflow_commits, owner, repo, since)
            runs_future = None
            if cached_runs is None:
                runs_future = pool.submit(
                    self.client.list_all_runs, owner, repo, start,
                    on_progress=on_progress, abort=stop,
                )

            try:
                workflows = workflows_future.result()
            except Exception:
                # leaving the pool waits on the run pager; stop it at the next page
                stop.set()
                raise
            yaml_futures = {
                w.get("id"): pool.submit(self._workflow_file, owner, repo, w.get("path", ""))
                for w in workflows
                if _is_workflow_file(w.get("path", ""))
            }

            runs = cached_runs if runs_future is None else runs_future.result()
            commits = commits_future.result()
            runner_by_workflow = {
                wid: minutes.detect_runner_type(future.result())
                for wid, future in yaml_futures.items()
            }

        if runs_future is not None and runs_key is not None:
            self.coordinator.store(RUNS_TIER, runs_key, runs)

        if on_progress is not None:
            on_progress({"phase": "computing"})

        summary = metrics.compute_repo_summary(runs)
        return {
            "owner": owner,
            "repo": repo,
            "total_runs": summary["total_runs"],
            "success_rate": summary["success_rate"],
            "avg_duration_ms": summary["avg_duration_ms"],
            "active_workflows": sum(1 for w in workflows if w.get("state") == "active"),
            "run_trend": metrics.build_run_trend(runs, days, now),
            "workflow_metrics": [metrics.compute_workflow_metrics(w, runs) for w in workflows],
            "recent_runs": metrics.runs_to_recent_runs(runs, workflows),
            "workflow_file_commits": commits,
            "dora": dora.compute_dora_metrics(runs, days),
            "minutes": minutes.compute_minutes_summary(workflows, runs, runner_by_workflow, days, now),
            "time_window_days": days,
            "generated_at": now.isoformat(),
        }

    # ------------------------------------------------------------------
    # Workflow detail
    # ------------------------------------------------------------------

    def get_workflow_detail(
        self,
        user: str,
        owner: str,
        repo: str,
        workflow_id: int,
        days: int = DEFAULT_DAYS,
    ) -> DashboardResult:
        now = self._clock()
        start = window_start(days, now)
        runs_key = runs_cache_key(user, owner, repo, workflow_id, start)

        cached = self.coordinator.lookup(RUNS_TIER, runs_key)
        cached_runs = cached.payload if cached.state is not Freshness.MISS else None
        stop = threading.Event()

        with ThreadPoolExecutor(max_workers=self.fetch_workers) as pool:
            workflows_future = pool.submit(self.client.list_workflows, owner, repo)
            runs_future = None
            if cached_runs is None:
                runs_future = pool.submit(
                    self.client.list_all_runs, owner, repo, start, workflow_id=workflow_id, abort=stop,
                )

            try:
                workflows = workflows_future.result()
            except Exception:
                stop.set()
                raise
            workflow = next((w for w in workflows if w.get("id") == workflow_id), None)
            if workflow is None:
                stop.set()
                raise WorkflowNotFoundError(workflow_id)

            path = workflow.get("path", "")
            yaml_future = pool.submit(self._workflow_file, owner, repo, path) if _is_workflow_file(path) else None

            runs = cached_runs if runs_future is None else runs_future.result()
            sample = minutes.select_job_sample(runs)
            jobs_futures = [pool.submit(self._run_jobs, owner, repo, run.get("id")) for run in sample]
            jobs_per_run = [future.result() for future in jobs_futures]
            content = yaml_future.result() if yaml_future is not None else None

        if runs_future is not None:
            self.coordinator.store(RUNS_TIER, runs_key, runs)
        elif cached.state is Freshness.STALE:
            self.coordinator.refresh_in_background(
                runs_key,
                lambda: self.coordinator.store(
                    RUNS_TIER, runs_key,
                    self.client.list_all_runs(owner, repo, start, workflow_id=workflow_id),
                ),
            )

        data = self._build_workflow_detail(workflow, workflows, runs, jobs_per_run, content, days, now)
        tier = None if runs_future is not None else RUNS_TIER
        return DashboardResult(data, cached.state, tier)

    def _build_workflow_detail(
        self,
        workflow: dict,
        workflows: list[dict],
        runs: list[dict],
        jobs_per_run: list[list[dict]],
        content: str | None,
        days: int,
        now: datetime,
    ) -> WorkflowDetailData:
        runner = minutes.detect_runner_type(content)
        window_minutes = sum(minutes.run_minutes(r) for r in runs if r.get("status") == "completed")
        billable = minutes.billable_minutes(window_minutes, runner.multiplier)

        job_breakdown = metrics.build_job_breakdown(jobs_per_run)
        job_stats = metrics.build_job_stats(jobs_per_run)
        job_minutes = minutes.compute_job_minutes(jobs_per_run, window_minutes)

        return {
            "workflow_id": workflow.get("id"),
            "workflow_name": workflow.get("name", ""),
            "workflow_path": workflow.get("path", ""),
            "metrics": metrics.compute_workflow_metrics(workflow, runs),
            "duration_trend": metrics.build_duration_trend(runs),
            "run_history": metrics.build_run_trend(runs, days, now),
            "job_breakdown": job_breakdown,
            "recent_runs": metrics.runs_to_recent_runs(runs, workflows, DETAIL_RECENT_RUNS),
            "runner": {
                **runner.to_dict(),
                "minutes": window_minutes,
                "billable_minutes": billable,
                "billable_display": minutes.format_billable(billable, runner.detected),
            },
            "job_minutes": job_minutes,
            "job_graph": job_graph.resolve_job_graph(content, job_stats, job_minutes, job_breakdown),
            "time_window_days": days,
            "generated_at": now.isoformat(),
        }

    # ------------------------------------------------------------------
    # Optional fetches
    # ------------------------------------------------------------------

    def _workflow_commits(self, owner: str, repo: str, since: datetime) -> list[dict]:
        try:
            return self.client.list_commits(owner, repo, WORKFLOWS_PATH, since)
        except _OPTIONAL_FETCH_ERRORS as exc:
            logger.warning("workflow commits unavailable: %s", exc, extra={"owner": sanitize_log(owner), "repo": sanitize_log(repo)})
            return []

    def _workflow_file(self, owner: str, repo: str, path: str) -> str | None:
        try:
            return self.client.get_file_content(owner, repo, path)
        except _OPTIONAL_FETCH_ERRORS as exc:
            logger.warning("workflow file %s unavailable: %s", sanitize_log(path), exc)
            return None

    def _run_jobs(self, owner: str, repo: str, run_id: int) -> list[dict]:
        try:
            return self.client.list_jobs(owner, repo, run_id)
        except _OPTIONAL_FETCH_ERRORS as exc:
            logger.warning("jobs for run %s unavailable: %s", run_id, exc)
            return []
