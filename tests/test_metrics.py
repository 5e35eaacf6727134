"""Unit tests for actions_dashboard/metrics.py.

Covers: per-workflow metrics, run trend, repo summary, recent runs,
duration trend, and job breakdown/stats.
"""

import json
import os
import sys
from datetime import datetime, timezone

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from actions_dashboard.metrics import (
    build_duration_trend,
    build_job_breakdown,
    build_job_stats,
    build_run_trend,
    compute_repo_summary,
    compute_workflow_metrics,
    latest_run,
    runs_to_recent_runs,
)

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
WORKFLOW = {"id": 1, "name": "CI", "path": ".github/workflows/ci.yml", "state": "active"}


def _run(run_id, conclusion="success", status="completed", workflow_id=1,
         started="2024-03-09T10:00:00Z", updated="2024-03-09T10:01:00Z", **extra):
    run = {
        "id": run_id,
        "workflow_id": workflow_id,
        "name": "CI",
        "status": status,
        "conclusion": conclusion,
        "head_branch": "main",
        "run_number": run_id,
        "created_at": started,
        "run_started_at": started,
        "updated_at": updated,
        "html_url": f"https://github.com/octo/hello/actions/runs/{run_id}",
        "actor": {"login": "octocat", "avatar_url": "https://avatars.example/octocat"},
    }
    run.update(extra)
    return run


class TestComputeWorkflowMetrics:
    def test_hundred_run_scenario(self):
        runs = [_run(i, "success") for i in range(90)] + [_run(100 + i, "failure") for i in range(10)]
        m = compute_workflow_metrics(WORKFLOW, runs)
        assert m["success_rate"] == 90.0
        assert m["failure_rate"] == 10.0
        assert m["avg_duration_ms"] == 60000
        assert m["p50_duration_ms"] == 60000
        assert m["p95_duration_ms"] == 60000
        assert m["total_runs"] == 100
        assert m["executed_count"] == 100

    def test_counts_sum_to_completed(self):
        runs = [
            _run(1, "success"),
            _run(2, "failure"),
            _run(3, "cancelled"),
            _run(4, "skipped"),
            _run(5, "timed_out"),
            _run(6, "neutral"),
            _run(7, "action_required"),
            _run(8, None),
            _run(9, None, status="in_progress"),
        ]
        m = compute_workflow_metrics(WORKFLOW, runs)
        total = m["success_count"] + m["failure_count"] + m["cancelled_count"] + m["skipped_count"]
        assert total == m["completed_runs"] == 8
        assert m["failure_count"] == 2
        assert m["skipped_count"] == 4

    def test_no_executed_runs_gives_zero_rates(self):
        runs = [_run(1, "cancelled"), _run(2, "skipped")]
        m = compute_workflow_metrics(WORKFLOW, runs)
        assert m["success_rate"] == 0.0
        assert m["failure_rate"] == 0.0

    def test_skip_rate_uses_all_runs(self):
        runs = [_run(1, "skipped"), _run(2, "success"), _run(3, None, status="queued"), _run(4, "success")]
        m = compute_workflow_metrics(WORKFLOW, runs)
        assert m["skip_rate"] == 25.0

    def test_invalid_durations_excluded(self):
        runs = [
            _run(1, started="2024-03-09T10:00:00Z", updated="2024-03-09T10:02:00Z"),
            _run(2, started=None, updated="2024-03-09T10:02:00Z"),
            _run(3, started="2024-03-09T10:05:00Z", updated="2024-03-09T10:00:00Z"),
        ]
        m = compute_workflow_metrics(WORKFLOW, runs)
        assert m["avg_duration_ms"] == 120_000
        assert m["p95_duration_ms"] == 120_000

    def test_no_durations_is_zero(self):
        m = compute_workflow_metrics(WORKFLOW, [])
        assert m["avg_duration_ms"] == 0
        assert m["p50_duration_ms"] == 0
        assert m["last_run_at"] is None
        assert m["last_conclusion"] is None

    def test_other_workflows_ignored(self):
        runs = [_run(1, "success"), _run(2, "failure", workflow_id=2)]
        m = compute_workflow_metrics(WORKFLOW, runs)
        assert m["total_runs"] == 1
        assert m["failure_count"] == 0

    def test_last_run_independent_of_order(self):
        older = _run(1, "failure", updated="2024-03-08T10:00:00Z", started="2024-03-08T09:59:00Z")
        newer = _run(2, "success", updated="2024-03-09T10:00:00Z", started="2024-03-09T09:59:00Z")
        for runs in ([older, newer], [newer, older]):
            m = compute_workflow_metrics(WORKFLOW, runs)
            assert m["last_run_at"] == "2024-03-09T10:00:00Z"
            assert m["last_conclusion"] == "success"

    def test_repeatable(self):
        runs = [_run(i, "success" if i % 3 else "failure") for i in range(20)]
        first = json.dumps(compute_workflow_metrics(WORKFLOW, runs), sort_keys=True)
        second = json.dumps(compute_workflow_metrics(WORKFLOW, runs), sort_keys=True)
        assert first == second

    def test_input_not_mutated(self):
        runs = [_run(1), _run(2, "failure")]
        snapshot = json.dumps(runs, sort_keys=True)
        compute_workflow_metrics(WORKFLOW, runs)
        assert json.dumps(runs, sort_keys=True) == snapshot


class TestLatestRun:
    def test_empty(self):
        assert latest_run([]) is None

    def test_falls_back_to_created_at(self):
        a = {"id": 1, "created_at": "2024-03-01T00:00:00Z"}
        b = {"id": 2, "created_at": "2024-03-02T00:00:00Z"}
        assert latest_run([a, b])["id"] == 2


class TestBuildRunTrend:
    def test_always_n_entries(self):
        for days in (1, 7, 30, 90):
            trend = build_run_trend([], days, NOW)
            assert len(trend) == days
            assert all(p["total"] == 0 for p in trend)

    def test_buckets_by_updated_date(self):
        runs = [
            _run(1, "success", updated="2024-03-10T08:00:00Z"),
            _run(2, "failure", updated="2024-03-10T09:00:00Z"),
            _run(3, "cancelled", updated="2024-03-09T09:00:00Z"),
        ]
        trend = build_run_trend(runs, 7, NOW)
        by_date = {p["date"]: p for p in trend}
        assert by_date["2024-03-10"]["success"] == 1
        assert by_date["2024-03-10"]["failure"] == 1
        assert by_date["2024-03-10"]["total"] == 2
        assert by_date["2024-03-09"]["cancelled"] == 1

    def test_out_of_window_dropped(self):
        runs = [_run(1, "success", updated="2023-12-01T08:00:00Z")]
        trend = build_run_trend(runs, 30, NOW)
        assert sum(p["total"] for p in trend) == 0

    def test_in_progress_counts_in_total_only(self):
        runs = [_run(1, None, status="in_progress", updated="2024-03-10T08:00:00Z")]
        point = build_run_trend(runs, 1, NOW)[0]
        assert point["total"] == 1
        assert point["skipped"] == 0


class TestRepoSummary:
    def test_success_rate_over_executed(self):
        runs = [_run(1, "success"), _run(2, "failure"), _run(3, "cancelled"), _run(4, "success")]
        summary = compute_repo_summary(runs)
        assert summary["success_rate"] == 66.7
        assert summary["total_runs"] == 4
        assert summary["avg_duration_ms"] == 60000


class TestRecentRuns:
    def test_newest_first_and_limited(self):
        runs = [
            _run(i, started=f"2024-03-0{i}T10:00:00Z", updated=f"2024-03-0{i}T10:01:00Z")
            for i in range(1, 6)
        ]
        recent = runs_to_recent_runs(runs, [WORKFLOW], limit=3)
        assert [r["id"] for r in recent] == [5, 4, 3]
        assert recent[0]["duration_ms"] == 60000
        assert recent[0]["actor"] == "octocat"
        assert recent[0]["branch"] == "main"

    def test_name_falls_back_to_workflow(self):
        run = _run(1)
        run["name"] = None
        recent = runs_to_recent_runs([run], [WORKFLOW])
        assert recent[0]["workflow_name"] == "CI"


class TestDurationTrend:
    def test_oldest_first_completed_only(self):
        runs = [
            _run(2, started="2024-03-09T10:00:00Z", updated="2024-03-09T10:02:00Z"),
            _run(1, started="2024-03-08T10:00:00Z", updated="2024-03-08T10:01:00Z"),
            _run(3, None, status="in_progress", started="2024-03-10T10:00:00Z"),
        ]
        trend = build_duration_trend(runs)
        assert [p["run_id"] for p in trend] == [1, 2]
        assert trend[1]["duration_ms"] == 120_000


def _job(name, started, completed, conclusion="success", labels=None):
    return {
        "name": name,
        "status": "completed",
        "conclusion": conclusion,
        "started_at": started,
        "completed_at": completed,
        "labels": labels or ["ubuntu-latest"],
    }


class TestJobBreakdown:
    def test_aggregates_per_job_name(self):
        jobs_per_run = [
            [_job("build", "2024-03-09T10:00:00Z", "2024-03-09T10:01:00Z"),
             _job("test", "2024-03-09T10:01:00Z", "2024-03-09T10:04:00Z")],
            [_job("build", "2024-03-08T10:00:00Z", "2024-03-08T10:03:00Z")],
        ]
        breakdown = {b["job_name"]: b for b in build_job_breakdown(jobs_per_run)}
        assert breakdown["build"]["avg_duration_ms"] == 120_000
        assert breakdown["build"]["min_duration_ms"] == 60_000
        assert breakdown["build"]["max_duration_ms"] == 180_000
        assert breakdown["build"]["samples"] == 2
        assert breakdown["test"]["samples"] == 1

    def test_jobs_without_timing_skipped(self):
        jobs_per_run = [[_job("build", None, None)]]
        assert build_job_breakdown(jobs_per_run) == []


class TestJobStats:
    def test_success_rate_and_run_count(self):
        jobs_per_run = [
            [_job("build", "2024-03-09T10:00:00Z", "2024-03-09T10:01:00Z", "success")],
            [_job("build", "2024-03-08T10:00:00Z", "2024-03-08T10:01:00Z", "failure")],
            [_job("build", "2024-03-07T10:00:00Z", "2024-03-07T10:01:00Z", "success")],
        ]
        stats = build_job_stats(jobs_per_run)["build"]
        assert stats["run_count"] == 3
        assert stats["success_rate"] == 66.7
        assert stats["avg_duration_ms"] == 60_000
