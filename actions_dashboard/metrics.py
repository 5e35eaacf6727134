"""Per-workflow and per-repo run statistics.

All functions are pure: they read run/job dicts and return new payload
dicts.  The only time dependency is the explicit ``now`` used to anchor
trend windows.
"""

from __future__ import annotations

from datetime import datetime

from actions_dashboard.models import RunDataPoint, WorkflowMetrics
from actions_dashboard.utils import (
    CANCELLED,
    FAILURE,
    SKIPPED,
    SUCCESS,
    compute_duration_ms,
    conclusion_bucket,
    date_key,
    day_keys,
    mean,
    percent_one_decimal,
    percentile,
    round_half_up,
    to_epoch_ms,
)

RECENT_RUNS_LIMIT = 30


def _completed(runs: list[dict]) -> list[dict]:
    return [r for r in runs if r.get("status") == "completed"]


def _run_duration(run: dict) -> int | None:
    return compute_duration_ms(run.get("run_started_at"), run.get("updated_at"))


def _sorted_durations(runs: list[dict]) -> list[int]:
    return sorted(d for d in (_run_duration(r) for r in runs) if d is not None)


def _run_sort_key(run: dict) -> int:
    ts = to_epoch_ms(run.get("updated_at"))
    if ts is None:
        ts = to_epoch_ms(run.get("created_at"))
    return ts if ts is not None else -1


def latest_run(runs: list[dict]) -> dict | None:
    """The most recently updated run, independent of list order."""
    if not runs:
        return None
    return max(runs, key=_run_sort_key)


def count_conclusions(completed_runs: list[dict]) -> dict[str, int]:
    counts = {SUCCESS: 0, FAILURE: 0, CANCELLED: 0, SKIPPED: 0}
    for run in completed_runs:
        counts[conclusion_bucket(run.get("conclusion"))] += 1
    return counts


def compute_workflow_metrics(workflow: dict, runs: list[dict]) -> WorkflowMetrics:
    workflow_id = workflow.get("id")
    workflow_runs = [r for r in runs if r.get("workflow_id") == workflow_id]
    completed = _completed(workflow_runs)
    counts = count_conclusions(completed)

    success_count = counts[SUCCESS]
    failure_count = counts[FAILURE]
    executed_count = success_count + failure_count

    durations = _sorted_durations(completed)
    last = latest_run(workflow_runs)

    return {
        "workflow_id": workflow_id,
        "workflow_name": workflow.get("name", ""),
        "workflow_path": workflow.get("path", ""),
        "total_runs": len(workflow_runs),
        "completed_runs": len(completed),
        "success_count": success_count,
        "failure_count": failure_count,
        "cancelled_count": counts[CANCELLED],
        "skipped_count": counts[SKIPPED],
        "executed_count": executed_count,
        "success_rate": percent_one_decimal(success_count, executed_count),
        "failure_rate": percent_one_decimal(failure_count, executed_count),
        "skip_rate": percent_one_decimal(counts[SKIPPED], len(workflow_runs)),
        "avg_duration_ms": round_half_up(mean(durations)),
        "p50_duration_ms": int(percentile(durations, 50)),
        "p95_duration_ms": int(percentile(durations, 95)),
        "last_run_at": last.get("updated_at") if last else None,
        "last_conclusion": last.get("conclusion") if last else None,
    }


def build_run_trend(
    runs: list[dict],
    days: int = 30,
    now: datetime | None = None,
) -> list[RunDataPoint]:
    points: dict[str, RunDataPoint] = {
        key: {"date": key, "success": 0, "failure": 0, "cancelled": 0, "skipped": 0, "total": 0}
        for key in day_keys(days, now)
    }
    for run in runs:
        point = points.get(date_key(run.get("updated_at")))
        if point is None:
            continue
        point["total"] += 1
        if run.get("conclusion") is not None:
            point[conclusion_bucket(run.get("conclusion"))] += 1
    return list(points.values())


def compute_repo_summary(runs: list[dict]) -> dict:
    completed = _completed(runs)
    counts = count_conclusions(completed)
    executed = counts[SUCCESS] + counts[FAILURE]
    return {
        "total_runs": len(runs),
        "completed_runs": len(completed),
        "success_rate": percent_one_decimal(counts[SUCCESS], executed),
        "avg_duration_ms": round_half_up(mean(_sorted_durations(completed))),
    }


def runs_to_recent_runs(
    runs: list[dict],
    workflows: list[dict],
    limit: int = RECENT_RUNS_LIMIT,
) -> list[dict]:
    names = {w.get("id"): w.get("name", "") for w in workflows}
    newest_first = sorted(
        runs,
        key=lambda r: to_epoch_ms(r.get("created_at")) or 0,
        reverse=True,
    )
    recent = []
    for run in newest_first[:limit]:
        actor = run.get("actor") or {}
        recent.append({
            "id": run.get("id"),
            "workflow_name": run.get("name") or names.get(run.get("workflow_id")) or "Unknown",
            "workflow_id": run.get("workflow_id"),
            "status": run.get("status"),
            "conclusion": run.get("conclusion"),
            "branch": run.get("head_branch"),
            "duration_ms": _run_duration(run),
            "started_at": run.get("run_started_at") or run.get("created_at"),
            "html_url": run.get("html_url", ""),
            "actor": actor.get("login"),
            "actor_avatar": actor.get("avatar_url"),
            "run_number": run.get("run_number"),
        })
    return recent


def build_duration_trend(runs: list[dict]) -> list[dict]:
    """Completed runs with a known start, oldest first, for the duration chart."""
    points = []
    for run in _completed(runs):
        if not run.get("run_started_at"):
            continue
        points.append({
            "run_id": run.get("id"),
            "run_number": run.get("run_number"),
            "started_at": run["run_started_at"],
            "duration_ms": _run_duration(run) or 0,
            "conclusion": run.get("conclusion"),
            "branch": run.get("head_branch"),
        })
    points.sort(key=lambda p: to_epoch_ms(p["started_at"]) or 0)
    return points


def _job_durations_by_name(jobs_per_run: list[list[dict]]) -> dict[str, list[dict]]:
    grouped: dict[str, list[dict]] = {}
    for jobs in jobs_per_run:
        for job in jobs:
            name = job.get("name")
            if not name:
                continue
            grouped.setdefault(name, []).append(job)
    return grouped


def build_job_breakdown(jobs_per_run: list[list[dict]]) -> list[dict]:
    """Average/min/max job duration over the sampled runs, per job name."""
    breakdown = []
    for name, jobs in _job_durations_by_name(jobs_per_run).items():
        durations = [
            d for d in (compute_duration_ms(j.get("started_at"), j.get("completed_at")) for j in jobs)
            if d is not None
        ]
        if not durations:
            continue
        breakdown.append({
            "job_name": name,
            "avg_duration_ms": round_half_up(mean(durations)),
            "max_duration_ms": max(durations),
            "min_duration_ms": min(durations),
            "samples": len(durations),
        })
    return breakdown


def build_job_stats(jobs_per_run: list[list[dict]]) -> dict[str, dict]:
    """Timing and success aggregates keyed by job name, for job-graph nodes."""
    stats: dict[str, dict] = {}
    for name, jobs in _job_durations_by_name(jobs_per_run).items():
        durations = [
            d for d in (compute_duration_ms(j.get("started_at"), j.get("completed_at")) for j in jobs)
            if d is not None
        ]
        counts = count_conclusions([j for j in jobs if j.get("status") == "completed"])
        stats[name] = {
            "avg_duration_ms": round_half_up(mean(durations)),
            "min_duration_ms": min(durations) if durations else 0,
            "max_duration_ms": max(durations) if durations else 0,
            "run_count": len(jobs),
            "success_rate": percent_one_decimal(counts[SUCCESS], counts[SUCCESS] + counts[FAILURE]),
        }
    return stats
