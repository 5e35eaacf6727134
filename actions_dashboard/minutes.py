"""Compute-minute consumption and billable-minute estimates.

GitHub bills hosted runners per started minute, scaled by OS: Linux x1,
Windows x2, macOS x10.  The runner OS of a workflow is read from its YAML
(``runs-on``); when it can't be resolved statically the billable figure
is an estimate and is reported with ``detected=False`` so the UI can mark
it (see :func:`format_billable`).

Job-level minutes come from a *sample*: only the most recent
``JOB_SAMPLE_SIZE`` completed runs have their jobs fetched, because every
run needs its own API call.  Figures derived from that sample are labelled
as such and are never mixed with the exact per-workflow totals.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime

from actions_dashboard.utils import (
    CANCELLED,
    FAILURE,
    compute_duration_ms,
    conclusion_bucket,
    date_key,
    day_keys,
    mean,
    percent_one_decimal,
    to_epoch_ms,
)
from actions_dashboard.workflow_yaml import RunnerJob, parse_workflow_jobs

LINUX_MULTIPLIER = 1
WINDOWS_MULTIPLIER = 2
MACOS_MULTIPLIER = 10

JOB_SAMPLE_SIZE = 5

_MACOS_HINTS = ("macos", "mac-", "osx")
_MS_PER_MINUTE = 60_000


@dataclass(frozen=True)
class RunnerInfo:
    multiplier: float
    type: str
    detected: bool

    def to_dict(self) -> dict:
        return asdict(self)


UNKNOWN_RUNNER = RunnerInfo(multiplier=LINUX_MULTIPLIER, type="unknown", detected=False)


def label_multiplier(label: str) -> int:
    lowered = label.lower()
    if any(hint in lowered for hint in _MACOS_HINTS):
        return MACOS_MULTIPLIER
    if "windows" in lowered:
        return WINDOWS_MULTIPLIER
    return LINUX_MULTIPLIER


def labels_multiplier(labels: list[str] | tuple[str, ...]) -> int:
    return max((label_multiplier(label) for label in labels), default=LINUX_MULTIPLIER)


def runner_type_for(multiplier: float) -> str:
    if multiplier >= MACOS_MULTIPLIER:
        return "macos"
    if multiplier >= WINDOWS_MULTIPLIER:
        return "windows"
    return "ubuntu"


def detect_runner_type(content: str | None) -> RunnerInfo:
    """Billing multiplier and runner family for a workflow file.

    Reusable-workflow jobs and jobs whose ``runs-on`` is an expression are
    skipped; the remaining per-job multipliers are averaged.  A workflow
    whose jobs disagree is reported as ``mixed``.
    """
    multipliers = []
    for job in parse_workflow_jobs(content).values():
        if not isinstance(job, RunnerJob) or job.is_expression or not job.runs_on:
            continue
        multipliers.append(labels_multiplier(job.runs_on))

    if not multipliers:
        return UNKNOWN_RUNNER

    average = mean(multipliers)
    runner_type = "mixed" if len(set(multipliers)) > 1 else runner_type_for(average)
    return RunnerInfo(multiplier=average, type=runner_type, detected=True)


def run_minutes(run: dict) -> int:
    """Started minutes consumed by a run, never negative."""
    start = to_epoch_ms(run.get("run_started_at")) or to_epoch_ms(run.get("created_at"))
    end = to_epoch_ms(run.get("updated_at"))
    if start is None or end is None:
        return 0
    return max(0, math.ceil((end - start) / _MS_PER_MINUTE))


def billable_minutes(raw_minutes: int | float, multiplier: float) -> int:
    return math.ceil(raw_minutes * multiplier)


def format_billable(value: int, detected: bool) -> str:
    text = f"{value:,}"
    return text if detected else f"~{text}"


def compute_minutes_summary(
    workflows: list[dict],
    runs: list[dict],
    runner_by_workflow: dict[int, RunnerInfo],
    days: int = 30,
    now: datetime | None = None,
) -> dict:
    """Repo-wide minutes: per workflow, per day, per branch, and wasted.

    Only completed runs are counted; an in-progress run has not finished
    consuming minutes.  Runs of workflows missing from ``workflows`` still
    count towards the totals, billed at x1 as an estimate.
    """
    completed = [r for r in runs if r.get("status") == "completed"]
    raw_by_workflow: dict[object, int] = {}
    for run in completed:
        wid = run.get("workflow_id")
        raw_by_workflow[wid] = raw_by_workflow.get(wid, 0) + run_minutes(run)
    total_raw = sum(raw_by_workflow.values())

    entries = []
    listed_ids = set()
    for workflow in workflows:
        wid = workflow.get("id")
        listed_ids.add(wid)
        raw = raw_by_workflow.get(wid, 0)
        info = runner_by_workflow.get(wid, UNKNOWN_RUNNER)
        entries.append({
            "workflow_id": wid,
            "workflow_name": workflow.get("name", ""),
            "workflow_path": workflow.get("path", ""),
            "minutes": raw,
            "billable_minutes": billable_minutes(raw, info.multiplier),
            "multiplier": info.multiplier,
            "runner_type": info.type,
            "runner_detected": info.detected,
            "share": percent_one_decimal(raw, total_raw),
        })
    entries.sort(key=lambda e: e["minutes"], reverse=True)

    unlisted_raw = sum(raw for wid, raw in raw_by_workflow.items() if wid not in listed_ids)
    total_billable = sum(e["billable_minutes"] for e in entries) + billable_minutes(unlisted_raw, LINUX_MULTIPLIER)
    is_estimate = unlisted_raw > 0 or any(e["minutes"] > 0 and not e["runner_detected"] for e in entries)

    trend = {key: {"date": key, "minutes": 0} for key in day_keys(days, now)}
    by_branch: dict[str, int] = {}
    wasted = 0
    for run in completed:
        minutes = run_minutes(run)
        point = trend.get(date_key(run.get("updated_at")))
        if point is not None:
            point["minutes"] += minutes
        branch = run.get("head_branch") or "(none)"
        by_branch[branch] = by_branch.get(branch, 0) + minutes
        if conclusion_bucket(run.get("conclusion")) in (FAILURE, CANCELLED):
            wasted += minutes

    branches = [
        {"branch": name, "minutes": minutes}
        for name, minutes in sorted(by_branch.items(), key=lambda item: item[1], reverse=True)
    ]

    return {
        "total_minutes": total_raw,
        "total_billable_minutes": total_billable,
        "billable_is_estimate": is_estimate,
        "total_billable_display": format_billable(total_billable, not is_estimate),
        "minutes_by_workflow": entries,
        "minutes_trend": list(trend.values()),
        "minutes_by_branch": branches,
        "costliest_branch": branches[0] if branches and branches[0]["minutes"] > 0 else None,
        "wasted_minutes": wasted,
        "wasted_share": percent_one_decimal(wasted, total_raw),
    }


def select_job_sample(runs: list[dict], size: int = JOB_SAMPLE_SIZE) -> list[dict]:
    """The ``size`` most recent completed runs, whose jobs get fetched."""
    completed = [r for r in runs if r.get("status") == "completed"]
    completed.sort(key=lambda r: to_epoch_ms(r.get("updated_at")) or 0, reverse=True)
    return completed[:size]


def compute_job_minutes(jobs_per_run: list[list[dict]], window_raw_minutes: int) -> dict:
    """Per-job minutes from the sampled runs plus an extrapolated window estimate.

    ``extrapolated_billable_minutes`` applies the average multiplier seen in
    the sample to the raw minutes of the *whole* window.  It is an estimate;
    the exact billable figure is the per-workflow one from
    :func:`compute_minutes_summary`.
    """
    per_job: dict[str, dict] = {}
    observed_multipliers: list[int] = []
    for jobs in jobs_per_run:
        for job in jobs:
            duration = compute_duration_ms(job.get("started_at"), job.get("completed_at"))
            name = job.get("name")
            if duration is None or not name:
                continue
            labels = job.get("labels") or []
            multiplier = labels_multiplier(labels)
            minutes = math.ceil(duration / _MS_PER_MINUTE)
            observed_multipliers.append(multiplier)
            entry = per_job.setdefault(name, {
                "job_name": name,
                "minutes": 0,
                "billable_minutes": 0,
                "multiplier": multiplier,
                "runner_type": runner_type_for(multiplier),
                "runner_detected": bool(labels),
            })
            entry["minutes"] += minutes
            entry["billable_minutes"] += billable_minutes(minutes, multiplier)
            entry["multiplier"] = max(entry["multiplier"], multiplier)
            entry["runner_type"] = runner_type_for(entry["multiplier"])
            entry["runner_detected"] = entry["runner_detected"] and bool(labels)

    sampled_minutes = sum(e["minutes"] for e in per_job.values())
    jobs = sorted(per_job.values(), key=lambda e: e["minutes"], reverse=True)
    for entry in jobs:
        entry["share"] = percent_one_decimal(entry["minutes"], sampled_minutes)

    avg_multiplier = mean(observed_multipliers) if observed_multipliers else float(LINUX_MULTIPLIER)
    return {
        "jobs": jobs,
        "sampled_runs": len(jobs_per_run),
        "sample_size": JOB_SAMPLE_SIZE,
        "sampled_minutes": sampled_minutes,
        "avg_multiplier": avg_multiplier,
        "window_minutes": window_raw_minutes,
        "extrapolated_billable_minutes": billable_minutes(window_raw_minutes, avg_multiplier),
        "is_sampled": True,
    }
