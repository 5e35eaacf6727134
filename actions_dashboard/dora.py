"""DORA delivery metrics derived from workflow runs.

A successful run counts as a deployment and a failed run as a failed
change.  Cancelled and skipped runs never reached a verdict, so they are
left out of every figure here.
"""

from __future__ import annotations

from actions_dashboard.models import DoraMetrics
from actions_dashboard.utils import (
    FAILURE,
    SUCCESS,
    conclusion_bucket,
    mean,
    percent_one_decimal,
    percentile,
    round_half_up,
    to_epoch_ms,
)

DEFAULT_WINDOW_DAYS = 30


def _lead_times(runs: list[dict]) -> tuple[list[int], bool]:
    lead_times: list[int] = []
    used_commit_timestamp = False
    for run in runs:
        if conclusion_bucket(run.get("conclusion")) not in (SUCCESS, FAILURE):
            continue
        end_ms = to_epoch_ms(run.get("updated_at"))
        commit_ts = (run.get("head_commit") or {}).get("timestamp")
        if commit_ts:
            used_commit_timestamp = True
            start_ms = to_epoch_ms(commit_ts)
        else:
            start_ms = to_epoch_ms(run.get("created_at"))
        if start_ms is None or end_ms is None or end_ms < start_ms:
            continue
        lead_times.append(end_ms - start_ms)
    return lead_times, used_commit_timestamp


def _recovery_times(completed_runs: list[dict]) -> list[int]:
    """Gap from each failure to the first success that finished after it.

    One forward pass over runs ordered by ``updated_at``: failures wait in
    ``pending`` until the next success resolves all of them at once.
    """
    ordered = sorted(
        (r for r in completed_runs if to_epoch_ms(r.get("updated_at")) is not None),
        key=lambda r: to_epoch_ms(r.get("updated_at")),
    )
    recoveries: list[int] = []
    pending: list[int] = []
    for run in ordered:
        ended = to_epoch_ms(run.get("updated_at"))
        bucket = conclusion_bucket(run.get("conclusion"))
        if bucket == FAILURE:
            pending.append(ended)
        elif bucket == SUCCESS and pending:
            recoveries.extend(ended - failed_at for failed_at in pending)
            pending = []
    return recoveries


def compute_dora_metrics(runs: list[dict], window_days: int = DEFAULT_WINDOW_DAYS) -> DoraMetrics:
    completed = [r for r in runs if r.get("status") == "completed"]
    buckets = [conclusion_bucket(r.get("conclusion")) for r in completed]
    success_count = buckets.count(SUCCESS)
    failure_count = buckets.count(FAILURE)

    per_week = success_count / (window_days / 7) if window_days > 0 else 0.0
    per_day = success_count / window_days if window_days > 0 else 0.0

    lead_times, from_commit = _lead_times(completed)
    lead_time = round_half_up(percentile(sorted(lead_times), 50)) if lead_times else None

    recoveries = _recovery_times(completed)
    mttr = round_half_up(mean(recoveries)) if recoveries else None

    return {
        "deployment_frequency": {"per_week": per_week, "per_day": per_day},
        "lead_time_for_changes_ms": lead_time,
        "lead_time_from_commit": from_commit,
        "change_failure_rate": percent_one_decimal(failure_count, success_count + failure_count),
        "mean_time_to_recovery_ms": mttr,
    }
