"""Record and payload shapes.

GitHub records are kept as the plain dicts the REST API returns; the
``TypedDict`` declarations below document the fields the engines read.
Computed payloads (what ends up in the cache and in API responses) use
snake_case keys.
"""

from __future__ import annotations

from typing import Literal, TypedDict

RunStatus = Literal["queued", "in_progress", "completed", "action_required"]
RunConclusion = Literal[
    "success", "failure", "neutral", "cancelled", "skipped", "timed_out", "action_required",
]


class Actor(TypedDict, total=False):
    login: str
    avatar_url: str


class HeadCommit(TypedDict, total=False):
    id: str
    timestamp: str


class RunRecord(TypedDict, total=False):
    id: int
    name: str | None
    workflow_id: int
    status: RunStatus | None
    conclusion: RunConclusion | None
    head_branch: str | None
    head_sha: str
    run_number: int
    event: str
    created_at: str
    updated_at: str
    run_started_at: str | None
    html_url: str
    actor: Actor | None
    head_commit: HeadCommit | None


class StepRecord(TypedDict, total=False):
    name: str
    status: str
    conclusion: str | None
    number: int
    started_at: str | None
    completed_at: str | None


class JobRecord(TypedDict, total=False):
    id: int
    run_id: int
    name: str
    status: str
    conclusion: str | None
    started_at: str | None
    completed_at: str | None
    labels: list[str]
    runner_name: str | None
    steps: list[StepRecord]


class WorkflowRecord(TypedDict, total=False):
    id: int
    name: str
    path: str
    state: str
    html_url: str


class WorkflowMetrics(TypedDict):
    workflow_id: int
    workflow_name: str
    workflow_path: str
    total_runs: int
    completed_runs: int
    success_count: int
    failure_count: int
    cancelled_count: int
    skipped_count: int
    executed_count: int
    success_rate: float
    failure_rate: float
    skip_rate: float
    avg_duration_ms: int
    p50_duration_ms: int
    p95_duration_ms: int
    last_run_at: str | None
    last_conclusion: str | None


class RunDataPoint(TypedDict):
    date: str
    success: int
    failure: int
    cancelled: int
    skipped: int
    total: int


class DeploymentFrequency(TypedDict):
    per_week: float
    per_day: float


class DoraMetrics(TypedDict):
    deployment_frequency: DeploymentFrequency
    lead_time_for_changes_ms: int | None
    lead_time_from_commit: bool
    change_failure_rate: float
    mean_time_to_recovery_ms: int | None


class JobGraphNode(TypedDict):
    id: str
    job_name: str
    runner_label: str
    step_count: int
    avg_duration_ms: int
    min_duration_ms: int
    max_duration_ms: int
    run_count: int
    success_rate: float
    minutes_share: float
    column_index: int
    row_index: int


class JobGraphEdge(TypedDict):
    id: str
    source: str
    target: str


class JobGraph(TypedDict):
    nodes: list[JobGraphNode]
    edges: list[JobGraphEdge]


class WorkflowFileCommit(TypedDict):
    date: str
    committed_at: str
    sha: str
    message: str


class ProgressEvent(TypedDict, total=False):
    phase: Literal["fetching", "computing"]
    fetched: int
    total: int
    page: int


class DashboardData(TypedDict):
    owner: str
    repo: str
    total_runs: int
    success_rate: float
    avg_duration_ms: int
    active_workflows: int
    run_trend: list[RunDataPoint]
    workflow_metrics: list[WorkflowMetrics]
    recent_runs: list[dict]
    workflow_file_commits: list[WorkflowFileCommit]
    dora: DoraMetrics
    minutes: dict
    time_window_days: int
    generated_at: str


class WorkflowDetailData(TypedDict):
    workflow_id: int
    workflow_name: str
    workflow_path: str
    metrics: WorkflowMetrics
    duration_trend: list[dict]
    run_history: list[RunDataPoint]
    job_breakdown: list[dict]
    recent_runs: list[dict]
    runner: dict
    job_minutes: dict
    job_graph: JobGraph
    time_window_days: int
    generated_at: str
