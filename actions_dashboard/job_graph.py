"""Job dependency graph for the workflow detail view.

Nodes are laid out in columns by ``needs`` depth.  Timing figures are not
known from the YAML; they are merged in afterwards from the per-job stats
of the sampled runs (:func:`apply_job_stats`).

When the workflow file can't be fetched or has no jobs, the view still
shows something, in this order of preference:

1. per-job minutes from the sampled runs, one row of nodes, no edges;
2. the job-duration breakdown, same layout;
3. nothing.
"""

from __future__ import annotations

import logging

from actions_dashboard.models import JobGraph, JobGraphEdge, JobGraphNode
from actions_dashboard.utils import round_half_up
from actions_dashboard.workflow_yaml import ReusableJob, parse_workflow_jobs

logger = logging.getLogger(__name__)


def _empty_node(node_id: str, job_name: str, column_index: int, row_index: int) -> JobGraphNode:
    return {
        "id": node_id,
        "job_name": job_name,
        "runner_label": "",
        "step_count": 0,
        "avg_duration_ms": 0,
        "min_duration_ms": 0,
        "max_duration_ms": 0,
        "run_count": 0,
        "success_rate": 0.0,
        "minutes_share": 0.0,
        "column_index": column_index,
        "row_index": row_index,
    }


def _layer_columns(needs_by_job: dict[str, tuple[str, ...]]) -> list[list[str]]:
    """Group job ids into columns; a job lands after every declared job it needs.

    Needs naming undeclared jobs are treated as satisfied.  If a pass places
    nothing (a needs cycle), the first remaining job is forced into the
    column, so the loop ends after at most ``len(needs_by_job)`` passes.
    """
    remaining = list(needs_by_job)
    placed: set[str] = set()
    columns: list[list[str]] = []
    while remaining:
        column = [
            job_id for job_id in remaining
            if all(need in placed or need not in needs_by_job for need in needs_by_job[job_id])
        ]
        if not column:
            logger.debug("needs cycle among %s; forcing %s", remaining, remaining[0])
            column = [remaining[0]]
        placed.update(column)
        remaining = [job_id for job_id in remaining if job_id not in placed]
        columns.append(column)
    return columns


def build_job_graph_from_workflow(content: str | None) -> JobGraph:
    jobs = parse_workflow_jobs(content)
    if not jobs:
        return {"nodes": [], "edges": []}

    needs_by_job = {job_id: job.needs for job_id, job in jobs.items()}

    edges: list[JobGraphEdge] = []
    for job_id, needs in needs_by_job.items():
        for need in needs:
            if need == job_id or need not in jobs:
                continue
            edges.append({"id": f"{need}->{job_id}", "source": need, "target": job_id})

    nodes: list[JobGraphNode] = []
    for column_index, column in enumerate(_layer_columns(needs_by_job)):
        for row_index, job_id in enumerate(column):
            job = jobs[job_id]
            node = _empty_node(job_id, job.name, column_index, row_index)
            if not isinstance(job, ReusableJob):
                node["runner_label"] = job.runner_label
                node["step_count"] = job.step_count
            nodes.append(node)

    return {"nodes": nodes, "edges": edges}


def _matches(node: JobGraphNode, job_name: str) -> bool:
    # Matrix jobs report as "test (ubuntu-latest, 3.12)".
    for base in (node["job_name"], node["id"]):
        if job_name == base or job_name.startswith(f"{base} ("):
            return True
    return False


def apply_job_stats(
    graph: JobGraph,
    job_stats: dict[str, dict],
    job_minutes: dict | None = None,
) -> JobGraph:
    """Merge per-job timing, success and minutes share into graph nodes.

    Stats for every matrix variant of a job fold into its node: counts add
    up, min/max span all variants, and averages are weighted by run count.
    """
    minutes_jobs = (job_minutes or {}).get("jobs") or []
    nodes = []
    for original in graph["nodes"]:
        node = dict(original)
        matched = [stats for name, stats in job_stats.items() if _matches(node, name)]
        if matched:
            runs = sum(s["run_count"] for s in matched)
            timed = [s for s in matched if s["max_duration_ms"] > 0]
            weight = runs or 1
            node["run_count"] = runs
            node["avg_duration_ms"] = round_half_up(
                sum(s["avg_duration_ms"] * s["run_count"] for s in matched) / weight
            )
            node["min_duration_ms"] = min((s["min_duration_ms"] for s in timed), default=0)
            node["max_duration_ms"] = max((s["max_duration_ms"] for s in timed), default=0)
            node["success_rate"] = round_half_up(
                sum(s["success_rate"] * s["run_count"] for s in matched) / weight * 10
            ) / 10
        share = sum(entry.get("share", 0.0) for entry in minutes_jobs if _matches(node, entry.get("job_name", "")))
        if share:
            node["minutes_share"] = round_half_up(share * 10) / 10
        nodes.append(node)
    return {"nodes": nodes, "edges": list(graph["edges"])}


def build_fallback_graph(job_minutes: dict | None, job_breakdown: list[dict] | None) -> JobGraph:
    """Single-row graph with no edges, from whatever per-job data exists."""
    minutes_jobs = (job_minutes or {}).get("jobs") or []
    if minutes_jobs:
        nodes = []
        for index, entry in enumerate(minutes_jobs):
            node = _empty_node(entry["job_name"], entry["job_name"], index, 0)
            node["minutes_share"] = entry.get("share", 0.0)
            nodes.append(node)
        return {"nodes": nodes, "edges": []}

    if job_breakdown:
        nodes = []
        for index, entry in enumerate(job_breakdown):
            node = _empty_node(entry["job_name"], entry["job_name"], index, 0)
            node["avg_duration_ms"] = entry["avg_duration_ms"]
            node["min_duration_ms"] = entry["min_duration_ms"]
            node["max_duration_ms"] = entry["max_duration_ms"]
            node["run_count"] = entry.get("samples", 0)
            nodes.append(node)
        return {"nodes": nodes, "edges": []}

    return {"nodes": [], "edges": []}


def resolve_job_graph(
    content: str | None,
    job_stats: dict[str, dict],
    job_minutes: dict | None,
    job_breakdown: list[dict] | None,
) -> JobGraph:
    graph = build_job_graph_from_workflow(content)
    if not graph["nodes"]:
        graph = build_fallback_graph(job_minutes, job_breakdown)
    if not graph["nodes"]:
        return graph
    return apply_job_stats(graph, job_stats, job_minutes)
