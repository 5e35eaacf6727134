"""Parse the ``jobs`` section of a GitHub Actions workflow file.

The YAML is user-authored and frequently odd, so parsing never raises:
anything that is not a mapping with a ``jobs`` mapping becomes "no jobs".
Each job is validated into one of two shapes:

* :class:`ReusableJob` -- declares ``uses:`` and delegates to another
  workflow; it has no runner or steps of its own.
* :class:`RunnerJob` -- runs on a runner resolved from ``runs-on``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)

DEFAULT_RUNNER = "ubuntu-latest"
EXPRESSION_MARKER = "${{"


@dataclass(frozen=True)
class ReusableJob:
    job_id: str
    name: str
    uses: str
    needs: tuple[str, ...] = ()


@dataclass(frozen=True)
class RunnerJob:
    job_id: str
    name: str
    runs_on: tuple[str, ...] = (DEFAULT_RUNNER,)
    needs: tuple[str, ...] = ()
    step_count: int = 0

    @property
    def is_expression(self) -> bool:
        """``runs-on`` is templated (e.g. ``${{ matrix.os }}``) and can't be resolved statically."""
        return any(EXPRESSION_MARKER in label for label in self.runs_on)

    @property
    def runner_label(self) -> str:
        return ", ".join(self.runs_on)


JobDefinition = ReusableJob | RunnerJob


def normalize_needs(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(item for item in value if isinstance(item, str))
    return ()


def normalize_runs_on(value: object) -> tuple[str, ...]:
    if value is None:
        return (DEFAULT_RUNNER,)
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(item for item in value if isinstance(item, str))
    if isinstance(value, dict):
        # runner-group form: {group: ..., labels: [...]}
        return normalize_runs_on(value.get("labels")) if value.get("labels") is not None else ()
    return ()


def _display_name(job_id: str, job: dict) -> str:
    name = job.get("name")
    if isinstance(name, str) and name.strip():
        return name
    return job_id


def _parse_job(job_id: str, raw: object) -> JobDefinition:
    job = raw if isinstance(raw, dict) else {}
    needs = normalize_needs(job.get("needs"))
    uses = job.get("uses")
    if isinstance(uses, str):
        return ReusableJob(job_id=job_id, name=_display_name(job_id, job), uses=uses, needs=needs)
    steps = job.get("steps")
    return RunnerJob(
        job_id=job_id,
        name=_display_name(job_id, job),
        runs_on=normalize_runs_on(job.get("runs-on")),
        needs=needs,
        step_count=len(steps) if isinstance(steps, list) else 0,
    )


def parse_workflow_jobs(content: str | None) -> dict[str, JobDefinition]:
    """Return the workflow's jobs in declaration order, or ``{}`` if unusable."""
    if not content:
        return {}
    try:
        doc = yaml.safe_load(content)
    except (yaml.YAMLError, ValueError, RecursionError) as exc:
        # ValueError: scalars that look like timestamps but aren't valid dates.
        logger.debug("workflow YAML did not parse: %s", exc)
        return {}
    if not isinstance(doc, dict):
        return {}
    jobs = doc.get("jobs")
    if not isinstance(jobs, dict):
        return {}

    out: dict[str, JobDefinition] = {}
    for job_id, raw in jobs.items():
        if not isinstance(job_id, str) or not job_id:
            continue
        out[job_id] = _parse_job(job_id, raw)
    return out
