"""Thin GitHub REST client for the Actions endpoints the dashboard reads.

Every call goes through :func:`retry_utils.request_with_retry`, so 429 and
gateway errors are retried here; what escapes is mapped onto the
:mod:`actions_dashboard.exceptions` hierarchy:

* 401, or any body saying "Bad credentials" -> ``GitHubUnauthorizedError``
* 404 -> ``GitHubNotFoundError``
* anything else non-2xx, or a network failure -> ``GitHubRequestError``
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from datetime import datetime
from typing import Callable

import requests

from actions_dashboard.exceptions import (
    FetchCancelledError,
    GitHubNotFoundError,
    GitHubRequestError,
    GitHubUnauthorizedError,
)
from actions_dashboard.logging_config import sanitize_log
from actions_dashboard.models import ProgressEvent, WorkflowFileCommit
from actions_dashboard.retry_utils import request_with_retry

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
PER_PAGE = 100
REQUEST_TIMEOUT = 30
WORKFLOWS_PATH = ".github/workflows"


def gh_headers(token: str) -> dict[str, str]:
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def is_unauthorized_response(status_code: int, body: str) -> bool:
    return status_code == 401 or "Bad credentials" in (body or "")


def _error_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or "").strip().replace("\n", " ")[:200]
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return ""


class GitHubClient:
    """Read-only access to a repository's workflows, runs, jobs and files.

    One instance is shared by all requests; ``requests.Session`` is safe for
    the concurrent GETs the dashboard fans out.
    """

    def __init__(
        self,
        token: str,
        api_base: str = GITHUB_API_BASE,
        *,
        per_page: int = PER_PAGE,
        timeout: int = REQUEST_TIMEOUT,
        session: requests.Session | None = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.per_page = per_page
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(gh_headers(token))

    def _get(self, path: str, params: dict | None = None) -> dict | list:
        url = f"{self.api_base}{path}"
        try:
            resp = request_with_retry(
                "GET", url, session=self._session, params=params, timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GitHubRequestError(f"GitHub request failed: {exc}", endpoint=path) from exc

        if resp.status_code >= 400:
            message = _error_message(resp)
            if is_unauthorized_response(resp.status_code, message):
                raise GitHubUnauthorizedError(
                    message or "Bad credentials", status_code=resp.status_code, endpoint=path,
                )
            if resp.status_code == 404:
                raise GitHubNotFoundError(
                    message or "Not Found", status_code=404, endpoint=path,
                )
            raise GitHubRequestError(
                f"GitHub API returned {resp.status_code}: {message}",
                status_code=resp.status_code,
                endpoint=path,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise GitHubRequestError(
                "GitHub returned a non-JSON body", status_code=resp.status_code, endpoint=path,
            ) from exc

    def list_workflows(self, owner: str, repo: str) -> list[dict]:
        data = self._get(f"/repos/{owner}/{repo}/actions/workflows", {"per_page": self.per_page})
        return list(data.get("workflows") or [])

    def list_runs(
        self,
        owner: str,
        repo: str,
        since: str,
        page: int = 1,
        workflow_id: int | None = None,
    ) -> tuple[list[dict], int]:
        """One page of runs created on or after ``since`` (``YYYY-MM-DD``).

        Returns ``(runs, total_count)``; ``total_count`` is GitHub's count
        for the whole filtered listing, not just this page.
        """
        if workflow_id is None:
            path = f"/repos/{owner}/{repo}/actions/runs"
        else:
            path = f"/repos/{owner}/{repo}/actions/workflows/{workflow_id}/runs"
        params = {"created": f">={since}", "per_page": self.per_page, "page": page}
        data = self._get(path, params)
        return list(data.get("workflow_runs") or []), int(data.get("total_count") or 0)

    def list_all_runs(
        self,
        owner: str,
        repo: str,
        since: str,
        workflow_id: int | None = None,
        on_progress: Callable[[ProgressEvent], None] | None = None,
        abort: threading.Event | None = None,
    ) -> list[dict]:
        """Every run in the window, following pages in order.

        ``abort`` is checked before each page; once set the fetch stops with
        :class:`FetchCancelledError` and no partial result.
        """
        runs: list[dict] = []
        page = 1
        while True:
            if abort is not None and abort.is_set():
                logger.info(
                    "run fetch cancelled after %d runs",
                    len(runs),
                    extra={"owner": sanitize_log(owner), "repo": sanitize_log(repo)},
                )
                raise FetchCancelledError(f"cancelled at page {page}")
            batch, total = self.list_runs(owner, repo, since, page=page, workflow_id=workflow_id)
            runs.extend(batch)
            if on_progress is not None:
                on_progress({
                    "phase": "fetching",
                    "fetched": len(runs),
                    "total": max(total, len(runs)),
                    "page": page,
                })
            if len(batch) < self.per_page or len(runs) >= total:
                break
            page += 1
        logger.debug(
            "fetched %d runs in %d page(s)",
            len(runs),
            page,
            extra={"owner": sanitize_log(owner), "repo": sanitize_log(repo), "workflow_id": workflow_id},
        )
        return runs

    def list_jobs(self, owner: str, repo: str, run_id: int) -> list[dict]:
        data = self._get(
            f"/repos/{owner}/{repo}/actions/runs/{run_id}/jobs", {"per_page": self.per_page},
        )
        return list(data.get("jobs") or [])

    def get_file_content(self, owner: str, repo: str, path: str) -> str | None:
        """Decoded text of a file on the default branch; ``None`` if absent or not a file."""
        try:
            data = self._get(f"/repos/{owner}/{repo}/contents/{path}")
        except GitHubNotFoundError:
            return None
        if not isinstance(data, dict) or data.get("type") != "file":
            return None
        content = data.get("content")
        if not content:
            return None
        if data.get("encoding") != "base64":
            return str(content)
        try:
            return base64.b64decode(content).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            logger.warning("could not decode %s: %s", sanitize_log(path), exc)
            return None

    def list_commits(
        self,
        owner: str,
        repo: str,
        path: str = WORKFLOWS_PATH,
        since: datetime | str | None = None,
    ) -> list[WorkflowFileCommit]:
        """Commits touching ``path`` since ``since``, as chart markers."""
        since_iso = since.isoformat() if isinstance(since, datetime) else (since or "")
        params: dict = {"path": path, "per_page": self.per_page}
        if since_iso:
            params["since"] = since_iso
        data = self._get(f"/repos/{owner}/{repo}/commits", params)

        commits: list[WorkflowFileCommit] = []
        for item in data or []:
            commit = item.get("commit") or {}
            committed_at = (commit.get("committer") or {}).get("date") or since_iso
            message = (commit.get("message") or "").split("\n")[0]
            commits.append({
                "date": committed_at[:10],
                "committed_at": committed_at,
                "sha": (item.get("sha") or "")[:7],
                "message": message[:80],
            })
        return commits
