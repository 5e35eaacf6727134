"""Dashboard read endpoints: repo dashboard (JSON or SSE) and workflow detail."""

from __future__ import annotations

import json
import logging
import queue
import threading

from flask import Blueprint, Response, jsonify, request as flask_request, stream_with_context

from actions_dashboard.exceptions import FetchCancelledError, GitHubAPIError, GitHubUnauthorizedError
from actions_dashboard.helpers import (
    DEFAULT_DAYS,
    UNAUTHORIZED_MESSAGE,
    UPSTREAM_MESSAGE,
    clamp_days,
    dashboard_service,
    error_response,
    request_token,
    user_id_for,
    valid_name,
)
from actions_dashboard.logging_config import sanitize_log

log = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)

# Seconds between keep-alive comments while a fetch is running.
SSE_KEEPALIVE = 15


def _repo_args() -> tuple[str, str] | None:
    owner = flask_request.args.get("owner", "")
    repo = flask_request.args.get("repo", "")
    if not valid_name(owner) or not valid_name(repo):
        return None
    return owner, repo


def _sse(event: str, data: object) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _with_cache_headers(response, result):
    if result.is_stale:
        response.headers["X-Data-Stale"] = "true"
    response.headers["X-Cache-Tier"] = result.tier or "source"
    return response


@api_bp.route("/api/dashboard/data")
def dashboard_data():
    repo_args = _repo_args()
    if repo_args is None:
        return error_response("owner and repo are required", 400)
    owner, repo = repo_args
    days = clamp_days(flask_request.args.get("days", DEFAULT_DAYS))
    token = request_token()
    user = user_id_for(token)
    service = dashboard_service(token)

    if "text/event-stream" in flask_request.headers.get("Accept", ""):
        return _stream_dashboard(service, user, owner, repo, days)

    result = service.get_dashboard(user, owner, repo, days)
    return _with_cache_headers(jsonify(result.data), result)


def _stream_dashboard(service, user: str, owner: str, repo: str, days: int) -> Response:
    """Run the fetch on a worker thread and relay its progress as SSE.

    If the client goes away, the generator is closed and the abort event
    stops the fetch at the next page boundary.
    """
    events: queue.Queue = queue.Queue()
    abort = threading.Event()
    log_extra = {"owner": sanitize_log(owner), "repo": sanitize_log(repo)}

    def work() -> None:
        try:
            result = service.get_dashboard(
                user, owner, repo, days,
                on_progress=lambda progress: events.put(("progress", progress)),
                abort=abort,
            )
            events.put(("complete", {"data": result.data, "stale": result.is_stale, "tier": result.tier}))
        except FetchCancelledError:
            log.info("dashboard stream cancelled by client", extra=log_extra)
            events.put(None)
        except GitHubUnauthorizedError:
            events.put(("error", {"error": UNAUTHORIZED_MESSAGE, "reauthenticate": True}))
        except GitHubAPIError as exc:
            log.warning("dashboard stream failed: %s", exc, extra=log_extra)
            events.put(("error", {"error": UPSTREAM_MESSAGE}))
        except Exception:
            log.exception("dashboard stream crashed", extra=log_extra)
            events.put(("error", {"error": UPSTREAM_MESSAGE}))

    worker = threading.Thread(target=work, name="dashboard-stream", daemon=True)

    def generate():
        worker.start()
        try:
            while True:
                try:
                    item = events.get(timeout=SSE_KEEPALIVE)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                if item is None:
                    return
                event, payload = item
                yield _sse(event, payload)
                if event in ("complete", "error"):
                    return
        finally:
            # Runs on client disconnect as well as normal completion.
            abort.set()

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@api_bp.route("/api/workflows/<int:workflow_id>")
def workflow_detail(workflow_id: int):
    repo_args = _repo_args()
    if repo_args is None:
        return error_response("owner and repo are required", 400)
    owner, repo = repo_args
    days = clamp_days(flask_request.args.get("days", DEFAULT_DAYS))
    token = request_token()

    result = dashboard_service(token).get_workflow_detail(user_id_for(token), owner, repo, workflow_id, days)
    return _with_cache_headers(jsonify(result.data), result)
