"""Optimization advisor endpoints."""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request as flask_request

from actions_dashboard import database
from actions_dashboard.exceptions import AdvisorRequestError, OptimizationResponseError
from actions_dashboard.extensions import ADVISOR_LIMIT, limiter
from actions_dashboard.helpers import (
    app_config,
    clamp_days,
    dashboard_service,
    error_response,
    github_client,
    request_token,
    user_id_for,
    valid_name,
)
from actions_dashboard.optimizer import MistralClient, generate_optimization_report, generate_optimized_yaml

log = logging.getLogger(__name__)

optimize_bp = Blueprint("optimize", __name__)

MISSING_KEY_MESSAGE = "Mistral API key not configured."
INVALID_REPORT_MESSAGE = "The advisor returned an invalid report. Please try again."


def _mistral_client() -> MistralClient | None:
    config = app_config()
    if not config.mistral_api_key:
        return None
    return MistralClient(config.mistral_api_key, config.mistral_model)


def _history_response(entry: dict, cached: bool):
    return jsonify({
        "result": entry["result"],
        "cached": cached,
        "created_at": entry["created_at"],
        "prompt_tokens": entry["prompt_tokens"],
        "completion_tokens": entry["completion_tokens"],
    })


@optimize_bp.route("/api/optimize", methods=["POST"])
@limiter.limit(ADVISOR_LIMIT)
def optimize():
    body = flask_request.get_json(silent=True) or {}
    owner = body.get("owner", "")
    repo = body.get("repo", "")
    workflow_id = body.get("workflow_id")
    if not valid_name(owner) or not valid_name(repo) or not isinstance(workflow_id, int):
        return error_response("owner, repo and workflow_id are required", 400)

    client = _mistral_client()
    if client is None:
        return error_response(MISSING_KEY_MESSAGE, 400)

    token = request_token()
    user = user_id_for(token)
    db_path = app_config().db_path

    if not body.get("force"):
        with database.db_connection(db_path) as conn:
            previous = database.get_latest_optimization(conn, user, workflow_id)
        if previous is not None:
            return _history_response(previous, cached=True)

    days = clamp_days(body.get("days", 30))
    detail = dashboard_service(token).get_workflow_detail(user, owner, repo, workflow_id, days).data
    path = detail["workflow_path"]
    workflow_yaml = github_client(token).get_file_content(owner, repo, path)
    if workflow_yaml is None:
        workflow_yaml = f"# Could not fetch workflow YAML for {path}"

    try:
        result, usage = generate_optimization_report(
            client, detail["workflow_name"], workflow_yaml, detail["metrics"], days,
        )
    except OptimizationResponseError as exc:
        log.warning("advisor report rejected: %s", exc, extra={"workflow_id": workflow_id})
        return error_response(INVALID_REPORT_MESSAGE, 502)
    except AdvisorRequestError as exc:
        log.warning("advisor request failed: %s", exc, extra={"workflow_id": workflow_id})
        return error_response(str(exc), 502)

    with database.db_connection(db_path) as conn:
        database.save_optimization(conn, user, workflow_id, owner, repo, result, usage)
        saved = database.get_latest_optimization(conn, user, workflow_id)
    return _history_response(saved, cached=False)


@optimize_bp.route("/api/optimize/apply", methods=["POST"])
@limiter.limit(ADVISOR_LIMIT)
def optimize_apply():
    body = flask_request.get_json(silent=True) or {}
    owner = body.get("owner", "")
    repo = body.get("repo", "")
    path = (body.get("workflow_path") or "").lstrip("/")
    selected = body.get("selected_optimizations") or []
    if not valid_name(owner) or not valid_name(repo) or not path or not isinstance(selected, list) or not selected:
        return error_response("owner, repo, workflow_path and selected_optimizations are required", 400)

    client = _mistral_client()
    if client is None:
        return error_response(MISSING_KEY_MESSAGE, 400)

    original = github_client(request_token()).get_file_content(owner, repo, path)
    if not original:
        return error_response(f"Workflow file {path} not found", 404)

    try:
        optimized = generate_optimized_yaml(client, body.get("workflow_name") or path, original, selected)
    except (AdvisorRequestError, OptimizationResponseError) as exc:
        log.warning("advisor failed to rewrite %s: %s", path, exc)
        return error_response(f"Mistral failed to generate optimized YAML: {exc}", 502)

    return jsonify({"workflow_path": path, "original_yaml": original, "optimized_yaml": optimized})
