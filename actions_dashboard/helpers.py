"""Request helpers shared by the route blueprints.

Callers identify themselves with the GitHub token they send as
``Authorization: Bearer <token>``; when they send none, the server's own
``GITHUB_TOKEN`` is used.  Cache entries are scoped by a digest of that
token so one caller never sees another caller's repositories.
"""

from __future__ import annotations

import hashlib
import re

from flask import current_app, jsonify, request as flask_request

from actions_dashboard.config import AppConfig
from actions_dashboard.dashboard import DashboardService
from actions_dashboard.github_client import GitHubClient

UNAUTHORIZED_MESSAGE = "GitHub token expired. Please sign in again."
UPSTREAM_MESSAGE = "Failed to fetch GitHub Actions data. Please check your permissions."

MIN_DAYS = 1
MAX_DAYS = 90
DEFAULT_DAYS = 30

_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]{1,100}$")


def app_config() -> AppConfig:
    return current_app.config["APP_CONFIG"]


def request_token() -> str:
    auth = flask_request.headers.get("Authorization", "")
    if auth.startswith("Bearer ") and auth[7:].strip():
        return auth[7:].strip()
    return app_config().github_token


def user_id_for(token: str) -> str:
    if not token:
        return "anonymous"
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


def clamp_days(raw: object) -> int:
    try:
        days = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_DAYS
    return max(MIN_DAYS, min(MAX_DAYS, days))


def valid_name(value: object) -> bool:
    return isinstance(value, str) and bool(_NAME_RE.match(value)) and value not in (".", "..")


def github_client(token: str) -> GitHubClient:
    return GitHubClient(token, app_config().github_api_base)


def dashboard_service(token: str) -> DashboardService:
    return DashboardService(
        github_client(token),
        current_app.config["CACHE_COORDINATOR"],
        fetch_workers=app_config().fetch_workers,
    )


def error_response(message: str, status: int, **extra):
    return jsonify({"error": message, **extra}), status


def unauthorized_response():
    return error_response(UNAUTHORIZED_MESSAGE, 401, reauthenticate=True)
