"""Flask server for the GitHub Actions dashboard.

Endpoints
---------
GET  /healthz
    Health check.
GET  /api/dashboard/data?owner=&repo=&days=
    Repo dashboard.  JSON by default; ``Accept: text/event-stream`` streams
    progress events while a cache miss is being fetched.
GET  /api/workflows/<id>?owner=&repo=&days=
    Workflow detail: metrics, minutes, job breakdown and job graph.
POST /api/optimize
    Advisor report for one workflow (latest result is remembered).
POST /api/optimize/apply
    Rewritten workflow YAML for a set of selected optimizations.
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from flask_cors import CORS

from actions_dashboard.cache_coordinator import (
    BackgroundRefresher,
    CacheCoordinator,
    CachePolicy,
    CacheTier,
)
from actions_dashboard.cache_store import MemoryCacheStore, SqliteCacheStore
from actions_dashboard.config import AppConfig
from actions_dashboard.dashboard import FAST_TIER, RUNS_TIER
from actions_dashboard.exceptions import (
    GitHubAPIError,
    GitHubUnauthorizedError,
    WorkflowNotFoundError,
)
from actions_dashboard.extensions import limiter
from actions_dashboard.helpers import UPSTREAM_MESSAGE, error_response, unauthorized_response
from actions_dashboard.logging_config import setup_logging
from actions_dashboard.routes import api_bp, optimize_bp

log = logging.getLogger(__name__)


def build_coordinator(config: AppConfig) -> CacheCoordinator:
    fast = CacheTier(
        FAST_TIER,
        MemoryCacheStore(),
        CachePolicy(config.fast_cache_ttl, config.fast_cache_stale, config.fast_cache_retention),
    )
    slow = CacheTier(
        RUNS_TIER,
        SqliteCacheStore(config.db_path),
        CachePolicy(config.runs_cache_ttl, config.runs_cache_stale, config.runs_cache_retention),
    )
    return CacheCoordinator([fast, slow], BackgroundRefresher(config.refresh_workers))


def create_app(config: AppConfig | None = None, coordinator: CacheCoordinator | None = None) -> Flask:
    if config is None:
        config = AppConfig.from_env()

    setup_logging(level=config.log_level)

    app = Flask(__name__)
    app.config["APP_CONFIG"] = config
    app.config["CACHE_COORDINATOR"] = coordinator or build_coordinator(config)

    CORS(app, expose_headers=["X-Data-Stale", "X-Cache-Tier"])
    limiter.init_app(app)

    app.register_blueprint(api_bp)
    app.register_blueprint(optimize_bp)

    @app.after_request
    def _set_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    @app.route("/healthz")
    def healthz():
        return jsonify({"status": "ok"})

    @app.errorhandler(GitHubUnauthorizedError)
    def _unauthorized(exc):
        log.info("GitHub rejected credentials on %s", exc.endpoint)
        return unauthorized_response()

    @app.errorhandler(GitHubAPIError)
    def _upstream(exc):
        log.warning("GitHub request failed on %s (%s): %s", exc.endpoint, exc.status_code, exc)
        return error_response(UPSTREAM_MESSAGE, 502)

    @app.errorhandler(WorkflowNotFoundError)
    def _workflow_not_found(exc):
        return error_response(str(exc), 404)

    return app
