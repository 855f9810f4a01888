"""
Rate limiting configuration.

The Limiter instance is created in hub/__init__.py with no default limits;
this module applies per-route limits keyed by the signed-in user.

Usage:
    from hub.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

AI_LIMIT = "20/minute"
TASK_WRITE_LIMIT = "30/minute"

# (endpoint, methods) pairs limited at TASK_WRITE_LIMIT
_TASK_WRITE_ENDPOINTS = (
    ("task.update_task", "PATCH"),
    ("task.delete_task", "DELETE"),
    ("task.add_comment", "POST"),
    ("task.reorder_tasks", "PATCH"),
)


def user_rate_limit_key():
    """Rate limit key: the signed-in user's auth id, else remote IP."""
    user = getattr(g, "current_user", None)
    if user is not None:
        return f"user:{user.auth_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API routes.

    Limits (per user):
        - AI endpoints (and survey drafting):  20/minute
        - Task PATCH/DELETE, comment POST, reorder:  30/minute
        - Health check:           exempt

    Nothing is applied when RATELIMIT_ENABLED is off (the testing config).
    """

    if not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (RATELIMIT_ENABLED=False)")
        return

    bp = app.blueprints.get("ai")
    if bp:
        limiter.limit(AI_LIMIT)(bp)

    view = app.view_functions.get("survey.ai_generate")
    if view is not None:
        app.view_functions["survey.ai_generate"] = limiter.limit(AI_LIMIT)(view)

    for endpoint, method in _TASK_WRITE_ENDPOINTS:
        view = app.view_functions.get(endpoint)
        if view is None:
            continue
        app.view_functions[endpoint] = limiter.limit(
            TASK_WRITE_LIMIT, methods=[method],
        )(view)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: AI %s, task writes %s", AI_LIMIT, TASK_WRITE_LIMIT)
