"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in portfolio/__init__.py with no default limits; this module
applies granular limits per blueprint.

Usage:
    from portfolio.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)

DEFAULT_CLOSURE_LIMIT = "60/minute"


def actor_or_remote_address() -> str:
    """Rate limit key: the X-User actor if present, else the remote IP."""
    actor = (flask_request.headers.get("X-User") or "").strip()
    if actor:
        return f"actor:{actor}"
    return get_remote_address() or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per actor, falling back to remote IP):
        - Closure endpoints: CLOSURE_RATE_LIMIT (default 60/minute)
        - Health check:      exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    closure_limit = app.config.get("CLOSURE_RATE_LIMIT") or DEFAULT_CLOSURE_LIMIT
    bp = app.blueprints.get("closure")
    if bp:
        limiter.limit(closure_limit, key_func=actor_or_remote_address)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — closure: %s", closure_limit)
