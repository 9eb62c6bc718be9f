# chat_backend/ratelimit.py
# App-scoped rate limiting with JSON 429 errors.
# The inference route carries its own stricter budget (REPLY_RATE_LIMIT).

from flask import jsonify, request
from flask_limiter import Limiter
from flask_limiter.errors import RateLimitExceeded
from flask_limiter.util import get_remote_address

from .observability import error_payload

REPLY_ENDPOINT = "chats.reply_to_session_route"


def _client_ip():
    """
    Prefer edge-provided IPs when behind a proxy/CDN.
    Falls back to Werkzeug's remote_addr via get_remote_address().
    """
    ip = request.headers.get("CF-Connecting-IP")
    if ip:
        return ip.strip()
    xff = request.headers.get("X-Forwarded-For")
    if xff:
        return xff.split(",")[0].strip()
    return get_remote_address()


def init_rate_limiter(app) -> Limiter:
    """
    Initialize Flask-Limiter and wrap the inference route.
    Called after blueprints are registered (see create_app).
    """
    limiter = app.extensions.get("rate_limiter")
    if app.config.get("_RATE_LIMITER_INIT", False) and isinstance(limiter, Limiter):
        return limiter

    app.config["RATELIMIT_HEADERS_ENABLED"] = True

    limiter = Limiter(
        key_func=_client_ip,
        app=app,
        default_limits=["300/minute"],
        storage_uri="memory://",  # per-instance
        headers_enabled=True,
    )

    @limiter.request_filter
    def _health_skip():
        return request.path == "/health"

    @app.errorhandler(RateLimitExceeded)
    def _rate_limit_exceeded(_e):
        return jsonify(error_payload("Too Many Requests", 429)), 429

    reply_limit = limiter.limit(app.config.get("REPLY_RATE_LIMIT", "10/minute"))
    if REPLY_ENDPOINT in app.view_functions:
        app.view_functions[REPLY_ENDPOINT] = reply_limit(app.view_functions[REPLY_ENDPOINT])

    app.extensions["rate_limiter"] = limiter
    app.config["_RATE_LIMITER_INIT"] = True
    return limiter
