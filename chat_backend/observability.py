# chat_backend/observability.py
# Cross-cutting concerns: JSON logging, request IDs, latency logging, error JSON for /api/*

import sys
import time
import logging
from uuid import uuid4
from typing import Any, Dict, Optional

from flask import g, request, jsonify
from werkzeug.exceptions import HTTPException
from pydantic import ValidationError
from pythonjsonlogger.json import JsonFormatter

from .schemas import ErrorResponse
from .services.openai_client import (
    EmptyResponseError,
    IncompleteOutputItemError,
    IncompleteResponseError,
    InferenceError,
    InferenceTimeoutError,
    InvalidCredentialsError,
    InvalidModelError,
    MalformedResponseError,
    ServiceUnavailableError,
    TokenLimitExceededError,
    UnknownInferenceError,
    UpstreamError,
)

# HTTP status returned to our own clients for each inference failure.
# Upstream auth/model problems are server-side misconfiguration, hence 502.
INFERENCE_HTTP_STATUS = {
    InvalidCredentialsError: 502,
    ServiceUnavailableError: 503,
    InferenceTimeoutError: 504,
    TokenLimitExceededError: 413,
    InvalidModelError: 502,
    UpstreamError: 502,
    IncompleteResponseError: 502,
    IncompleteOutputItemError: 502,
    MalformedResponseError: 502,
    EmptyResponseError: 502,
    UnknownInferenceError: 500,
}


def inference_http_status(err: InferenceError) -> int:
    for cls in type(err).__mro__:
        if cls in INFERENCE_HTTP_STATUS:
            return INFERENCE_HTTP_STATUS[cls]
    return 502


def error_payload(message: str, code: int, **extra: Any) -> Dict[str, Any]:
    """Unified error body for every /api surface."""
    body = ErrorResponse(
        error=message,
        code=code,
        request_id=getattr(g, "request_id", None),
        **extra,
    )
    return body.model_dump(exclude={k for k in ("error_code", "details") if getattr(body, k) is None})


def validation_details(exc: ValidationError):
    """
    Pydantic v2 can include Exception instances in error 'ctx', which Flask's
    JSON encoder cannot serialize. Convert any BaseException values to strings.
    """
    details = []
    for err in exc.errors():
        ctx = err.get("ctx")
        if isinstance(ctx, dict):
            err = err.copy()
            err["ctx"] = {
                k: (str(v) if isinstance(v, BaseException) else v) for k, v in ctx.items()
            }
        err.pop("url", None)
        details.append(err)
    return details


def _json_formatter() -> logging.Formatter:
    return JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s "
        "%(request_id)s %(method)s %(path)s %(status)s %(latency_ms)s "
        "%(remote_ip)s %(user_agent)s %(event)s %(model)s %(error_code)s "
        "%(input_tokens)s %(output_tokens)s %(total_tokens)s"
    )


def init_logging(app, level: Optional[int] = None) -> None:
    if app.config.get("_OBS_LOGGING_INIT", False):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_json_formatter())
    app.logger.handlers.clear()
    app.logger.addHandler(handler)
    app.logger.setLevel(level or logging.INFO)
    app.logger.propagate = False
    app.config["_OBS_LOGGING_INIT"] = True


def register_request_id(app) -> None:
    if app.config.get("_OBS_REQID_INIT", False):
        return

    @app.before_request
    def _before_request():
        g.request_id = request.headers.get("X-Request-ID") or str(uuid4())
        g._start_time = time.monotonic()

    @app.after_request
    def _after_request(resp):
        resp.headers["X-Request-ID"] = getattr(g, "request_id", "")
        return resp

    app.config["_OBS_REQID_INIT"] = True


def register_latency_logging(app) -> None:
    if app.config.get("_OBS_LATENCY_INIT", False):
        return

    @app.after_request
    def _access_log(resp):
        start = getattr(g, "_start_time", None)
        latency_ms = int((time.monotonic() - start) * 1000) if start else None
        record: Dict[str, Any] = {
            "request_id": getattr(g, "request_id", None),
            "method": request.method,
            "path": request.path,
            "status": resp.status_code,
            "latency_ms": latency_ms,
            "remote_ip": request.headers.get("X-Forwarded-For", request.remote_addr),
            "user_agent": request.user_agent.string if request.user_agent else None,
            "event": "http.access",
        }
        app.logger.info("http.access", extra=record)
        return resp

    app.config["_OBS_LATENCY_INIT"] = True


def register_error_handlers(app) -> None:
    if app.config.get("_OBS_ERRORS_INIT", False):
        return

    @app.errorhandler(ValidationError)
    def _validation_error(e: ValidationError):
        payload = error_payload("Validation error", 400, details=validation_details(e))
        app.logger.warning("http.error", extra={"event": "http.error", "status": 400})
        return jsonify(payload), 400

    @app.errorhandler(InferenceError)
    def _inference_error(e: InferenceError):
        status = inference_http_status(e)
        payload = error_payload(e.message, status, error_code=e.code)
        app.logger.warning(
            "inference.error",
            extra={"event": "inference.error", "status": status, "error_code": e.code},
        )
        return jsonify(payload), status

    @app.errorhandler(HTTPException)
    def _http_exception(e: HTTPException):
        if not request.path.startswith("/api"):
            return e
        payload = error_payload(e.description or e.name, e.code)
        app.logger.warning("http.error", extra={"event": "http.error", "status": e.code})
        return jsonify(payload), e.code

    @app.errorhandler(Exception)
    def _unhandled_exception(e: Exception):
        payload = error_payload("Internal server error", 500)
        app.logger.error("http.exception", exc_info=True, extra={"event": "http.exception", "status": 500})
        return jsonify(payload), 500

    app.config["_OBS_ERRORS_INIT"] = True
