# chat_backend/app.py
# Application factory: builds the Flask app, its DB handle, the chat store and
# the inference client once, and exposes the /api/v1 routes.

import os
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify
from flask_cors import CORS

from . import models  # noqa: F401  (registers tables on the metadata)
from .config import bcrypt, db, load_settings, migrate
from .observability import (
    init_logging,
    register_error_handlers,
    register_latency_logging,
    register_request_id,
)
from .ratelimit import init_rate_limiter
from .routes.chats import chats_bp
from .routes.sessions import sessions_bp
from .routes.users import users_bp
from .security import register_security_headers
from .services.chat_store import ChatStore
from .services.openai_client import InferenceClient, build_inference_client

API_PREFIX = "/api/v1"


def create_app(
    overrides: Optional[Dict[str, Any]] = None,
    *,
    inference_client: Optional[InferenceClient] = None,
) -> Flask:
    """Build a fully wired app. Tests pass config overrides and a fake client."""
    app = Flask(__name__)
    app.config.update(load_settings())
    if overrides:
        app.config.update(overrides)

    # ---------------------- Cross-cutting initialization ----------------------
    init_logging(app)
    register_request_id(app)
    register_latency_logging(app)
    register_error_handlers(app)
    register_security_headers(app)

    origins = ["http://localhost:5173", "http://127.0.0.1:5173"]
    if app.config.get("FRONTEND_ORIGIN"):
        origins.append(app.config["FRONTEND_ORIGIN"])
    CORS(app, resources={f"{API_PREFIX}/*": {"origins": origins}})

    # ---------------------- Storage ----------------------
    db.init_app(app)
    migrate.init_app(app, db, directory=_migrations_dir())
    bcrypt.init_app(app)

    if app.config.get("AUTO_CREATE_TABLES", False):
        with app.app_context():
            db.create_all()

    # ---------------------- Services ----------------------
    if inference_client is None:
        inference_client = build_inference_client(
            app.config.get("OPENAI_API_KEY"),
            app.logger,
            model=app.config.get("OPENAI_MODEL"),
            timeout=app.config.get("INFERENCE_TIMEOUT"),
        )
    app.extensions["inference_client"] = inference_client
    app.extensions["chat_store"] = ChatStore(
        db, bcrypt, default_user_email=app.config["DEFAULT_USER_EMAIL"]
    )

    # ---------------------- Routes ----------------------
    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"}), 200

    @app.route(f"{API_PREFIX}/hello", methods=["GET"])
    def hello():
        return Response("Hello World", mimetype="text/plain")

    app.register_blueprint(sessions_bp, url_prefix=API_PREFIX)
    app.register_blueprint(chats_bp, url_prefix=API_PREFIX)
    app.register_blueprint(users_bp, url_prefix=API_PREFIX)

    # Initialize rate limiter AFTER routes are registered
    init_rate_limiter(app)

    app.logger.info(
        "app.start",
        extra={"event": "app.start", "model": inference_client.model},
    )
    return app


def shutdown_app(app: Flask) -> None:
    """Release the inference client and pooled DB connections."""
    client = app.extensions.get("inference_client")
    if client is not None:
        client.close()
    with app.app_context():
        db.engine.dispose()
    app.logger.info("app.stop", extra={"event": "app.stop"})


def _migrations_dir() -> str:
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), "migrations")
