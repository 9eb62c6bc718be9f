# chat_backend/config.py
# Environment-driven settings plus the Flask extension objects.
# Extensions are created unbound here and attached to an app in create_app().

import os

from dotenv import load_dotenv
from flask_bcrypt import Bcrypt
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import MetaData

load_dotenv()  # load .env for local dev

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
default_db_path = os.path.join(BASE_DIR, "instance", "chat.db")

DEFAULT_MODEL = "gpt-4"
INFERENCE_TIMEOUT = 60.0  # seconds; fixed per process, not per request

# Naming conventions for Alembic
naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=naming_convention)

db = SQLAlchemy(metadata=metadata)
migrate = Migrate()
bcrypt = Bcrypt()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def load_settings() -> dict:
    """Read process configuration from the environment."""
    db_uri = os.getenv("DATABASE_URI")
    if not db_uri:
        os.makedirs(os.path.dirname(default_db_path), exist_ok=True)
        db_uri = f"sqlite:///{default_db_path}"

    return {
        "SECRET_KEY": os.getenv("FLASK_SECRET_KEY", "dev"),
        "SQLALCHEMY_DATABASE_URI": db_uri,
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "OPENAI_API_KEY": os.getenv("OPENAI_API_KEY"),
        "OPENAI_MODEL": os.getenv("OPENAI_MODEL") or DEFAULT_MODEL,
        "INFERENCE_TIMEOUT": INFERENCE_TIMEOUT,
        "CHAT_CONTEXT_MAX_TURNS": max(0, _env_int("CHAT_CONTEXT_MAX_TURNS", 12)),
        "CHAT_SYSTEM_PROMPT": os.getenv("CHAT_SYSTEM_PROMPT") or None,
        "DEFAULT_USER_EMAIL": os.getenv("DEFAULT_USER_EMAIL", "anonymous@localhost"),
        "REPLY_RATE_LIMIT": os.getenv("REPLY_RATE_LIMIT", "10/minute;200/day"),
        "RATELIMIT_ENABLED": _env_bool("RATELIMIT_ENABLED", True),
        "FRONTEND_ORIGIN": os.getenv("FRONTEND_ORIGIN"),
        "PORT": _env_int("PORT", 3009),
        "AUTO_CREATE_TABLES": _env_bool("AUTO_CREATE_TABLES", False),
    }
