# chat_backend: chat-session HTTP backend (Flask + SQLAlchemy + OpenAI Responses).

from .app import create_app, shutdown_app

__all__ = [create_app.__name__, shutdown_app.__name__]
