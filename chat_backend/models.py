# chat_backend/models.py
from __future__ import annotations

# SQLAlchemy models for Users, Sessions & Chats.
# - Integer autoincrement ids.
# - A chat stores its whole message (role + content) as one JSON document.
# - FKs cascade on delete; for SQLite we enable PRAGMA foreign_keys.

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .config import db


class User(db.Model):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(254), nullable=False, unique=True)
    hash_password = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    sessions = relationship(
        "Session",
        back_populates="user",
        passive_deletes=True,
        order_by="Session.created_at.asc()",
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"


class Session(db.Model):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    user = relationship("User", back_populates="sessions")
    chats = relationship(
        "Chat",
        back_populates="session",
        passive_deletes=True,  # rely on DB cascade
        order_by="Chat.id.asc()",
    )

    def __repr__(self) -> str:
        return f"<Session id={self.id} user_id={self.user_id}>"


class Chat(db.Model):
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        Integer,
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    message = Column(JSON, nullable=False)  # {"role": ..., "content": str | [items]}
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    session = relationship("Session", back_populates="chats")

    def __repr__(self) -> str:
        return f"<Chat id={self.id} session_id={self.session_id}>"


# Timeline fetches are always per session, oldest first.
Index("ix_chats_session_created_at", Chat.session_id, Chat.created_at)


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite (no-op for other drivers)."""
    from sqlite3 import Connection as SQLite3Connection

    if isinstance(dbapi_connection, SQLite3Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
