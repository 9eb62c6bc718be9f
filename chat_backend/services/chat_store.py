# chat_backend/services/chat_store.py
# Repository layer for User, Session & Chat rows.
# Routes receive a ChatStore instance from app.extensions and never touch the
# ORM directly; JSON/DTO mapping happens at the edge.

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError

from ..models import Chat, Session, User
from ..schemas import Message, validate_message


def _utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC datetimes for consistent JSON output."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _load_message(chat: Chat) -> Message:
    # A stored row that no longer validates is a server-side fault.
    try:
        return validate_message(chat.message)
    except ValidationError as exc:
        raise RuntimeError(f"corrupt_chat:{chat.id}") from exc


class ChatStore:
    """Create/read access to users, sessions and chats.

    Each public method is one logical operation with a single commit.
    """

    def __init__(self, db, bcrypt, *, default_user_email: str = "anonymous@localhost") -> None:
        self._db = db
        self._bcrypt = bcrypt
        self._default_user_email = default_user_email.strip().lower()

    # ------------------------------ Users ----------------------------------

    def create_user(self, email: str, password: str) -> User:
        email = email.strip().lower()
        if self._db.session.query(User.id).filter(User.email == email).first():
            raise ValueError("email_taken")

        hashed = self._bcrypt.generate_password_hash(password).decode("utf-8")
        user = User(email=email, hash_password=hashed)
        self._db.session.add(user)
        self._db.session.commit()
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        return self._db.session.get(User, user_id)

    def get_or_create_default_user(self) -> User:
        user = self._db.session.query(User).filter(User.email == self._default_user_email).first()
        if user:
            return user
        # Random password: the default owner can never log in.
        return self.create_user(self._default_user_email, secrets.token_urlsafe(32))

    # ------------------------------ Sessions -------------------------------

    def add_session(self, user_id: Optional[int] = None) -> int:
        if user_id is None:
            user_id = self.get_or_create_default_user().id
        elif self.get_user(user_id) is None:
            raise ValueError("user_not_found")

        s = Session(user_id=user_id)
        self._db.session.add(s)
        self._db.session.commit()
        return s.id

    def get_session(self, session_id: int) -> Optional[Session]:
        return self._db.session.get(Session, session_id)

    def list_sessions(self, user_id: int) -> List[dict]:
        """Sessions owned by a user, most recently updated first."""
        if self.get_user(user_id) is None:
            raise ValueError("user_not_found")

        rows = (
            self._db.session.query(Session)
            .filter(Session.user_id == user_id)
            .order_by(Session.updated_at.desc(), Session.id.desc())
            .all()
        )
        return [
            {
                "id": s.id,
                "user_id": s.user_id,
                "created_at": _utc(s.created_at),
                "updated_at": _utc(s.updated_at),
            }
            for s in rows
        ]

    def delete_session(self, session_id: int, user_id: Optional[int] = None) -> bool:
        s = self._db.session.get(Session, session_id)
        if not s or (user_id is not None and s.user_id != user_id):
            return False
        self._db.session.delete(s)
        self._db.session.commit()
        return True

    # ------------------------------ Chats ----------------------------------

    def add_chat(self, session_id: int, message: Message) -> int:
        s = self._db.session.get(Session, session_id)
        if not s:
            raise ValueError("session_not_found")

        chat = Chat(session_id=session_id, message=message.model_dump(mode="json"))
        self._db.session.add(chat)

        # Touch parent updated_at (onupdate only fires on column changes)
        s.updated_at = self._db.func.now()

        self._db.session.commit()
        return chat.id

    def get_chats(self, session_id: int) -> List[dict]:
        chats = (
            self._db.session.query(Chat)
            .filter(Chat.session_id == session_id)
            .order_by(Chat.created_at.asc(), Chat.id.asc())
            .all()
        )
        out: List[dict] = []
        for c in chats:
            message = _load_message(c)
            out.append(
                {
                    "id": c.id,
                    "session_id": c.session_id,
                    "role": message.role,
                    "content": message.model_dump(mode="json")["content"],
                    "created_at": _utc(c.created_at),
                }
            )
        return out

    def get_messages(self, session_id: int) -> List[Message]:
        """Conversation history as Messages, oldest first."""
        chats = (
            self._db.session.query(Chat)
            .filter(Chat.session_id == session_id)
            .order_by(Chat.created_at.asc(), Chat.id.asc())
            .all()
        )
        return [_load_message(c) for c in chats]
