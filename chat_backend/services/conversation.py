# chat_backend/services/conversation.py
# Glue between the store and the inference client: load a session's history,
# ask the model for a reply, persist what comes back.

from __future__ import annotations

import logging
from typing import List, Optional

from ..schemas import Message
from .chat_store import ChatStore
from .openai_client import InferenceClient


class SessionNotFoundError(LookupError):
    pass


class EmptyHistoryError(ValueError):
    """The session holds no message with content to reply to."""


def build_context(
    history: List[Message], *, system_prompt: Optional[str] = None, max_turns: int = 12
) -> List[Message]:
    """Window the history to the last max_turns exchanges, system prompt first."""
    window = history[-(max_turns * 2):] if max_turns > 0 else []
    msgs: List[Message] = []
    if system_prompt:
        msgs.append(Message(role="system", content=system_prompt))
    msgs.extend(m for m in window if m.has_content())
    return msgs


def reply_to_session(
    store: ChatStore,
    inference: InferenceClient,
    session_id: int,
    *,
    system_prompt: Optional[str] = None,
    max_turns: int = 12,
    logger: Optional[logging.Logger] = None,
) -> List[dict]:
    """Run one inference turn for a session and store the reply chats.

    Raises SessionNotFoundError / EmptyHistoryError before any upstream call;
    inference failures propagate unchanged.
    """
    if store.get_session(session_id) is None:
        raise SessionNotFoundError(session_id)

    history = store.get_messages(session_id)
    if not any(m.has_content() for m in history):
        raise EmptyHistoryError(session_id)

    context = build_context(history, system_prompt=system_prompt, max_turns=max(1, max_turns))
    replies = inference.infer(context)

    chat_ids = [store.add_chat(session_id, reply) for reply in replies]
    if logger:
        logger.info(
            "session.reply",
            extra={"event": "session.reply", "session_id": session_id, "chats": len(chat_ids)},
        )
    stored = {c["id"]: c for c in store.get_chats(session_id)}
    return [stored[cid] for cid in chat_ids]
