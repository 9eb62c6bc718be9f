# chat_backend/routes/chats.py
# Flask Blueprint: /api/v1/chats: append chats, read history, ask the model.

import re

from flask import Blueprint, current_app, g, jsonify, request
from pydantic import ValidationError

from ..observability import error_payload, validation_details
from ..schemas import ChatRecord, CreateChatRequest
from ..services.conversation import EmptyHistoryError, SessionNotFoundError, reply_to_session

chats_bp = Blueprint("chats", __name__)

MISSING_FIELDS = "Missing required fields: sessionId, role, or content"
_ID_RE = re.compile(r"-?[0-9]+")


def parse_id(raw: str):
    """Path ids must be plain ASCII integers; anything else is a client error."""
    if not isinstance(raw, str) or not _ID_RE.fullmatch(raw):
        return None
    return int(raw)


def _missing(value) -> bool:
    return value is None or value == "" or value == []


def chat_json(c: dict) -> dict:
    return ChatRecord(**c).model_dump(mode="json")


@chats_bp.route("/chats", methods=["POST"])
def create_chat_route():
    """Store one chat message in a session."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or any(
        _missing(data.get(k)) for k in ("sessionId", "role", "content")
    ):
        return jsonify(error_payload(MISSING_FIELDS, 400)), 400

    try:
        req = CreateChatRequest.model_validate(data)
    except ValidationError as ve:
        return jsonify(error_payload("Validation error", 400, details=validation_details(ve))), 400

    store = current_app.extensions["chat_store"]
    try:
        chat_id = store.add_chat(req.sessionId, req.to_message())
    except ValueError:
        return jsonify(error_payload("Session not found", 404)), 404

    current_app.logger.info(
        "chat.create",
        extra={"event": "chat.create", "session_id": req.sessionId, "role": req.role},
    )
    return jsonify({"chatId": chat_id}), 200


@chats_bp.route("/chats/<session_id>", methods=["GET"])
def list_chats_route(session_id: str):
    """Chats for a session, oldest first."""
    sid = parse_id(session_id)
    if sid is None:
        return jsonify(error_payload("Invalid sessionId", 400)), 400

    chats = current_app.extensions["chat_store"].get_chats(sid)
    return jsonify([chat_json(c) for c in chats]), 200


@chats_bp.route("/chats/<session_id>/reply", methods=["POST"])
def reply_to_session_route(session_id: str):
    """Send the session history to the model and store its reply."""
    sid = parse_id(session_id)
    if sid is None:
        return jsonify(error_payload("Invalid sessionId", 400)), 400

    current_app.logger.info(
        "session.reply.start",
        extra={"event": "session.reply.start", "session_id": sid, "request_id": getattr(g, "request_id", None)},
    )
    try:
        chats = reply_to_session(
            current_app.extensions["chat_store"],
            current_app.extensions["inference_client"],
            sid,
            system_prompt=current_app.config.get("CHAT_SYSTEM_PROMPT"),
            max_turns=current_app.config.get("CHAT_CONTEXT_MAX_TURNS", 12),
            logger=current_app.logger,
        )
    except SessionNotFoundError:
        return jsonify(error_payload("Session not found", 404)), 404
    except EmptyHistoryError:
        return jsonify(error_payload("Session has no messages to reply to", 400)), 400

    return jsonify({"chats": [chat_json(c) for c in chats]}), 200
