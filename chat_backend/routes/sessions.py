# chat_backend/routes/sessions.py
# Flask Blueprint: session lifecycle (/api/v1/add-session, /api/v1/sessions/*).

from flask import Blueprint, current_app, jsonify

from ..observability import error_payload
from ..schemas import SessionSummary
from .chats import parse_id

sessions_bp = Blueprint("sessions", __name__)


@sessions_bp.route("/add-session", methods=["GET"])
def add_session_route():
    """Create a session owned by the default user."""
    session_id = current_app.extensions["chat_store"].add_session()
    current_app.logger.info("session.create", extra={"event": "session.create", "session_id": session_id})
    return jsonify({"sessionId": session_id}), 200


@sessions_bp.route("/sessions/<user_id>", methods=["POST"])
def create_session_route(user_id: str):
    uid = parse_id(user_id)
    if uid is None:
        return jsonify(error_payload("Invalid userId", 400)), 400

    try:
        session_id = current_app.extensions["chat_store"].add_session(uid)
    except ValueError:
        return jsonify(error_payload("User not found", 404)), 404

    current_app.logger.info(
        "session.create", extra={"event": "session.create", "session_id": session_id, "user_id": uid}
    )
    return jsonify({"sessionId": session_id}), 200


@sessions_bp.route("/sessions/<user_id>", methods=["GET"])
def list_sessions_route(user_id: str):
    uid = parse_id(user_id)
    if uid is None:
        return jsonify(error_payload("Invalid userId", 400)), 400

    try:
        rows = current_app.extensions["chat_store"].list_sessions(uid)
    except ValueError:
        return jsonify(error_payload("User not found", 404)), 404

    return jsonify({"sessions": [SessionSummary(**r).model_dump(mode="json") for r in rows]}), 200


@sessions_bp.route("/sessions/<user_id>/<session_id>", methods=["DELETE"])
def delete_session_route(user_id: str, session_id: str):
    """Delete a session (and, by cascade, its chats)."""
    uid, sid = parse_id(user_id), parse_id(session_id)
    if uid is None or sid is None:
        return jsonify(error_payload("Invalid userId or sessionId", 400)), 400

    if not current_app.extensions["chat_store"].delete_session(sid, user_id=uid):
        return jsonify(error_payload("Session not found", 404)), 404

    current_app.logger.info("session.delete", extra={"event": "session.delete", "session_id": sid})
    return ("", 204)
