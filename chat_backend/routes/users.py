# chat_backend/routes/users.py
# Flask Blueprint: /api/v1/users: account creation only.

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from ..observability import error_payload, validation_details
from ..schemas import CreateUserRequest

users_bp = Blueprint("users", __name__)


@users_bp.route("/users", methods=["POST"])
def create_user_route():
    data = request.get_json(silent=True) or {}
    try:
        req = CreateUserRequest.model_validate(data)
    except ValidationError as ve:
        return jsonify(error_payload("Validation error", 400, details=validation_details(ve))), 400

    try:
        user = current_app.extensions["chat_store"].create_user(req.email, req.password)
    except ValueError:
        return jsonify(error_payload("Email already registered", 409)), 409

    current_app.logger.info("user.create", extra={"event": "user.create", "user_id": user.id})
    return jsonify({"userId": user.id}), 201
