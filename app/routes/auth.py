import logging

import bcrypt
import jwt
from flask import Blueprint, g, jsonify, request
from sqlalchemy import select

from ..extensions import db
from ..models import AuthUser
from ..utils.auth_utils import (
    create_access_token,
    create_refresh_token,
    decode_token,
    token_required,
)

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _token_response(user, message):
    return jsonify({
        "status": "success",
        "message": message,
        "token": create_access_token(user),
        "refresh_token": create_refresh_token(user),
        "user": {"id": user.id, "email": user.email, "role": user.role},
    }), 200


@auth_bp.route("/login", methods=["POST"])
def login_user():
    """
    Exchange email and password for an access token and a refresh token
    ---
    tags:
      - Authentication
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [email, password]
          properties:
            email:
              type: string
            password:
              type: string
    responses:
      200:
        description: Login successful
      400:
        description: Email and password required
      401:
        description: Invalid credentials
    """
    try:
        data = request.get_json(force=True, silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not email or not password:
            return jsonify({
                "status": "error",
                "message": "Email and password required"
            }), 400

        user = db.session.scalar(select(AuthUser).where(AuthUser.email == email))
        if not user or not user.password_hash:
            return jsonify({
                "status": "error",
                "message": "Invalid credentials"
            }), 401

        stored_hash = user.password_hash
        if isinstance(stored_hash, str):
            stored_hash = stored_hash.encode("utf-8")

        if not bcrypt.checkpw(password.encode("utf-8"), stored_hash):
            return jsonify({
                "status": "error",
                "message": "Invalid credentials"
            }), 401

        logger.info("User %s logged in", user.id)
        return _token_response(user, "Login successful")

    except Exception as e:
        logger.exception("Login failed")
        return jsonify({
            "status": "error",
            "message": "Internal server error",
            "details": str(e)
        }), 500


@auth_bp.route("/refresh", methods=["POST"])
def refresh_token():
    """
    Issue a fresh token pair from a refresh token
    ---
    tags:
      - Authentication
    responses:
      200:
        description: New token pair
      401:
        description: Refresh token missing, invalid or expired
    """
    data = request.get_json(force=True, silent=True) or {}
    token = data.get("refresh_token")
    if not token:
        return jsonify({"status": "error", "message": "refresh_token is required"}), 401

    try:
        payload = decode_token(token, expected_type="refresh")
    except jwt.InvalidTokenError:
        return jsonify({"status": "error", "message": "Invalid refresh token"}), 401

    user = db.session.get(AuthUser, payload.get("user_id"))
    if not user:
        return jsonify({"status": "error", "message": "Invalid refresh token"}), 401

    return _token_response(user, "Token refreshed")


@auth_bp.route("/me", methods=["GET"])
@token_required()
def get_current_user():
    user = db.session.get(AuthUser, g.current_user["user_id"])
    if not user:
        return jsonify({"status": "error", "message": "Not authenticated"}), 401

    response = {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "staff_id": user.staff.id if user.staff else None,
        "name": user.staff.name if user.staff else None,
    }
    return jsonify(response), 200
