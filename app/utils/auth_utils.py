import datetime
import logging
from functools import wraps

import jwt
from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def _encode(payload):
    return jwt.encode(payload, current_app.config["SECRET_KEY"], algorithm=ALGORITHM)


def create_access_token(user):
    payload = {
        "user_id": user.id,
        "email": user.email,
        "role": user.role,
        "type": "access",
        "exp": datetime.datetime.now(datetime.timezone.utc)
        + datetime.timedelta(minutes=current_app.config.get("ACCESS_TOKEN_MINUTES", 60)),
    }
    return _encode(payload)


def create_refresh_token(user):
    payload = {
        "user_id": user.id,
        "type": "refresh",
        "exp": datetime.datetime.now(datetime.timezone.utc)
        + datetime.timedelta(days=current_app.config.get("REFRESH_TOKEN_DAYS", 7)),
    }
    return _encode(payload)


def decode_token(token, expected_type="access"):
    """Decode and verify a token; raises jwt.InvalidTokenError on failure."""
    payload = jwt.decode(
        token, current_app.config["SECRET_KEY"], algorithms=[ALGORITHM]
    )
    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected a {expected_type} token")
    return payload


def _unauthorized(message):
    return jsonify({"status": "error", "message": message}), 401


def token_required(roles=None):
    """
    Require a valid bearer access token; optionally restrict to roles.
    The decoded payload is available as ``g.current_user``.
    """

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            header = request.headers.get("Authorization", "")
            if not header.startswith("Bearer "):
                return _unauthorized("Missing bearer token")

            token = header[len("Bearer "):].strip()
            try:
                payload = decode_token(token)
            except jwt.ExpiredSignatureError:
                return _unauthorized("Token expired")
            except jwt.InvalidTokenError as e:
                logger.info("Rejected token: %s", e)
                return _unauthorized("Invalid token")

            if roles and payload.get("role") not in roles:
                return (
                    jsonify({"status": "error", "message": "Insufficient permissions"}),
                    403,
                )

            g.current_user = payload
            return view(*args, **kwargs)

        return wrapper

    return decorator
