"""
JWT authentication helpers and middleware for the Flask API.
"""

from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import current_app, jsonify, request

from medqr import store
from medqr.access import store_guard
from medqr.config import JWT_ALGORITHM, TOKEN_EXPIRY_HOURS
from medqr.models import Identity


def generate_token(identity: Identity, secret_key: str) -> str:
    """Generate a JWT token for an authenticated user."""
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": identity.id,
        "role": identity.role.value,
        "iat": now,
        "exp": now + timedelta(hours=TOKEN_EXPIRY_HOURS),
    }
    return jwt.encode(payload, secret_key, algorithm=JWT_ALGORITHM)


def verify_token(token: str, secret_key: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        payload = jwt.decode(token, secret_key, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
    # QR access tokens are signed with the same key but are not sessions.
    if "type" in payload or not payload.get("user_id"):
        return None
    return payload


def token_required(f):
    """Decorator that resolves the caller's Identity from a Bearer token."""
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return jsonify({"success": False, "error": "unauthenticated",
                            "message": "No authorization token provided"}), 401

        parts = auth_header.split(" ")
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return jsonify({"success": False, "error": "unauthenticated",
                            "message": "Invalid authorization header format"}), 401
        token = parts[1]

        payload = verify_token(token, current_app.config["JWT_SECRET_KEY"])
        if not payload:
            return jsonify({"success": False, "error": "unauthenticated",
                            "message": "Invalid or expired token"}), 401

        with store_guard("resolve user"):
            identity = store.get_identity(current_app.config["DB_ENGINE"], payload["user_id"])
        if identity is None:
            return jsonify({"success": False, "error": "unauthenticated",
                            "message": "User not found. Please login again."}), 401

        request.identity = identity
        request.token = token
        return f(*args, **kwargs)

    return decorated
