# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


def require_actor(f):
    """
    Require an acting user id on every request that reaches the ledgers.

    Authentication happens upstream; the gateway forwards the authenticated
    user as the X-User-Id header. Sets g.actor_user_id.

    Returns 401 if the header is missing or not a positive integer.
    No authorization is performed here.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get("X-User-Id") or "").strip()

        if not raw:
            return jsonify({"error": "Authentication required"}), 401

        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": "Invalid X-User-Id header"}), 401

        g.actor_user_id = int(raw)

        return f(*args, **kwargs)

    return decorated_function
