from __future__ import annotations
from functools import wraps
from flask import current_app, request, g

from services.errors import Unauthorized


def get_auth_service():
    return current_app.extensions["auth_service"]


def jwt_required():
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            auth = request.headers.get("Authorization", "")
            if not auth.startswith("Bearer "):
                raise Unauthorized("Authorization header is missing or is not Bearer type.")
            token = auth.split(" ", 1)[1].strip()
            if not token:
                raise Unauthorized("Access token is missing.")

            claims = get_auth_service().verify_access_token(token)
            g.current_user_id = claims.subject_id
            g.current_username = claims.username
            return fn(*args, **kwargs)

        return wrapper

    return decorator
