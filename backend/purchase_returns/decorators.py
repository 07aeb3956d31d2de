# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .context import FeatureFlags, Session
from .validation import ValidationError, parse_optional_id


def with_session(f):
    """
    Establish the caller context for a mutating route.

    Sets the following Flask g attributes:
    - g.session: Session built from X-User-Id (optional)
    - g.flags: FeatureFlags built from app config

    Authentication is handled in front of this service; the header only
    attributes the change to a user. Returns 400 if X-User-Id is not an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            user_id = parse_optional_id(request.headers.get("X-User-Id"), "X-User-Id")
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400

        g.session = Session(user_id=user_id)
        g.flags = FeatureFlags.from_config(current_app.config)

        return f(*args, **kwargs)

    return decorated_function
