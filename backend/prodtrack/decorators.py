# Overview: Request decorators for API routes: caller identity and error-to-status mapping.

from functools import wraps

from flask import current_app, g, jsonify, request

from .extensions import db
from .validation import ConflictError, NotFoundError, ValidationError, require_actor as _normalize_actor

ACTOR_HEADER = "X-Actor-Email"


def require_actor(f):
    """
    Require the caller's identity on mutating routes.

    Sets g.actor to the lowercased email from the X-Actor-Email header.
    The identity is recorded on every ledger and transaction row; it is not
    authenticated here.

    Returns 401 if the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER)
        if not raw or not raw.strip():
            return jsonify({"error": f"{ACTOR_HEADER} header required"}), 401
        try:
            g.actor = _normalize_actor(raw)
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400
        return f(*args, **kwargs)

    return decorated_function


def json_errors(action: str):
    """
    Map service exceptions to JSON error responses and roll back the session.

    - NotFoundError -> 404
    - ValidationError -> 400
    - ConflictError -> 409
    - anything else -> 500, logged with the traceback
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except NotFoundError as e:
                db.session.rollback()
                return jsonify({"error": str(e)}), 404
            except ValidationError as e:
                db.session.rollback()
                return jsonify({"error": str(e)}), 400
            except ConflictError as e:
                db.session.rollback()
                return jsonify({"error": str(e), "conflict": True}), 409
            except Exception:
                db.session.rollback()
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": f"Failed to {action}"}), 500

        return decorated_function
    return decorator
