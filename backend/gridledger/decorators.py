# Overview: Request helpers for API routes; acting user, ledger context and write-envelope responses.

from functools import wraps
from flask import current_app, g, jsonify, request

from .services.concurrency import BUSY, ERROR, MALFORMED, NOT_FOUND, UPSTREAM, WriteResult
from .services.journal_service import EMPTY
from .services.record_service import auth_status


USER_HEADER = "X-User-Email"

REASON_STATUS = {
    BUSY: 503,
    MALFORMED: 400,
    NOT_FOUND: 404,
    UPSTREAM: 502,
    ERROR: 500,
    # "nothing to export" is a normal answer
    EMPTY: 200,
}


def current_context():
    """The LedgerContext built once by create_app()."""
    return current_app.extensions["gridledger"]


def with_user(f):
    """
    Resolve the acting user from the X-User-Email header.

    Sets:
    - g.user_email: lower-cased e-mail ("" when the header is absent)
    - g.is_admin: True when the e-mail is listed in ADMIN_USERS
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        status = auth_status(current_context(), request.headers.get(USER_HEADER))
        g.user_email = status["email"] if status["email"] != "unknown" else ""
        g.is_admin = status["is_admin"]
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Reject callers not listed in ADMIN_USERS (403). Use after @with_user."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not getattr(g, "is_admin", False):
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated_function


def envelope_response(result: WriteResult):
    """Serialize a WriteResult with the HTTP status its reason maps to."""
    if result.success:
        return jsonify(result.to_dict()), 200
    return jsonify(result.to_dict()), REASON_STATUS.get(result.reason, 500)


def json_body():
    """Request JSON, or None when the body is missing or not JSON."""
    return request.get_json(silent=True)
