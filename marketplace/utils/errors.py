"""Standardised API error responses.

Usage
-----
    from marketplace.utils.errors import api_error, E

    return api_error(E.VALIDATION, "title is required")
    return api_error(E.INVALID_STATE, "Project is closed", details={"actual": "completed"})

Business failures raised by the services are translated once, app-wide, by
the handlers installed with :func:`register_error_handlers`.
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from marketplace.core.exceptions import (
    AlreadyAcceptedError,
    EngagementError,
    InvalidStateError,
    NegotiationLimitExceededError,
    NotFoundError,
    StaleStateError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 422
    VALIDATION = ValidationError.code

    # Not-found – HTTP 404
    NOT_FOUND = NotFoundError.code

    # Identity – HTTP 401 / 403
    UNAUTHORIZED = UnauthorizedError.code

    # Conflict – HTTP 409
    INVALID_STATE = InvalidStateError.code
    STALE_STATE = StaleStateError.code
    NEGOTIATION_LIMIT = NegotiationLimitExceededError.code
    ALREADY_ACCEPTED = AlreadyAcceptedError.code

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION: 422,
    E.NOT_FOUND: 404,
    E.UNAUTHORIZED: 403,
    E.INVALID_STATE: 409,
    E.STALE_STATE: 409,
    E.NEGOTIATION_LIMIT: 409,
    E.ALREADY_ACCEPTED: 409,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (expected/actual state, limits, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)
    body: dict = {
        "error": message,
        "code": code,
        "details": details or {},
    }
    return jsonify(body), http_status


def status_for(error: EngagementError) -> int:
    """HTTP status for a service exception."""
    if isinstance(error, UnauthorizedError) and error.actor_id is None:
        return 401
    return _DEFAULT_STATUS.get(error.code, 400)


def register_error_handlers(app):
    """Install app-wide handlers for engine exceptions and HTTP errors."""

    @app.errorhandler(EngagementError)
    def _handle_engagement_error(error: EngagementError):
        status = status_for(error)
        log = logger.info if status < 500 else logger.error
        log(
            "%s %s → %s %s: %s",
            request.method, request.path, status, error.code, error.message,
            extra={"status": status},
        )
        return api_error(error.code, error.message, status=status, details=error.to_dict())

    @app.errorhandler(HTTPException)
    def _handle_http_exception(error: HTTPException):
        return api_error(
            f"ERR_HTTP_{error.code}",
            error.description or error.name,
            status=error.code,
            details={"path": request.path},
        )

    @app.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        logger.exception("Unexpected error endpoint=%s", request.endpoint)
        return api_error(E.INTERNAL, "Internal server error", status=500)
