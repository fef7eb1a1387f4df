"""
JWT Auth Middleware - Parses JWT from Authorization header, sets g.actor.

Requests without a token (or with an invalid one) leave ``g.actor = None``;
whether that is acceptable is decided by ``marketplace.auth.current_actor``
at the point where an endpoint actually needs an identity.
"""

import logging

import jwt as pyjwt
from flask import g, request

from marketplace.auth import ROLES, Actor
from marketplace.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.actor = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Invalid access token on %s: %s", path, exc)
            return

        role = payload.get("role")
        try:
            user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            logger.warning("Access token with non-numeric subject on %s", path)
            return
        if role not in ROLES:
            logger.warning("Access token with unknown role '%s' on %s", role, path)
            return

        g.actor = Actor(id=user_id, role=role)
