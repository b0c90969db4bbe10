"""
JWT Auth Middleware — parses the Bearer token, sets g.current_*.

    Authorization: Bearer <token>  →  g.current_user_id (int), g.current_role

Invalid or expired tokens leave the identity unset; protected views call
``require_auth()`` which raises ``UnauthorizedError(authenticated=False)``.
"""

import logging

import jwt as pyjwt
from flask import g, request

from pmcrms.core.exceptions import UnauthorizedError
from pmcrms.services.jwt_service import decode_access_token
from pmcrms.services.stage_transitions import Actor

logger = logging.getLogger(__name__)

# Paths that never carry an identity
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/api/v1/payments/callback",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user_id = None
        g.current_role = None

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
            g.current_user_id = int(payload["sub"])
            g.current_role = payload.get("role")
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired token on %s", path)
        except (pyjwt.InvalidTokenError, KeyError, ValueError):
            logger.warning("Invalid token on %s", path)


def require_auth() -> int:
    """Current user id; ``UnauthorizedError`` (401) when no valid token was sent."""
    user_id = getattr(g, "current_user_id", None)
    if user_id is None:
        raise UnauthorizedError("Authentication required", authenticated=False)
    return user_id


def current_actor() -> Actor:
    return Actor(user_id=require_auth(), role=getattr(g, "current_role", None))
