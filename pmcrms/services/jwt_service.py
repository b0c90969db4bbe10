"""
JWT Service — access token generation and verification.

Access token:        1 hour (configurable via JWT_ACCESS_EXPIRES)
Set-password token:  72 hours (JWT_SET_PASSWORD_EXPIRES), type "set_password";
                     bound to the password hash it was issued against, so it
                     stops working once a password has been set with it
Algorithm:           HS256

Token payload:
{
    "sub": "<user_id>",
    "role": "JuniorArchitect",
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app


# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 3600      # 1 hour
DEFAULT_SET_PASSWORD_EXPIRES = 72 * 3600
ALGORITHM = "HS256"


def _get_secret():
    """Get the JWT secret key from app config."""
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_access_token(user_id: int, role: str) -> str:
    """Generate a short-lived access token."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=_get_access_expires()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def token_response(user) -> dict:
    """Standard login response body for *user*."""
    return {
        "access_token": generate_access_token(user.id, user.role),
        "token_type": "Bearer",
        "expires_in": _get_access_expires(),
        "user": user.to_dict(),
    }


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_access_token(token: str) -> dict:
    """
    Decode and verify an access token.

    Returns the payload dict on success.
    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, etc.)
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise jwt.InvalidTokenError(f"Expected access token, got {payload.get('type')}")
    return payload


# ═══════════════════════════════════════════════════════════════
# Set-password tokens (officer invitation)
# ═══════════════════════════════════════════════════════════════
def _password_fingerprint(password_hash: str | None) -> str:
    return hashlib.sha256((password_hash or "").encode("utf-8")).hexdigest()[:16]


def generate_set_password_token(user) -> str:
    """Token e-mailed with an invitation; valid until used or expired."""
    now = datetime.now(timezone.utc)
    expires = current_app.config.get("JWT_SET_PASSWORD_EXPIRES", DEFAULT_SET_PASSWORD_EXPIRES)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "type": "set_password",
        "pwd": _password_fingerprint(user.password_hash),
        "iat": now,
        "exp": now + timedelta(seconds=expires),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def verify_set_password_token(token: str, user) -> bool:
    """True when *token* is a live set-password token issued for *user*."""
    try:
        payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    except jwt.InvalidTokenError:
        return False
    return (
        payload.get("type") == "set_password"
        and payload.get("sub") == str(user.id)
        and payload.get("email") == user.email
        and payload.get("pwd") == _password_fingerprint(user.password_hash)
    )
