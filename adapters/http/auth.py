"""
Bearer credential verification for the trigger endpoint.

Two kinds of caller:
- the scheduler, presenting the shared service token
- an end user, presenting an HS256 JWT signed with the configured secret
"""

import base64
import hashlib
import hmac
import json
import time

from handoff_patterns.config import AuthConfig
from handoff_patterns.domain.models import Caller
from handoff_patterns.errors import AuthenticationError


def _b64url_decode(value: str) -> bytes:
    pad = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + pad)


def _verify_user_jwt(token: str, *, secret: str, now: int | None = None) -> str:
    """Return the `sub` claim of a valid token."""
    parts = token.split(".")
    if len(parts) != 3:
        raise AuthenticationError("Invalid auth token format")

    signing_input = f"{parts[0]}.{parts[1]}".encode()
    expected_sig = hmac.new(secret.encode("utf-8"), signing_input, hashlib.sha256).digest()
    try:
        got_sig = _b64url_decode(parts[2])
    except ValueError as exc:
        raise AuthenticationError("Invalid auth token signature encoding") from exc
    if not hmac.compare_digest(expected_sig, got_sig):
        raise AuthenticationError("Invalid auth token signature")

    try:
        header = json.loads(_b64url_decode(parts[0]).decode("utf-8"))
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except ValueError as exc:
        raise AuthenticationError("Invalid auth token payload") from exc

    if not isinstance(header, dict) or header.get("alg") != "HS256":
        raise AuthenticationError("Unsupported auth token algorithm")
    if not isinstance(payload, dict):
        raise AuthenticationError("Invalid auth token payload")

    now = int(time.time()) if now is None else now
    exp = payload.get("exp")
    if not isinstance(exp, int) or now >= exp:
        raise AuthenticationError("Auth token expired")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Auth token missing subject claim")
    return str(user_id)


def verify_bearer_token(authorization: str | None, auth: AuthConfig) -> Caller:
    """Resolve the caller behind an `Authorization: Bearer ...` header."""
    if not authorization:
        raise AuthenticationError("Missing authorization header")

    raw = authorization.strip()
    if not raw.lower().startswith("bearer "):
        raise AuthenticationError("Missing authorization header")
    token = raw[7:].strip()
    if not token:
        raise AuthenticationError("Missing authorization header")

    if hmac.compare_digest(token.encode("utf-8"), auth.service_token.encode("utf-8")):
        return Caller.scheduled()

    return Caller.user(_verify_user_jwt(token, secret=auth.jwt_secret))
