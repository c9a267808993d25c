"""Caller identity from the identity provider's bearer token."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from typing import Any

from sqyros.core.errors import AuthError


def _b64url_decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _decode_segment(segment: str) -> dict[str, Any]:
    try:
        value = json.loads(_b64url_decode(segment))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise AuthError("Invalid token") from e
    if not isinstance(value, dict):
        raise AuthError("Invalid token")
    return value


def decode_token(token: str, *, secret: str | None = None) -> dict[str, Any]:
    """Return the JWT payload.

    Without `secret` the payload is read as-is: the identity provider verifies
    signatures before tokens reach us. With `secret`, HS256 signatures are checked.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise AuthError("Invalid token")
    header_b64, payload_b64, signature_b64 = parts

    if secret:
        header = _decode_segment(header_b64)
        if header.get("alg") != "HS256":
            raise AuthError("Invalid token")
        expected = hmac.new(secret.encode(), f"{header_b64}.{payload_b64}".encode("ascii"), hashlib.sha256).digest()
        try:
            provided = _b64url_decode(signature_b64)
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise AuthError("Invalid token") from e
        if not hmac.compare_digest(expected, provided):
            raise AuthError("Invalid token")

    return _decode_segment(payload_b64)


def user_id_from_authorization(header: str | None, *, secret: str | None = None) -> str:
    """Resolve the `sub` claim of a `Bearer <jwt>` header, or raise AuthError (401)."""
    if not header:
        raise AuthError("Authorization header required")
    parts = header.strip().split(None, 1)
    if len(parts) == 2:
        scheme, token = parts
        if scheme.lower() != "bearer":
            raise AuthError("Invalid token")
    else:
        token = parts[0] if parts else ""
    payload = decode_token(token, secret=secret)
    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise AuthError("Invalid token")
    return sub
