"""Password hashing and JWT helpers."""
from __future__ import annotations

import base64
import hashlib
import hmac
import os
from datetime import timedelta
from typing import Any, Dict

import jwt

from config import settings
from loan import utcnow
from member import Member

_HASH_SCHEME = "pbkdf2_sha256"


class TokenError(Exception):
    """Raised when a bearer token is missing, expired or forged."""


def hash_password(password: str, iterations: int | None = None) -> str:
    """Return ``scheme$iterations$salt$digest`` for a plain-text password."""
    if not password:
        raise ValueError("Password is required.")
    iterations = iterations or settings.password_hash_iterations
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return "$".join([
        _HASH_SCHEME,
        str(iterations),
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(digest).decode("ascii"),
    ])


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        scheme, iterations, salt_b64, digest_b64 = stored_hash.split("$")
    except (AttributeError, ValueError):
        return False
    if scheme != _HASH_SCHEME:
        return False
    salt = base64.b64decode(salt_b64)
    expected = base64.b64decode(digest_b64)
    actual = hashlib.pbkdf2_hmac("sha256", (password or "").encode("utf-8"), salt, int(iterations))
    return hmac.compare_digest(actual, expected)


def create_access_token(member: Member, expires_minutes: int | None = None) -> str:
    now = utcnow()
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_expiration_minutes
    payload = {
        "sub": str(member.id),
        "username": member.username,
        "role": member.membership_type.value,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "sub", "role"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token has expired.") from exc
    except jwt.PyJWTError as exc:
        raise TokenError("Invalid token.") from exc
