"""identity.py — Identity source: password hashing and signed access tokens.

Tokens are HS256 JWTs signed with JWT_SECRET:
    {"sub": <user id>, "name": ..., "email": ..., "roles": [<role>], "iat": ..., "exp": ...}

Token verification only proves who the caller claims to be; services still
load the user record (see UserService.resolve_principal) so deleted accounts
lose access immediately.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext

from compass_events.authorization import Principal
from compass_events.config import BCRYPT_ROUNDS, JWT_SECRET, JWT_TTL_SECONDS, ROLES

__all__ = [
    "TokenError",
    "decode_token",
    "hash_password",
    "issue_token",
    "principal_from_claims",
    "verify_password",
]

logger = logging.getLogger(__name__)

_JWT_ALGORITHM = "HS256"

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


class TokenError(ValueError):
    """Token missing, malformed, expired or signed with another key."""


def hash_password(plain: str) -> str:
    return _pwd_context.hash(plain)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not plain or not hashed:
        return False
    try:
        return _pwd_context.verify(plain, hashed)
    except (ValueError, TypeError) as exc:
        # Unrecognised hash format in storage; treat as a failed check.
        logger.warning("Password hash could not be verified: %s", exc)
        return False


def _secret(secret: Optional[str]) -> str:
    value = secret if secret is not None else JWT_SECRET
    if not value:
        raise TokenError("JWT_SECRET not set")
    return value


def issue_token(user: Dict[str, Any], *, secret: Optional[str] = None, ttl_seconds: Optional[int] = None) -> str:
    now = int(time.time())
    payload = {
        "sub": user["id"],
        "name": user.get("name", ""),
        "email": user.get("email", ""),
        "roles": [user["role"]],
        "iat": now,
        "exp": now + int(ttl_seconds if ttl_seconds is not None else JWT_TTL_SECONDS),
    }
    return jwt.encode(payload, _secret(secret), algorithm=_JWT_ALGORITHM)


def decode_token(token: str, *, secret: Optional[str] = None) -> Dict[str, Any]:
    """Verify signature and expiry. Returns the claims dict."""
    if not token:
        raise TokenError("Authentication required.")
    try:
        return jwt.decode(
            token,
            _secret(secret),
            algorithms=[_JWT_ALGORITHM],
            options={"verify_exp": True, "require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired. Please sign in again.")
    except jwt.PyJWTError as exc:
        raise TokenError(f"Token validation failed: {exc}") from exc


def principal_from_claims(claims: Dict[str, Any]) -> Principal:
    user_id = str(claims.get("sub") or "").strip()
    if not user_id:
        raise TokenError("Token has no subject.")
    roles = claims.get("roles") or []
    role = roles[0] if isinstance(roles, list) and roles else claims.get("role")
    if role not in ROLES:
        raise TokenError(f"Token carries unknown role: {role!r}")
    return Principal(id=user_id, role=role)
