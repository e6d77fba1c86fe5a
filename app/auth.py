"""
Admin Session Authentication
============================
Email/password sign-in, opaque session tokens and the FastAPI dependency
that guards the dashboard, archive and reset endpoints.
"""

import hashlib
import hmac
import logging
import secrets
import threading
import uuid
from typing import Optional

import sqlalchemy
from fastapi import Header

from cachetools import TTLCache

from app.config import AUTH_ENABLED, SESSION_TTL_SECONDS
from app.database import admins, database, naive_utc_now
from app.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000
ADMIN_ROLE = "admin"

_sessions: TTLCache = TTLCache(maxsize=1000, ttl=SESSION_TTL_SECONDS)
_lock = threading.Lock()


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        salt, _digest = stored.split("$", 1)
    except (AttributeError, ValueError):
        return False
    return hmac.compare_digest(hash_password(password, salt), stored)


def _get_session(token: str) -> Optional[str]:
    with _lock:
        return _sessions.get(token)


def _set_session(token: str, admin_id: str):
    with _lock:
        _sessions[token] = admin_id


def sign_out(token: str):
    with _lock:
        _sessions.pop(token, None)


async def create_admin(email: str, password: str, role: str = ADMIN_ROLE) -> str:
    admin_id = str(uuid.uuid4())
    await database.execute(admins.insert().values(
        id=admin_id,
        email=email.strip().lower(),
        password_hash=hash_password(password),
        role=role,
        created_at=naive_utc_now(),
    ))
    logger.info(f"Created {role} account {email}")
    return admin_id


async def sign_in(email: str, password: str) -> str:
    """Verify credentials and open a session. Only admins may sign in."""
    row = await database.fetch_one(
        sqlalchemy.select(admins).where(admins.c.email == email.strip().lower())
    )
    if not row or not verify_password(password, row["password_hash"]):
        raise AuthenticationError("Invalid email or password")
    if row["role"] != ADMIN_ROLE:
        raise AuthorizationError("Unauthorized access")

    token = secrets.token_hex(32)
    _set_session(token, row["id"])
    logger.info(f"Admin {row['email']} signed in")
    return token


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def admin_for_token(token: Optional[str]) -> dict:
    """Resolve a session token to its admin row.

    Raises AuthenticationError for a missing or expired session and
    AuthorizationError when the principal is not listed as an admin.
    """
    if not token:
        raise AuthenticationError("Sign in required")
    admin_id = _get_session(token)
    if admin_id is None:
        raise AuthenticationError("Session expired or invalid")

    row = await database.fetch_one(
        sqlalchemy.select(admins.c.id, admins.c.email, admins.c.role).where(admins.c.id == admin_id)
    )
    if not row or row["role"] != ADMIN_ROLE:
        raise AuthorizationError("Admin access required")
    return {"id": row["id"], "email": row["email"], "role": row["role"]}


async def require_admin(authorization: str = Header(default=None)) -> dict:
    """
    Validate the bearer session and return the admin principal.
    When AUTH_ENABLED=False, returns a dummy principal for dev/testing.
    """
    if not AUTH_ENABLED:
        return {"id": "__dev__", "email": None, "role": ADMIN_ROLE}
    return await admin_for_token(bearer_token(authorization))
