"""
Credential service: bcrypt password hashing, JWT issue/verify, admin login
and the FastAPI dependencies that authenticate requests.

Tokens carry {sub, id, role, exp}; once the signature checks out the role
claim is trusted as-is.
"""

import os
from datetime import datetime, timedelta, timezone

import bcrypt
from fastapi import Request
from jose import jwt, JWTError

from bundlepay.database import get_db
from bundlepay.errors import Forbidden, Unauthorized

JWT_SECRET = os.environ.get("JWT_SECRET", "change-me-to-a-random-secret-key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = 24

ROLE_ADMIN = "admin"
ROLE_VENDOR = "vendor"


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    return bcrypt.hashpw(
        password.encode("utf-8"), bcrypt.gensalt()
    ).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def create_token(subject: str, user_id: int, role: str) -> str:
    """Issue a JWT valid for 24 hours."""
    expire = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRE_HOURS)
    payload = {"sub": subject, "id": user_id, "role": role, "exp": expire}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Decode and validate a JWT.

    Raises:
        ValueError: invalid, expired, or missing id/role claims.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise ValueError(f"Invalid token: {e}")
    if "id" not in payload or "role" not in payload:
        raise ValueError("Token is missing identity claims")
    return payload


def authenticate_admin(username: str, password: str) -> str:
    """
    Check admin credentials and issue an admin token.

    Raises:
        Unauthorized: unknown username or wrong password.
    """
    db = get_db()
    try:
        admin = db.execute(
            "SELECT * FROM admin WHERE username = ?", (username,)
        ).fetchone()
    finally:
        db.close()

    if not admin or not verify_password(password, admin["password_hash"]):
        raise Unauthorized("Invalid username or password")

    return create_token(admin["username"], admin["id"], ROLE_ADMIN)


# ── FastAPI dependencies ──────────────────────────────────


def get_current_user(request: Request) -> dict:
    """
    Extract and verify the JWT from the Authorization header (Bearer) or
    the ``token`` cookie.

    Returns:
        Decoded payload ({sub, id, role, exp}).

    Raises:
        Unauthorized: token missing, invalid or expired.
    """
    token = None

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:]

    if not token:
        token = request.cookies.get("token")

    if not token:
        raise Unauthorized("Authentication token required")

    try:
        return verify_token(token)
    except ValueError:
        raise Unauthorized("Invalid or expired token")


def require_role(*roles: str):
    """Dependency factory: the current user must hold one of ``roles``."""

    def dependency(request: Request) -> dict:
        user = get_current_user(request)
        if user.get("role") not in roles:
            raise Forbidden("You do not have permission to perform this action")
        return user

    return dependency


get_current_admin = require_role(ROLE_ADMIN)
get_current_vendor = require_role(ROLE_VENDOR)
