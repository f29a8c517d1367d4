# Overview: Password hashing, credential checks and user creation.

"""
Authentication Service

WHY: Every sale is attributed to a seller. Uses bcrypt for password hashing.

- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import re

import bcrypt

from ..extensions import db
from ..models import User
from ..models.auth import ROLES, ROLE_SELLER
from ..validation import ConflictError, ValidationError
from duka.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """bcrypt.checkpw is timing-safe; malformed hashes simply don't match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    username: str,
    password: str,
    *,
    full_name: str | None = None,
    role: str = ROLE_SELLER,
    rounds: int = 12,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises ValidationError for a bad role or weak password and
    ConflictError when the username is taken.
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("Username is required")
    if role not in ROLES:
        raise ValidationError("Invalid role", details={"role": role, "allowed": list(ROLES)})

    existing = db.session.query(User).filter_by(username=username).first()
    if existing:
        raise ConflictError("Username already exists", details={"username": username})

    user = User(
        username=username,
        full_name=(full_name or username).strip(),
        password_hash=hash_password(password, rounds=rounds),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Return the active user for these credentials, or None.

    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.username == (username or "").strip(),
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password or "", user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
