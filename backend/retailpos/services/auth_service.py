# Overview: Service-layer operations for auth; password hashing and user management.

"""
Authentication Service

WHY: Every stock movement and sale must be attributable to a user.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import logging
import re

import bcrypt

from ..errors import AuthenticationError, ConflictError, ValidationError
from ..extensions import db
from ..models import User, UserRole
from ..time_utils import utcnow
from ..validation import coerce_enum, require_text
from .concurrency import run_atomic

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise ValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12 after a strength check."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(*, email: str, name: str, password: str, role=UserRole.EMPLOYEE) -> User:
    clean_email = require_text(email, "email", max_length=255).lower()
    clean_name = require_text(name, "name", max_length=255)
    user_role = coerce_enum(UserRole, role, "role")
    password_hash = hash_password(password)

    def _op():
        if db.session.query(User.id).filter(User.email == clean_email).first():
            raise ConflictError("Email already exists", details={"email": clean_email})
        user = User(email=clean_email, name=clean_name, role=user_role, password_hash=password_hash)
        db.session.add(user)
        db.session.flush()
        return user

    user = run_atomic(_op, operation="create_user")
    logger.info("User created: id=%s role=%s", user.id, user.role.value)
    return user


def authenticate(email: str, password: str) -> User:
    """
    Resolve credentials to an active user.

    Unknown email, wrong password and inactive account all raise the same
    AuthenticationError.
    """
    if not email or not password:
        raise AuthenticationError("Email and password are required")

    user = db.session.query(User).filter(User.email == str(email).strip().lower()).first()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        logger.warning("Failed login for %s", email)
        raise AuthenticationError("Invalid email or password")

    user.last_login_at = utcnow()
    db.session.commit()
    return user
