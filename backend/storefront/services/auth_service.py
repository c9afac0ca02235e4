# Overview: Service-layer operations for accounts; password hashing, registration, authentication.

"""
Authentication Service

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with upper, lower, digit and special characters
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt

from ..extensions import db
from ..models import User, Profile
from ..models.auth import ROLE_ADMIN, ROLE_USER
from storefront.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AuthError(Exception):
    """Raised for registration/account errors."""
    pass


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")
    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str, rounds: int = 12) -> str:
    """Validate and hash a password with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(name: str, email: str, password: str, role: str = ROLE_USER, rounds: int = 12) -> User:
    """
    Create an account with an empty profile.

    Raises:
        AuthError: invalid name/email/role or email already registered
        PasswordValidationError: weak password
    """
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name:
        raise AuthError("name is required")
    if not _EMAIL_RE.match(email):
        raise AuthError("A valid email is required")
    if role not in (ROLE_USER, ROLE_ADMIN):
        raise AuthError(f"Invalid role: {role}")
    if db.session.query(User).filter_by(email=email).first():
        raise AuthError("Email is already registered")

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password, rounds=rounds),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()
    db.session.add(Profile(user_id=user.id))
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """Return the active user for valid credentials, else None."""
    email = (email or "").strip().lower()
    user = db.session.query(User).filter_by(email=email).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password or "", user.password_hash):
        return None
    user.last_login_at = utcnow()
    db.session.commit()
    return user


def update_profile(user_id: int, data: dict) -> Profile:
    profile = db.session.query(Profile).filter_by(user_id=user_id).first()
    if profile is None:
        profile = Profile(user_id=user_id)
        db.session.add(profile)
    for field in ("phone", "street", "barangay", "city", "province", "zipcode"):
        if field in data:
            value = data[field]
            if value is not None and not isinstance(value, str):
                raise AuthError(f"{field} must be a string")
            setattr(profile, field, value.strip() if isinstance(value, str) else None)
    db.session.commit()
    return profile
