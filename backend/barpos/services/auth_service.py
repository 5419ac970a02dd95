# Overview: Service-layer operations for users and passwords.

"""
Authentication Service

Every sale is attributed to an operator. Passwords are hashed with
bcrypt.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 6 characters required
- Session tokens managed separately (see session_service.py)
"""

import logging

import bcrypt
from sqlalchemy import func

from ..extensions import db
from ..models import User, Sale, SessionToken, BarrelMovement
from ..models.auth import ROLES, ROLE_USER
from ..validation import ConflictError


logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AuthError(Exception):
    """Raised when credentials are rejected."""
    pass


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def hash_password(password: str, rounds: int = 12) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """Verify password against bcrypt hash (constant-time compare)."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_email(email: str) -> User | None:
    return db.session.query(User).filter(func.lower(User.email) == _normalize_email(email)).first()


def create_user(
    name: str,
    email: str,
    password: str,
    role: str = ROLE_USER,
    bcrypt_rounds: int = 12,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises PasswordValidationError for weak passwords, ConflictError for a
    duplicate email and ValueError for an unknown role or missing fields.
    """
    email = _normalize_email(email)
    name = (name or "").strip()
    if not name or not email:
        raise ValueError("name and email are required")
    if role not in ROLES:
        raise ValueError(f"role must be one of: {', '.join(ROLES)}")
    if get_user_by_email(email):
        raise ConflictError("A user with this email already exists")

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password, rounds=bcrypt_rounds),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    logger.info("User %s created with role %s", user.id, role)
    return user


def authenticate(email: str, password: str) -> User:
    user = get_user_by_email(email)
    if user is None or not user.is_active or not verify_password(password or "", user.password_hash):
        raise AuthError("Invalid email or password")
    return user


def list_users() -> list[dict]:
    users = db.session.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
    return [u.to_dict() for u in users]


def update_user(user_id: int, patch: dict) -> User | None:
    user = db.session.get(User, user_id)
    if user is None:
        return None

    if "is_active" in patch and not isinstance(patch["is_active"], bool):
        raise ValueError("is_active must be true or false")
    if "role" in patch and patch["role"] not in ROLES:
        raise ValueError(f"role must be one of: {', '.join(ROLES)}")
    if "email" in patch:
        email = _normalize_email(str(patch["email"] or ""))
        if not email:
            raise ValueError("email cannot be blank")
        existing = get_user_by_email(email)
        if existing and existing.id != user_id:
            raise ConflictError("A user with this email already exists")
        user.email = email
    if "password" in patch:
        user.password_hash = hash_password(patch["password"])

    for k in ("name", "role", "is_active"):
        if k in patch:
            setattr(user, k, patch[k])

    db.session.commit()
    return user


def delete_user(user_id: int, actor_id: int) -> bool:
    """
    Hard-delete a user. Returns False when the user does not exist.

    Users with sales are never deleted (deactivate them instead), and an
    operator cannot delete their own account. Open sessions go with the
    user; barrel movements keep their history with no author.
    """
    user = db.session.get(User, user_id)
    if user is None:
        return False
    if user_id == actor_id:
        raise ValueError("Cannot delete your own account")
    if db.session.query(Sale.id).filter_by(user_id=user_id).first() is not None:
        raise ValueError("Cannot delete a user with recorded sales")

    db.session.query(SessionToken).filter_by(user_id=user_id).delete()
    db.session.query(BarrelMovement).filter_by(user_id=user_id).update({BarrelMovement.user_id: None})
    db.session.delete(user)
    db.session.commit()
    logger.info("User %s deleted by user %s", user_id, actor_id)
    return True
