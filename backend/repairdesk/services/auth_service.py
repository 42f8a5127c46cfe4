# Overview: Service-layer operations for staff accounts; password hashing, login and user administration.

"""
Authentication Service

Every sale and ticket is attributed to a staff account, so accounts are
deactivated rather than deleted.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters with uppercase, lowercase, digit and special char
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from ..models.auth import ROLE_TECHNICIAN, ROLES
from ..time_utils import utcnow
from ..validation import ConflictError, ValidationError
from .session_service import revoke_all_user_sessions

USERNAME_RE = re.compile(r"^[a-z0-9_.-]{3,50}$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


class AccountDisabledError(Exception):
    """Correct credentials for a deactivated account."""


class UserNotFoundError(Exception):
    def __init__(self, user_id: int):
        super().__init__(f"User with ID {user_id} not found")
        self.user_id = user_id


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")
    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-+=?/\\\[\]~`;]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe comparison; a malformed stored hash never matches."""
    if not isinstance(password, str) or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def normalize_username(username) -> str:
    normalized = str(username or "").strip().lower()
    if not USERNAME_RE.match(normalized):
        raise ValidationError("username must be 3-50 characters of a-z, 0-9, '.', '_' or '-'")
    return normalized


def _validate_name(name) -> str:
    value = str(name or "").strip()
    if not value:
        raise ValidationError("name is required")
    if len(value) > 100:
        raise ValidationError("name exceeds max length 100")
    return value


def _validate_role(role) -> str:
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
    return role


def create_user(*, name: str, username: str, password: str, role: str) -> User:
    """
    Create a staff account.

    Raises:
        ValidationError / PasswordValidationError: bad fields or weak password
        ConflictError: username already taken
    """
    name = _validate_name(name)
    username = normalize_username(username)
    role = _validate_role(role)

    if db.session.query(User.id).filter(User.username == username).first() is not None:
        raise ConflictError(f"Username {username} already exists")

    user = User(
        name=name,
        username=username,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Username {username} already exists")
    current_app.logger.info("User %s created with role %s", username, role)
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Check credentials. Returns the user, or None when they do not match.

    Raises AccountDisabledError when the credentials are right but the
    account is deactivated, so the caller can answer 403 instead of 401.
    """
    try:
        normalized = normalize_username(username)
    except ValidationError:
        return None

    user = db.session.query(User).filter(User.username == normalized).first()
    if user is None or not verify_password(password or "", user.password_hash):
        return None
    if not user.is_active:
        raise AccountDisabledError("Account is deactivated")

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def change_password(user: User, current_password: str, new_password: str) -> None:
    """Re-check the current password, store the new hash, revoke every session."""
    if not verify_password(current_password or "", user.password_hash):
        raise ValidationError("Current password is incorrect")
    if current_password == new_password:
        raise ValidationError("New password must differ from the current password")

    user.password_hash = hash_password(new_password)
    revoke_all_user_sessions(user.id, "Password changed", commit=False)
    db.session.commit()


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def list_users(*, role: str | None = None, is_active: bool | None = None) -> list[User]:
    query = db.session.query(User)
    if role:
        query = query.filter(User.role == _validate_role(role))
    if is_active is not None:
        query = query.filter(User.is_active.is_(is_active))
    return query.order_by(User.name.asc(), User.id.asc()).all()


def list_technicians() -> list[User]:
    return list_users(role=ROLE_TECHNICIAN, is_active=True)


def update_user(user_id: int, payload: dict, *, acting_user: User) -> User:
    """Admin edit of name, role and is_active. Usernames and passwords are not editable here."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = set(payload) - {"name", "role", "is_active"}
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    user = get_user(user_id)
    if "name" in payload:
        user.name = _validate_name(payload["name"])
    if "role" in payload:
        role = _validate_role(payload["role"])
        if user.id == acting_user.id and role != user.role:
            raise ValidationError("You cannot change your own role")
        user.role = role
    if "is_active" in payload:
        if not isinstance(payload["is_active"], bool):
            raise ValidationError("is_active must be a boolean")
        if user.id == acting_user.id and not payload["is_active"]:
            raise ValidationError("You cannot deactivate your own account")
        user.is_active = payload["is_active"]
        if not user.is_active:
            revoke_all_user_sessions(user.id, "User account deactivated", commit=False)

    db.session.commit()
    return user


def deactivate_user(user_id: int, *, acting_user: User) -> User:
    user = get_user(user_id)
    if user.id == acting_user.id:
        raise ValidationError("You cannot deactivate your own account")
    user.is_active = False
    revoked = revoke_all_user_sessions(user.id, "User account deactivated", commit=False)
    db.session.commit()
    current_app.logger.info("User %s deactivated, %d session(s) revoked", user.username, revoked)
    return user
