# Overview: User accounts; password policy, bcrypt hashing, credential checks.

"""
Each account belongs to one network node (franchisor, franchisee or
merchant) fixed by its role; END_USER accounts belong to none.
Passwords are bcrypt-hashed with BCRYPT_ROUNDS (12 unless configured).
Bearer sessions live in session_service.py.
"""

import bcrypt
import re

from flask import current_app

from ..extensions import db
from ..models import Franchisee, Franchisor, Merchant, Role, User
from ..time_utils import utcnow


DEFAULT_BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8

PASSWORD_RULES = (
    (r"[A-Z]", "an uppercase letter"),
    (r"[a-z]", "a lowercase letter"),
    (r"\d", "a digit"),
    (r"[^A-Za-z0-9\s]", "a special character"),
)


class PasswordValidationError(Exception):
    pass


class UserError(ValueError):
    """Raised when a user cannot be created as requested."""
    pass


def validate_password_strength(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    for pattern, label in PASSWORD_RULES:
        if not re.search(pattern, password):
            raise PasswordValidationError(f"Password must contain {label}")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check; a corrupt stored hash simply fails."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    email: str,
    name: str,
    password: str,
    role: str,
    franchisor_id: int | None = None,
    franchisee_id: int | None = None,
    merchant_id: int | None = None,
) -> User:
    """
    Create a user bound to the network node its role acts for.

    Raises:
        UserError: unknown role, missing/unknown scope, or duplicate email
        PasswordValidationError: If password doesn't meet requirements
    """
    email = (email or "").strip().lower()
    if not email or not name:
        raise UserError("email and name are required")
    if role not in Role.ALL:
        raise UserError(f"Invalid role: {role}. Must be one of {list(Role.ALL)}")

    required = {
        Role.FRANCHISOR: (Franchisor, franchisor_id, "franchisor_id"),
        Role.FRANCHISEE: (Franchisee, franchisee_id, "franchisee_id"),
        Role.MERCHANT: (Merchant, merchant_id, "merchant_id"),
    }.get(role)
    if required:
        model, scope_id, field = required
        if scope_id is None:
            raise UserError(f"{field} is required for role {role}")
        if db.session.get(model, scope_id) is None:
            raise UserError(f"{field} {scope_id} not found")

    if db.session.query(User).filter_by(email=email).first():
        raise UserError("Email already exists")

    user = User(
        email=email,
        name=name,
        password_hash=hash_password(password),
        role=role,
        franchisor_id=franchisor_id if role == Role.FRANCHISOR else None,
        franchisee_id=franchisee_id if role == Role.FRANCHISEE else None,
        merchant_id=merchant_id if role == Role.MERCHANT else None,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """Active user matching the credentials (last_login_at stamped), else None."""
    user = db.session.query(User).filter(
        User.email == (email or "").strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
