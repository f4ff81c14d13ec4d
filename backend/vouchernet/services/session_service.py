# Overview: Bearer session tokens; issue, resolve to a principal, revoke.

"""
Session Token Management Service

Tokens are 32 random bytes (64 hex chars) handed to the client once. Only
their SHA-256 digest is stored: tokens are high-entropy, so a slow hash
like bcrypt buys nothing here.

A session dies on the first of:
- absolute timeout (SESSION_ABSOLUTE_TIMEOUT_HOURS, default 24h)
- idle timeout (SESSION_IDLE_TIMEOUT_MINUTES, default 2h)
- logout / explicit revocation
- the user being deactivated
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


DEFAULT_ABSOLUTE_TIMEOUT = timedelta(hours=24)
DEFAULT_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    """
    Principal resolved from a bearer token.

    role and the scoped ids are read from the user on every request, so a
    role change applies to live sessions immediately.
    """
    user: User
    session: SessionToken

    @property
    def role(self) -> str:
        return self.user.role


def absolute_timeout() -> timedelta:
    hours = current_app.config.get("SESSION_ABSOLUTE_TIMEOUT_HOURS")
    return timedelta(hours=hours) if hours else DEFAULT_ABSOLUTE_TIMEOUT


def idle_timeout() -> timedelta:
    minutes = current_app.config.get("SESSION_IDLE_TIMEOUT_MINUTES")
    return timedelta(minutes=minutes) if minutes else DEFAULT_IDLE_TIMEOUT


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _revoke(session: SessionToken, reason: str, now: datetime) -> None:
    session.is_revoked = True
    session.revoked_at = now
    session.revoked_reason = reason


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Open a session for an active user.

    Returns (session_record, plaintext_token); only the record is persisted.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User account is deactivated")

    token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + absolute_timeout(),
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its principal, or None.

    Touches last_used_at on success. Idle sessions and sessions of
    deactivated users are revoked on the spot.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    if now - session.last_used_at > idle_timeout():
        _revoke(session, "Idle timeout", now)
        db.session.commit()
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated", now)
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=session)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Returns False if the token was unknown or already revoked."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return False

    _revoke(session, reason, utcnow())
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False).all()
    for session in sessions:
        _revoke(session, reason, now)
    db.session.commit()
    return len(sessions)
