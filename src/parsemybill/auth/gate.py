from __future__ import annotations

import re
import secrets
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

import bcrypt

from ..errors import AuthenticationError, PersistenceError, ValidationError
from ..logging import get_logger
from ..storage.db import DocumentDatabase


LOG = get_logger("auth")

MIN_PASSWORD_LENGTH = 6
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class Session:
    """Who is acting. Created at login, discarded at logout, read-only elsewhere."""

    user_id: Optional[str] = None
    email: Optional[str] = None
    token: Optional[str] = None
    issued_at: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


ANONYMOUS = Session()


def _hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


class LocalIdentityProvider:
    """Email/password accounts stored in the document database's ``users`` table."""

    def __init__(self, db: DocumentDatabase) -> None:
        self.db = db

    def create_user(self, email: str, password: str) -> str:
        email_norm = (email or "").strip().lower()
        if not _EMAIL_RE.match(email_norm):
            raise ValidationError("A valid email address is required", {"email": email})
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

        user_id = uuid.uuid4().hex
        try:
            with self.db.connect() as conn:
                conn.execute(
                    """
                    INSERT INTO users (user_id, email, password_hash, created_at)
                    VALUES (?, ?, ?, ?);
                    """,
                    (
                        user_id,
                        email_norm,
                        _hash_password(password),
                        datetime.now(timezone.utc).isoformat(timespec="seconds"),
                    ),
                )
                conn.commit()
        except sqlite3.IntegrityError as exc:
            raise ValidationError("An account with this email already exists", {"email": email_norm}) from exc
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to create account: {exc}") from exc
        LOG.info(f"Created account {user_id} for {email_norm}")
        return user_id

    def verify(self, email: str, password: str) -> Optional[str]:
        """Return the user id for valid credentials, otherwise None."""
        email_norm = (email or "").strip().lower()
        try:
            with self.db.connect() as conn:
                row = conn.execute(
                    "SELECT user_id, password_hash FROM users WHERE email = ?;",
                    (email_norm,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to look up account: {exc}") from exc
        if row is None:
            return None
        candidate = (password or "").encode("utf-8")
        if len(candidate) > MAX_PASSWORD_BYTES:
            return None
        if not bcrypt.checkpw(candidate, row["password_hash"].encode("utf-8")):
            return None
        return row["user_id"]


class AuthGate:
    """Anonymous ⇄ Authenticated(user_id) transitions and token lookup."""

    def __init__(self, provider: LocalIdentityProvider) -> None:
        self.provider = provider
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def _issue(self, user_id: str, email: str) -> Session:
        session = Session(
            user_id=user_id,
            email=email,
            token=secrets.token_urlsafe(32),
            issued_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        with self._lock:
            self._sessions[session.token] = session
        return session

    def signup(self, email: str, password: str) -> Session:
        user_id = self.provider.create_user(email, password)
        return self._issue(user_id, email.strip().lower())

    def login(self, email: str, password: str) -> Session:
        user_id = self.provider.verify(email, password)
        if not user_id:
            LOG.warning(f"Failed login for {email!r}")
            raise AuthenticationError("Invalid email or password")
        LOG.info(f"User {user_id} logged in")
        return self._issue(user_id, email.strip().lower())

    def logout(self, session: Session) -> Session:
        if session.token:
            with self._lock:
                self._sessions.pop(session.token, None)
            LOG.info(f"User {session.user_id} logged out")
        return ANONYMOUS

    def resolve(self, token: Optional[str]) -> Session:
        if not token:
            raise AuthenticationError("Authentication required")
        with self._lock:
            session = self._sessions.get(token)
        if session is None:
            raise AuthenticationError("Session expired or invalid; please log in again")
        return session

    @staticmethod
    def require(session: Optional[Session]) -> str:
        """Return the session's user id or raise AuthenticationError."""
        if session is None or not session.is_authenticated:
            raise AuthenticationError("You must be logged in to access invoices")
        return session.user_id
