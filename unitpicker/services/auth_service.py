"""Session tokens and the shared admin secret."""

from __future__ import annotations

import secrets
from threading import RLock
from typing import Optional

from unitpicker.domain.models import User
from unitpicker.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminSecretNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_SECRET is missing."""


class InvalidAdminSecretError(AuthenticationError):
    """Raised when the provided admin secret is wrong."""


class InvalidSessionError(AuthenticationError):
    """Raised when a bearer token does not map to a live session."""


class AuthService:
    """Issues bearer tokens that identify the acting user on every call.

    The engine never holds a "current user"; controllers resolve the token to
    a user id and pass it explicitly.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: dict[str, str] = {}
        self._lock = RLock()

    @property
    def admin_login_enabled(self) -> bool:
        return bool(self._settings.admin_secret)

    def _expected_secret(self) -> str:
        if not self._settings.admin_secret:
            raise AdminSecretNotConfiguredError(
                "ADMIN_SECRET is not configured. Set ADMIN_SECRET in environment variables."
            )
        return self._settings.admin_secret

    def verify_admin_secret(self, provided_secret: Optional[str]) -> None:
        expected = self._expected_secret()
        if not provided_secret or not secrets.compare_digest(provided_secret, expected):
            raise InvalidAdminSecretError("Invalid admin secret")

    def login(self, user: User, admin_secret: Optional[str] = None) -> str:
        if user.is_admin:
            self.verify_admin_secret(admin_secret)
        token = secrets.token_urlsafe(self._settings.session_token_bytes)
        with self._lock:
            self._sessions[token] = user.id
        return token

    def logout(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def resolve(self, token: Optional[str]) -> str:
        if not token:
            raise InvalidSessionError("No active session. Login first.")
        with self._lock:
            user_id = self._sessions.get(token)
        if user_id is None:
            raise InvalidSessionError("Invalid bearer token")
        return user_id

    def revoke_all(self) -> None:
        with self._lock:
            self._sessions.clear()
