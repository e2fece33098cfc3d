"""
Authentication against the hosted auth service, plus an in-memory double.

Sessions are plain values handed to callers; nothing here keeps a
process-wide "current user".
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

import requests

from marketdesk.errors import AuthError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: Optional[str] = None
    role: Optional[str] = None


@dataclass(frozen=True)
class AuthSession:
    user: AuthUser
    access_token: str
    is_admin: bool = False


def is_admin_email(email: Optional[str], admin_email: Optional[str]) -> bool:
    return bool(email) and bool(admin_email) and email == admin_email


def build_session(
    user: AuthUser, access_token: str, admin_email: Optional[str]
) -> AuthSession:
    return AuthSession(
        user=user,
        access_token=access_token,
        is_admin=is_admin_email(user.email, admin_email),
    )


def authorize(session: Optional[AuthSession], allowed_roles: Iterable[str] = ()) -> bool:
    """
    Admins pass everything; with no roles listed any signed-in user passes;
    otherwise the user's role must be one of `allowed_roles`.
    """
    if session is None:
        return False
    if session.is_admin:
        return True
    roles = list(allowed_roles)
    if not roles:
        return True
    return session.user.role in roles


class AuthClient(Protocol):
    """Operations the API needs from the auth provider."""

    def sign_in(self, email: str, password: str) -> tuple[AuthUser, str]:
        """Return the signed-in user and their access token."""
        ...

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        ...

    def sign_out(self, access_token: str) -> None:
        ...


@dataclass
class InMemoryAuthClient:
    """Test double holding users and issued tokens in dictionaries."""

    users: dict[str, tuple[str, AuthUser]] = field(default_factory=dict)
    tokens: dict[str, AuthUser] = field(default_factory=dict)

    def add_user(
        self, email: str, password: str, role: Optional[str] = "authenticated"
    ) -> AuthUser:
        user = AuthUser(id=uuid.uuid4().hex, email=email, role=role)
        self.users[email] = (password, user)
        return user

    def sign_in(self, email: str, password: str) -> tuple[AuthUser, str]:
        entry = self.users.get(email)
        if entry is None or entry[0] != password:
            raise AuthError("Invalid login credentials")
        token = uuid.uuid4().hex
        self.tokens[token] = entry[1]
        return entry[1], token

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        return self.tokens.get(access_token)

    def sign_out(self, access_token: str) -> None:
        self.tokens.pop(access_token, None)


@dataclass
class HostedAuthClient:
    """
    Client for the hosted auth REST API (password grant, user lookup, logout).
    """

    base_url: str
    api_key: str
    timeout: float = 10.0

    def __post_init__(self):
        self.session = requests.Session()
        self.session.headers.update({"apikey": self.api_key})

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/auth/v1/{path}"

    @staticmethod
    def _user_from_payload(payload: dict) -> AuthUser:
        return AuthUser(
            id=payload["id"],
            email=payload.get("email"),
            role=payload.get("role"),
        )

    def sign_in(self, email: str, password: str) -> tuple[AuthUser, str]:
        try:
            response = self.session.post(
                self._url("token"),
                params={"grant_type": "password"},
                json={"email": email, "password": password},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AuthError(f"Auth service unavailable: {exc}") from exc
        payload = response.json() if response.content else {}
        if response.status_code != 200:
            message = (
                payload.get("error_description")
                or payload.get("msg")
                or "Failed to sign in"
            )
            raise AuthError(message)
        user = self._user_from_payload(payload["user"])
        return user, payload["access_token"]

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        try:
            response = self.session.get(
                self._url("user"),
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AuthError(f"Auth service unavailable: {exc}") from exc
        if response.status_code != 200:
            return None
        return self._user_from_payload(response.json())

    def sign_out(self, access_token: str) -> None:
        try:
            response = self.session.post(
                self._url("logout"),
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AuthError(f"Auth service unavailable: {exc}") from exc
        if response.status_code not in (200, 204):
            logger.warning("Sign out returned HTTP %s", response.status_code)
