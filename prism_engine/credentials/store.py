"""Credential lifecycle: supply, persist, clear and provider-driven invalidation."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from ..storage.local_store import CREDENTIAL_KEY, LocalStore


ENV_KEYS = ("PRISM_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY")


@dataclass(frozen=True)
class Credential:
    secret: str
    present: bool = True
    validated: bool = False

    def __repr__(self) -> str:
        tail = self.secret[-4:] if len(self.secret) >= 8 else ""
        return f"Credential(secret='...{tail}', present={self.present}, validated={self.validated})"


class CredentialNotice(str, Enum):
    CLEARED_BY_USER = "cleared_by_user"
    REVOKED_BY_PROVIDER = "revoked_by_provider"


@dataclass(frozen=True)
class NoticeRecord:
    notice: CredentialNotice
    message: str


CLEARED_MESSAGE = "API key cleared. Enter a key to continue."
REVOKED_MESSAGE = (
    "The API key exceeded its quota, is not valid, or lacks permission. "
    "Video generation requires a key from a project with billing enabled. "
    "Select a different key to continue."
)


def env_key_flow() -> str | None:
    for name in ENV_KEYS:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None


class CredentialStore:
    def __init__(self, store: LocalStore, on_change: Callable[[str, dict], None] | None = None) -> None:
        self._store = store
        self._credential: Credential | None = None
        self._notice: NoticeRecord | None = None
        self._on_change = on_change

    @property
    def notice(self) -> NoticeRecord | None:
        return self._notice

    def load(self) -> Credential | None:
        secret = self._store.get(CREDENTIAL_KEY)
        if secret and secret.strip():
            self._credential = Credential(secret=secret.strip())
        else:
            self._credential = None
        return self._credential

    def get(self) -> Credential | None:
        return self._credential

    def save(self, secret: str) -> Credential:
        cleaned = str(secret or "").strip()
        if not cleaned:
            raise ValueError("API key must not be empty.")
        self._store.set(CREDENTIAL_KEY, cleaned)
        self._credential = Credential(secret=cleaned)
        self._notice = None
        self._emit("credential_saved")
        return self._credential

    def acquire(self, flow: Callable[[], str | None] = env_key_flow) -> Credential | None:
        """Run an external key-selection flow and keep whatever it yields."""
        secret = flow()
        if not secret:
            return None
        return self.save(secret)

    def clear(self) -> None:
        self._forget()
        self._notice = NoticeRecord(CredentialNotice.CLEARED_BY_USER, CLEARED_MESSAGE)
        self._emit("credential_cleared")

    def invalidate(self, reason: str | None = None) -> None:
        self._forget()
        self._notice = NoticeRecord(CredentialNotice.REVOKED_BY_PROVIDER, REVOKED_MESSAGE)
        self._emit("credential_invalidated", reason=reason)

    def is_current(self, snapshot: Credential | None) -> bool:
        return (
            snapshot is not None
            and self._credential is not None
            and self._credential.secret == snapshot.secret
        )

    def mark_validated(self, snapshot: Credential) -> None:
        if self.is_current(snapshot) and not self._credential.validated:
            self._credential = replace(self._credential, validated=True)

    def _forget(self) -> None:
        self._store.delete(CREDENTIAL_KEY)
        self._credential = None

    def _emit(self, event_type: str, **payload) -> None:
        if self._on_change is not None:
            self._on_change(event_type, payload)
