from __future__ import annotations

from pathlib import Path

import pytest

from prism_engine.credentials.store import (
    CLEARED_MESSAGE,
    REVOKED_MESSAGE,
    CredentialNotice,
    CredentialStore,
    env_key_flow,
)
from prism_engine.storage.local_store import CREDENTIAL_KEY, LocalStore


def _store(tmp_path: Path) -> LocalStore:
    store = LocalStore(tmp_path / "store.sqlite")
    store.init_db()
    return store


def test_save_persists_and_reloads(tmp_path: Path) -> None:
    store = _store(tmp_path)
    credentials = CredentialStore(store)
    saved = credentials.save("  secret-123  ")
    assert saved.secret == "secret-123"
    assert saved.present is True
    assert saved.validated is False

    fresh = CredentialStore(store)
    assert fresh.get() is None
    assert fresh.load().secret == "secret-123"


def test_absent_key_is_a_normal_start(tmp_path: Path) -> None:
    credentials = CredentialStore(_store(tmp_path))
    assert credentials.load() is None
    assert credentials.notice is None


def test_empty_secret_is_rejected(tmp_path: Path) -> None:
    credentials = CredentialStore(_store(tmp_path))
    with pytest.raises(ValueError):
        credentials.save("   ")


def test_clear_purges_durable_copy(tmp_path: Path) -> None:
    store = _store(tmp_path)
    credentials = CredentialStore(store)
    credentials.save("secret-123")
    credentials.clear()
    assert credentials.get() is None
    assert store.get(CREDENTIAL_KEY) is None
    assert credentials.notice.notice is CredentialNotice.CLEARED_BY_USER
    assert credentials.notice.message == CLEARED_MESSAGE


def test_invalidate_is_distinguishable_from_clear(tmp_path: Path) -> None:
    store = _store(tmp_path)
    events: list[tuple[str, dict]] = []
    credentials = CredentialStore(store, on_change=lambda kind, payload: events.append((kind, payload)))
    credentials.save("secret-123")
    credentials.invalidate("quota exceeded")
    assert credentials.get() is None
    assert store.get(CREDENTIAL_KEY) is None
    assert credentials.notice.notice is CredentialNotice.REVOKED_BY_PROVIDER
    assert credentials.notice.message == REVOKED_MESSAGE
    assert events[-1] == ("credential_invalidated", {"reason": "quota exceeded"})


def test_save_clears_notice(tmp_path: Path) -> None:
    credentials = CredentialStore(_store(tmp_path))
    credentials.save("old")
    credentials.invalidate("revoked")
    credentials.save("new")
    assert credentials.notice is None


def test_mark_validated_only_for_current_snapshot(tmp_path: Path) -> None:
    credentials = CredentialStore(_store(tmp_path))
    old = credentials.save("old")
    credentials.save("new")
    credentials.mark_validated(old)
    assert credentials.get().validated is False
    credentials.mark_validated(credentials.get())
    assert credentials.get().validated is True
    assert credentials.is_current(old) is False


def test_acquire_runs_external_flow(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    credentials = CredentialStore(_store(tmp_path))
    assert credentials.acquire(lambda: None) is None
    assert credentials.acquire(lambda: "picked").secret == "picked"

    for name in ("PRISM_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")
    assert env_key_flow() == "from-env"


def test_repr_hides_secret(tmp_path: Path) -> None:
    credentials = CredentialStore(_store(tmp_path))
    credential = credentials.save("super-secret-value")
    assert "super-secret" not in repr(credential)
