"""Environment-driven session settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .history.log import DEFAULT_CAPACITY
from .utils import getenv_flag, getenv_float, getenv_int


DEFAULT_HOME = Path.home() / ".prism"
DEFAULT_POLL_INTERVAL_S = 10.0


@dataclass(frozen=True)
class SessionConfig:
    home: Path = DEFAULT_HOME
    provider: str = "gemini"
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    history_capacity: int = DEFAULT_CAPACITY
    events_enabled: bool = True

    @property
    def store_path(self) -> Path:
        return self.home / "store.sqlite"

    @property
    def events_path(self) -> Path:
        return self.home / "events.jsonl"

    @classmethod
    def from_env(cls) -> "SessionConfig":
        home_raw = os.getenv("PRISM_HOME")
        home = Path(home_raw).expanduser() if home_raw and home_raw.strip() else DEFAULT_HOME
        provider = (os.getenv("PRISM_PROVIDER") or "gemini").strip().lower() or "gemini"
        poll_interval = getenv_float("PRISM_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_S)
        if poll_interval < 0:
            poll_interval = DEFAULT_POLL_INTERVAL_S
        capacity = getenv_int("PRISM_HISTORY_CAPACITY", DEFAULT_CAPACITY)
        if capacity < 1:
            capacity = DEFAULT_CAPACITY
        return cls(
            home=home,
            provider=provider,
            poll_interval_s=poll_interval,
            history_capacity=capacity,
            events_enabled=getenv_flag("PRISM_EVENTS", True),
        )
