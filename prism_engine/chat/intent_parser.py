"""Parse user input into structured intents."""

from __future__ import annotations

import re
import shlex

from .command_registry import (
    MULTI_PATH_COMMAND_MAP,
    NO_ARG_COMMAND_MAP,
    RAW_ARG_COMMAND_MAP,
    SINGLE_PATH_COMMAND_MAP,
    TOGGLE_COMMAND_MAP,
)
from .intent_schema import Intent

_SLASH_PATTERN = re.compile(r"^/(\w+)(?:\s+(.*))?$", re.DOTALL)

_ON = {"on", "yes", "true", "1"}
_OFF = {"off", "no", "false", "0"}


def _parse_toggle(arg: str) -> bool | None:
    """`on`/`off` set the flag; no argument flips it (None)."""
    lowered = arg.strip().lower()
    if lowered in _ON:
        return True
    if lowered in _OFF:
        return False
    return None


def _parse_path_args(arg: str) -> list[str]:
    """Parse one or more path args from a slash command.

    Supports quoted paths so spaces work:
      /product "/path/with spaces/a.png" "/path/b.png"
    """
    if not arg:
        return []
    try:
        parts = shlex.split(arg)
    except ValueError:
        parts = arg.split()
    return [part for part in parts if part]


def _parse_single_path_arg(arg: str) -> str:
    parts = _parse_path_args(arg)
    if not parts:
        return ""
    if len(parts) == 1:
        return parts[0]
    return " ".join(parts)


def parse_intent(text: str) -> Intent:
    raw = text.strip()
    if not raw:
        return Intent(action="noop", raw=text)
    match = _SLASH_PATTERN.match(raw)
    if match:
        command = match.group(1).lower()
        arg = (match.group(2) or "").strip()
        if command in RAW_ARG_COMMAND_MAP:
            return Intent(action=RAW_ARG_COMMAND_MAP[command], raw=text, command_args={"value": arg})
        if command in TOGGLE_COMMAND_MAP:
            return Intent(action=TOGGLE_COMMAND_MAP[command], raw=text, command_args={"enabled": _parse_toggle(arg)})
        if command in SINGLE_PATH_COMMAND_MAP:
            return Intent(
                action=SINGLE_PATH_COMMAND_MAP[command],
                raw=text,
                command_args={"path": _parse_single_path_arg(arg)},
            )
        if command in MULTI_PATH_COMMAND_MAP:
            return Intent(action=MULTI_PATH_COMMAND_MAP[command], raw=text, command_args={"paths": _parse_path_args(arg)})
        if command in NO_ARG_COMMAND_MAP:
            return Intent(action=NO_ARG_COMMAND_MAP[command], raw=text, command_args={})
        return Intent(action="unknown", raw=text, command_args={"command": command, "arg": arg})

    return Intent(action="generate", raw=text, prompt=raw)
