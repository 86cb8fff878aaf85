"""Ephemeral description of one provider call."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from ..credentials.store import Credential
from ..modes import Mode, OutputSlot


@dataclass(frozen=True)
class GenerationRequest:
    mode: Mode
    operation: str
    slot: OutputSlot
    credential: Credential
    ticket: int
    payload: Mapping[str, Any] = field(default_factory=dict)

    def describe(self) -> dict[str, Any]:
        """Event-safe view; the credential never leaves this object."""
        return {
            "mode": self.mode.value,
            "operation": self.operation,
            "slot": self.slot.value,
            "ticket": self.ticket,
            "payload": dict(self.payload),
        }
