"""Provider registry."""

from __future__ import annotations

from .base import AdapterRegistry
from .dryrun import DryRunAdapter
from .gemini import GeminiAdapter


def default_registry() -> AdapterRegistry:
    return AdapterRegistry(
        [
            DryRunAdapter(),
            GeminiAdapter(),
        ]
    )
