"""Model registry for Prism."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping


@dataclass(frozen=True)
class ModelSpec:
    name: str
    provider: str
    capabilities: tuple[str, ...]
    context_window: int | None = None

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities


_DEFAULT_MODELS: dict[str, ModelSpec] = {
    "gemini-2.5-flash-image": ModelSpec(
        name="gemini-2.5-flash-image",
        provider="gemini",
        capabilities=("image", "edit"),
    ),
    "gemini-2.5-flash": ModelSpec(
        name="gemini-2.5-flash",
        provider="gemini",
        capabilities=("text", "vision", "search"),
        context_window=1_048_576,
    ),
    "gemini-2.5-pro": ModelSpec(
        name="gemini-2.5-pro",
        provider="gemini",
        capabilities=("structured", "search"),
        context_window=1_048_576,
    ),
    "gemini-2.5-flash-preview-tts": ModelSpec(
        name="gemini-2.5-flash-preview-tts",
        provider="gemini",
        capabilities=("speech",),
    ),
    "veo-2.0-generate-001": ModelSpec(
        name="veo-2.0-generate-001",
        provider="gemini",
        capabilities=("video",),
    ),
    "dryrun-media-1": ModelSpec(
        name="dryrun-media-1",
        provider="dryrun",
        capabilities=("image", "edit", "speech", "video"),
    ),
    "dryrun-text-1": ModelSpec(
        name="dryrun-text-1",
        provider="dryrun",
        capabilities=("text", "vision", "search", "structured"),
        context_window=8192,
    ),
}


class ModelRegistry:
    def __init__(self, models: Mapping[str, ModelSpec] | None = None) -> None:
        self._models = dict(models) if models else dict(_DEFAULT_MODELS)

    def get(self, name: str) -> ModelSpec | None:
        return self._models.get(name)

    def list(self) -> Iterable[ModelSpec]:
        return self._models.values()

    def by_capability(self, capability: str, provider: str | None = None) -> list[ModelSpec]:
        return [
            model
            for model in self._models.values()
            if model.supports(capability) and (provider is None or model.provider == provider)
        ]

    def resolve(self, capability: str, provider: str) -> str:
        """First registered model of `provider` with `capability`."""
        matches = self.by_capability(capability, provider)
        if not matches:
            raise KeyError(f"No {provider} model registered for capability '{capability}'.")
        return matches[0].name
