"""Provider adapter contract and result types."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable, Mapping, Protocol, Sequence

from ..credentials.store import Credential
from ..modes import GroundingSource, ImageData


@dataclass(frozen=True)
class GeneratedMedia:
    data: bytes
    mime_type: str

    def __repr__(self) -> str:
        return f"GeneratedMedia(mime_type={self.mime_type!r}, bytes={len(self.data)})"


@dataclass(frozen=True)
class LinkedRecipe:
    text: str
    sources: tuple[GroundingSource, ...] = ()
    image_url: str | None = None


@dataclass(frozen=True)
class StructuredArticle:
    content: str
    meta: Mapping[str, Any] = field(default_factory=dict)
    html: str = ""
    image_url: str | None = None


class OperationState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in {OperationState.DONE, OperationState.FAILED}


@dataclass(frozen=True)
class AsyncOperation:
    """Handle for a provider-side job that completes on the provider's schedule."""

    name: str
    state: OperationState = OperationState.SUBMITTED
    error: str | None = None
    polls: int = 0
    # Provider-native operation object; opaque to everything but the adapter.
    native: Any = field(default=None, compare=False, repr=False)

    def advanced(self, *, done: bool, error: str | None = None, native: Any = None) -> "AsyncOperation":
        if self.state.terminal:
            raise RuntimeError(f"Operation {self.name} already settled as {self.state.value}")
        if error:
            state = OperationState.FAILED
        elif done:
            state = OperationState.DONE
        else:
            state = OperationState.POLLING
        return replace(
            self,
            state=state,
            error=error,
            polls=self.polls + 1,
            native=native if native is not None else self.native,
        )


class ProviderAdapter(Protocol):
    name: str

    async def generate_image(self, credential: Credential, prompt: str, image: ImageData | None) -> GeneratedMedia:
        ...

    async def generate_product_shot(
        self,
        credential: Credential,
        prompt: str,
        product_images: Sequence[ImageData],
        inspiration: ImageData | None,
    ) -> list[GeneratedMedia]:
        ...

    async def analyze_image(self, credential: Credential, image: ImageData) -> str:
        ...

    async def generate_recipe(self, credential: Credential, prompt: str) -> str:
        ...

    async def generate_recipe_from_link(self, credential: Credential, url: str) -> LinkedRecipe:
        ...

    async def generate_recipe_card(self, credential: Credential, url: str) -> dict[str, Any]:
        ...

    async def generate_speech(self, credential: Credential, text: str, voice: str) -> GeneratedMedia:
        ...

    async def generate_structured_article(
        self,
        credential: Credential,
        url: str,
        keyword: str,
        language: str,
    ) -> StructuredArticle:
        ...

    async def translate_text(self, credential: Credential, text: str, target_language: str, stylize: bool) -> str:
        ...

    async def submit_video(self, credential: Credential, prompt: str, image: ImageData | None) -> AsyncOperation:
        ...

    async def poll_video(self, credential: Credential, operation: AsyncOperation) -> AsyncOperation:
        ...

    async def download_video(self, credential: Credential, operation: AsyncOperation) -> GeneratedMedia:
        ...


class AdapterRegistry:
    def __init__(self, adapters: Iterable[ProviderAdapter]) -> None:
        self._adapters = {adapter.name: adapter for adapter in adapters}

    def get(self, name: str) -> ProviderAdapter | None:
        return self._adapters.get(name)

    def list(self) -> list[str]:
        return sorted(self._adapters.keys())
