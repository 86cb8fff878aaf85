"""Core Prism engine orchestration."""

from __future__ import annotations

import asyncio
import json
import random
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .config import SessionConfig
from .credentials.store import REVOKED_MESSAGE, Credential, CredentialStore
from .history.log import HistoryItem, HistoryLog, select_for_replay
from .modes import (
    RESELECT_CREDENTIAL,
    AssetKind,
    ErrorNotice,
    ImageData,
    Mode,
    ModeState,
    OutputSlot,
)
from .prompts import assemble_image_prompt
from .providers import default_registry
from .providers.base import AdapterRegistry, AsyncOperation, GeneratedMedia, OperationState, ProviderAdapter
from .providers.errors import AuthOrQuotaError, ProviderError, UserInputError, classify_provider_error
from .runs.events import EventWriter
from .runs.requests import GenerationRequest
from .session.assets import AssetRegistry, AssetSlots
from .session.state import SessionStateStore
from .storage.local_store import LocalStore
from .utils import data_uri, is_valid_url, now_utc_iso


SlotKey = tuple[Mode, OutputSlot]
Sleep = Callable[[float], Awaitable[Any]]
# Applies a fresh result: returns the state changes and an optional history record.
Applier = Callable[[SlotKey, Any], "tuple[dict[str, Any], HistoryItem | None]"]

MISSING_CREDENTIAL_MESSAGE = "API key is not set."
VIDEO_FAILED_MESSAGE = "Video generation failed."

_FLAG_FOR_SLOT = {
    OutputSlot.MAIN: "is_loading",
    OutputSlot.TRANSLATION: "is_translating",
    OutputSlot.SUGGESTION: "is_analyzing",
}

_MAIN_RESET = {"asset_urls": (), "asset_kind": None}


@dataclass(frozen=True)
class Settlement:
    request: GenerationRequest
    ok: bool
    applied: bool
    error: ErrorNotice | None = None


class OrchestrationEngine:
    def __init__(
        self,
        adapter: ProviderAdapter,
        credentials: CredentialStore,
        state: SessionStateStore,
        history: HistoryLog,
        events: EventWriter,
        assets: AssetRegistry | None = None,
        poll_interval_s: float = 10.0,
        sleep: Sleep | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.adapter = adapter
        self.credentials = credentials
        self.state = state
        self.history = history
        self.events = events
        self.assets = assets or AssetRegistry()
        self.slots = AssetSlots(self.assets)
        self.poll_interval_s = poll_interval_s
        self._sleep: Sleep = sleep or asyncio.sleep
        self.rng = rng or random.Random()
        self._issued: dict[SlotKey, int] = defaultdict(int)
        self._applied: dict[SlotKey, int] = defaultdict(int)
        self._inflight: dict[SlotKey, int] = defaultdict(int)
        # Slot and ticket of the failure currently shown per mode.
        self._error_owner: dict[Mode, tuple[OutputSlot, int]] = {}
        self._finished = False
        self._handlers: dict[Mode, Callable[[Mode], Awaitable[list[Settlement]]]] = {
            Mode.IMAGE: self._run_image,
            Mode.VIDEO: self._run_video,
            Mode.RECIPE: self._run_recipe,
            Mode.RECIPE_FROM_LINK: self._run_recipe_from_link,
            Mode.RECIPE_CARD: self._run_recipe_card,
            Mode.SPEECH: self._run_speech,
            Mode.PRODUCT_SHOT: self._run_product_shot,
            Mode.STRUCTURED_ARTICLE: self._run_structured_article,
        }
        missing = [mode.value for mode in Mode if mode not in self._handlers]
        if missing:
            raise RuntimeError(f"No generation handler for modes: {missing}")
        self.started_at: str | None = None

    def start(self) -> None:
        """Read the durable credential and history once, at session start."""
        self.credentials.load()
        self.history.load()
        self._finished = False
        self.started_at = now_utc_iso()
        self.events.emit(
            "session_started",
            provider=getattr(self.adapter, "name", None),
            has_credential=self.credentials.get() is not None,
            history_items=len(self.history),
        )

    def finish(self) -> None:
        self._finished = True
        released = self.slots.release_all()
        self.events.emit("session_finished", released_handles=released, live_handles=len(self.assets.live()))

    def switch_mode(self, mode: Mode) -> None:
        previous = self.state.active_mode
        self.state.switch_mode(mode)
        if previous is not self.state.active_mode:
            self.events.emit("mode_switched", previous=previous.value, mode=self.state.active_mode.value)

    async def run(self, mode: Mode | None = None) -> list[Settlement]:
        target = Mode(mode) if mode is not None else self.state.active_mode
        return await self._handlers[target](target)

    async def attach_image(self, mode: Mode, image: ImageData | None) -> Settlement | None:
        self.state.update_mode_state(mode, single_image=image)
        return await self.analyze(mode)

    async def analyze(self, mode: Mode = Mode.IMAGE) -> Settlement | None:
        """Ask the provider which person would fit the current source image."""
        state = self.state.get(mode)
        if mode is not Mode.IMAGE or state.single_image is None:
            self.state.update_mode_state(mode, contextual_person_suggestion=None)
            return None
        credential = self._require_credential(mode)
        if credential is None:
            return None
        image = state.single_image

        def apply(key: SlotKey, suggestion: str) -> tuple[dict[str, Any], HistoryItem | None]:
            return {"contextual_person_suggestion": suggestion}, None

        return await self._dispatch(
            mode,
            OutputSlot.SUGGESTION,
            "analyze_image",
            credential,
            lambda cred: self.adapter.analyze_image(cred, image),
            apply,
            reset={"contextual_person_suggestion": None},
        )

    def replay(self, item: HistoryItem) -> ModeState:
        mode = item.mode
        key = (mode, item.slot)
        live = self.slots.current(key)
        if live is not None and live.uri not in item.asset_urls:
            self.slots.assign(key, None)
        # Replay counts as the newest write to the slot.
        self._issued[key] += 1
        self._applied[key] = self._issued[key]
        current = self.state.get(mode)
        self._error_owner.pop(mode, None)
        restored = select_for_replay(item).merged(
            is_loading=current.is_loading,
            is_analyzing=current.is_analyzing,
            is_translating=current.is_translating,
            selected_voice=current.selected_voice,
        )
        self.state.replace_mode_state(mode, restored)
        self.switch_mode(mode)
        return restored

    def clear_history(self) -> None:
        self.history.clear()

    # -- mode handlers -------------------------------------------------

    async def _run_image(self, mode: Mode) -> list[Settlement]:
        state = self.state.get(mode)
        has_edit_flag = state.add_person or state.remove_text or state.similarity is not None
        wants_image = bool(state.prompt.strip()) or (state.single_image is not None and has_edit_flag)
        wants_translation = bool(state.text_to_translate.strip())
        if not (wants_image or wants_translation):
            return self._guard_failed(
                mode,
                "Please enter a prompt, upload an image with an edit option, or enter text to translate.",
            )
        credential = self._require_credential(mode)
        if credential is None:
            return []

        jobs: list[Awaitable[Settlement]] = []
        if wants_image:
            final_prompt = assemble_image_prompt(state, self.rng)
            image = state.single_image

            def apply_image(key: SlotKey, media: GeneratedMedia) -> tuple[dict[str, Any], HistoryItem | None]:
                urls = (data_uri(media.data, media.mime_type),)
                return _main_output(urls, AssetKind.IMAGE), HistoryItem(
                    mode=mode, prompt=state.prompt, asset_urls=urls, asset_kind=AssetKind.IMAGE
                )

            jobs.append(
                self._dispatch(
                    mode,
                    OutputSlot.MAIN,
                    "generate_image",
                    credential,
                    lambda cred: self.adapter.generate_image(cred, final_prompt, image),
                    apply_image,
                    payload={"prompt": final_prompt, "has_image": image is not None},
                    reset=_MAIN_RESET,
                )
            )
        if wants_translation:
            text = state.text_to_translate
            language = state.target_language
            stylize = state.stylize_and_correct

            def apply_translation(key: SlotKey, translated: str) -> tuple[dict[str, Any], HistoryItem | None]:
                return {"translation_result": translated}, HistoryItem(
                    mode=mode,
                    slot=OutputSlot.TRANSLATION,
                    prompt=text,
                    translation_result=translated,
                    target_language=language,
                )

            jobs.append(
                self._dispatch(
                    mode,
                    OutputSlot.TRANSLATION,
                    "translate_text",
                    credential,
                    lambda cred: self.adapter.translate_text(cred, text, language, stylize),
                    apply_translation,
                    payload={"target_language": language, "stylize": stylize},
                    reset={"translation_result": None},
                )
            )
        return list(await asyncio.gather(*jobs))

    async def _run_video(self, mode: Mode) -> list[Settlement]:
        state = self.state.get(mode)
        if not state.prompt.strip():
            return self._guard_failed(mode, "Please enter a prompt to generate a video.")
        credential = self._require_credential(mode)
        if credential is None:
            return []
        prompt = state.prompt.strip()
        image = state.single_image

        async def call(cred: Credential) -> GeneratedMedia:
            operation = await self.adapter.submit_video(cred, prompt, image)
            operation = await self._poll_until_settled(mode, cred, operation)
            if operation.state is OperationState.FAILED:
                raise classify_provider_error(RuntimeError(operation.error or VIDEO_FAILED_MESSAGE))
            return await self.adapter.download_video(cred, operation)

        return [
            await self._dispatch(
                mode,
                OutputSlot.MAIN,
                "generate_video",
                credential,
                call,
                self._media_applier(mode, state.prompt, AssetKind.VIDEO),
                payload={"prompt": prompt, "has_image": image is not None},
                reset=_MAIN_RESET,
            )
        ]

    async def _run_recipe(self, mode: Mode) -> list[Settlement]:
        state = self.state.get(mode)
        if not state.prompt.strip():
            return self._guard_failed(mode, "Please enter a prompt to generate a recipe.")
        credential = self._require_credential(mode)
        if credential is None:
            return []
        prompt = state.prompt.strip()
        return [
            await self._dispatch(
                mode,
                OutputSlot.MAIN,
                "generate_recipe",
                credential,
                lambda cred: self.adapter.generate_recipe(cred, prompt),
                self._text_applier(mode, state.prompt, AssetKind.RECIPE),
                payload={"prompt": prompt},
                reset=_MAIN_RESET,
            )
        ]

    async def _run_recipe_from_link(self, mode: Mode) -> list[Settlement]:
        state = self.state.get(mode)
        url = state.prompt.strip()
        if not is_valid_url(url):
            return self._guard_failed(mode, "Please enter a valid URL to extract a recipe.")
        credential = self._require_credential(mode)
        if credential is None:
            return []

        def apply(key: SlotKey, recipe: Any) -> tuple[dict[str, Any], HistoryItem | None]:
            urls = (recipe.text,)
            changes = _main_output(urls, AssetKind.RECIPE)
            changes.update(sources=recipe.sources, cover_image_url=recipe.image_url)
            return changes, HistoryItem(
                mode=mode,
                prompt=state.prompt,
                asset_urls=urls,
                asset_kind=AssetKind.RECIPE,
                sources=recipe.sources,
                cover_image_url=recipe.image_url,
            )

        return [
            await self._dispatch(
                mode,
                OutputSlot.MAIN,
                "generate_recipe_from_link",
                credential,
                lambda cred: self.adapter.generate_recipe_from_link(cred, url),
                apply,
                payload={"url": url},
                reset={**_MAIN_RESET, "sources": (), "cover_image_url": None},
            )
        ]

    async def _run_recipe_card(self, mode: Mode) -> list[Settlement]:
        state = self.state.get(mode)
        url = state.prompt.strip()
        if not is_valid_url(url):
            return self._guard_failed(mode, "Please enter a valid URL to build a recipe card.")
        credential = self._require_credential(mode)
        if credential is None:
            return []

        def apply(key: SlotKey, card: dict[str, Any]) -> tuple[dict[str, Any], HistoryItem | None]:
            urls = (json.dumps(card, ensure_ascii=False),)
            cover = card.get("imageUrl") if is_valid_url(card.get("imageUrl")) else None
            changes = _main_output(urls, AssetKind.RECIPE_CARD)
            changes["cover_image_url"] = cover
            return changes, HistoryItem(
                mode=mode,
                prompt=state.prompt,
                asset_urls=urls,
                asset_kind=AssetKind.RECIPE_CARD,
                cover_image_url=cover,
            )

        return [
            await self._dispatch(
                mode,
                OutputSlot.MAIN,
                "generate_recipe_card",
                credential,
                lambda cred: self.adapter.generate_recipe_card(cred, url),
                apply,
                payload={"url": url},
                reset={**_MAIN_RESET, "cover_image_url": None},
            )
        ]

    async def _run_speech(self, mode: Mode) -> list[Settlement]:
        state = self.state.get(mode)
        if not state.prompt.strip():
            return self._guard_failed(mode, "Please enter text to generate speech.")
        credential = self._require_credential(mode)
        if credential is None:
            return []
        text = state.prompt.strip()
        voice = state.selected_voice
        return [
            await self._dispatch(
                mode,
                OutputSlot.MAIN,
                "generate_speech",
                credential,
                lambda cred: self.adapter.generate_speech(cred, text, voice),
                self._media_applier(mode, state.prompt, AssetKind.AUDIO),
                payload={"voice": voice, "chars": len(text)},
                reset=_MAIN_RESET,
            )
        ]

    async def _run_product_shot(self, mode: Mode) -> list[Settlement]:
        state = self.state.get(mode)
        if not state.product_images:
            return self._guard_failed(mode, "Please upload one or more product images.")
        credential = self._require_credential(mode)
        if credential is None:
            return []
        prompt = state.prompt.strip()
        products = state.product_images
        inspiration = state.inspiration_image

        def apply(key: SlotKey, shots: list[GeneratedMedia]) -> tuple[dict[str, Any], HistoryItem | None]:
            urls = tuple(data_uri(shot.data, shot.mime_type) for shot in shots)
            return _main_output(urls, AssetKind.PRODUCT_SHOT), HistoryItem(
                mode=mode, prompt=state.prompt, asset_urls=urls, asset_kind=AssetKind.PRODUCT_SHOT
            )

        return [
            await self._dispatch(
                mode,
                OutputSlot.MAIN,
                "generate_product_shot",
                credential,
                lambda cred: self.adapter.generate_product_shot(cred, prompt, products, inspiration),
                apply,
                payload={"products": len(products), "has_inspiration": inspiration is not None},
                reset=_MAIN_RESET,
            )
        ]

    async def _run_structured_article(self, mode: Mode) -> list[Settlement]:
        state = self.state.get(mode)
        url = state.prompt.strip()
        if not is_valid_url(url):
            return self._guard_failed(mode, "Please enter a valid URL to write an article from.")
        keyword = state.primary_keyword.strip()
        if not keyword:
            return self._guard_failed(mode, "Please enter a primary keyword for the article.")
        credential = self._require_credential(mode)
        if credential is None:
            return []
        language = state.article_language

        def apply(key: SlotKey, article: Any) -> tuple[dict[str, Any], HistoryItem | None]:
            urls = (article.content,)
            changes = _main_output(urls, AssetKind.ARTICLE)
            changes["cover_image_url"] = article.image_url
            return changes, HistoryItem(
                mode=mode,
                prompt=state.prompt,
                asset_urls=urls,
                asset_kind=AssetKind.ARTICLE,
                cover_image_url=article.image_url,
            )

        return [
            await self._dispatch(
                mode,
                OutputSlot.MAIN,
                "generate_structured_article",
                credential,
                lambda cred: self.adapter.generate_structured_article(cred, url, keyword, language),
                apply,
                payload={"url": url, "keyword": keyword, "language": language},
                reset={**_MAIN_RESET, "cover_image_url": None},
            )
        ]

    # -- shared machinery ----------------------------------------------

    def _media_applier(self, mode: Mode, prompt: str, kind: AssetKind) -> Applier:
        def apply(key: SlotKey, media: GeneratedMedia) -> tuple[dict[str, Any], HistoryItem | None]:
            handle = self.assets.create(media.data, media.mime_type)
            self.slots.assign(key, handle)
            urls = (handle.uri,)
            return _main_output(urls, kind), HistoryItem(mode=mode, prompt=prompt, asset_urls=urls, asset_kind=kind)

        return apply

    def _text_applier(self, mode: Mode, prompt: str, kind: AssetKind) -> Applier:
        def apply(key: SlotKey, text: str) -> tuple[dict[str, Any], HistoryItem | None]:
            urls = (text,)
            return _main_output(urls, kind), HistoryItem(mode=mode, prompt=prompt, asset_urls=urls, asset_kind=kind)

        return apply

    async def _poll_until_settled(self, mode: Mode, credential: Credential, operation: AsyncOperation) -> AsyncOperation:
        while not operation.state.terminal:
            await self._sleep(self.poll_interval_s)
            operation = await self.adapter.poll_video(credential, operation)
            self.events.emit(
                "video_polled",
                mode=mode.value,
                operation=operation.name,
                state=operation.state.value,
                polls=operation.polls,
            )
        return operation

    async def _dispatch(
        self,
        mode: Mode,
        slot: OutputSlot,
        operation: str,
        credential: Credential,
        call: Callable[[Credential], Awaitable[Any]],
        apply: Applier,
        payload: dict[str, Any] | None = None,
        reset: dict[str, Any] | None = None,
    ) -> Settlement:
        key = (mode, slot)
        self._issued[key] += 1
        request = GenerationRequest(
            mode=mode,
            operation=operation,
            slot=slot,
            credential=credential,
            ticket=self._issued[key],
            payload=payload or {},
        )
        self._begin(request, reset or {})
        self.events.emit("generation_dispatched", **request.describe())
        try:
            result = await call(credential)
        except Exception as exc:
            return self._settle_failure(request, classify_provider_error(exc))
        return self._settle_success(request, result, apply)

    def _begin(self, request: GenerationRequest, reset: dict[str, Any]) -> None:
        key = (request.mode, request.slot)
        self._inflight[key] += 1
        if request.slot is OutputSlot.MAIN:
            self.slots.assign(key, None)
        self._error_owner.pop(request.mode, None)
        self.state.update_mode_state(request.mode, error=None, **{_FLAG_FOR_SLOT[request.slot]: True}, **reset)

    def _settle_success(self, request: GenerationRequest, result: Any, apply: Applier) -> Settlement:
        key = (request.mode, request.slot)
        flags = self._release_inflight(key)
        if self._finished:
            self.state.update_mode_state(request.mode, **flags)
            self.events.emit("generation_discarded", outcome="finished", **request.describe())
            return Settlement(request=request, ok=True, applied=False)
        if request.ticket <= self._applied[key]:
            self.state.update_mode_state(request.mode, **flags)
            self.events.emit("generation_discarded", outcome="success", **request.describe())
            return Settlement(request=request, ok=True, applied=False)
        self._applied[key] = request.ticket
        changes, item = apply(key, result)
        owner = self._error_owner.get(request.mode)
        if owner is not None and owner[0] is request.slot and owner[1] < request.ticket:
            del self._error_owner[request.mode]
            changes["error"] = None
        self.state.update_mode_state(request.mode, **flags, **changes)
        self.credentials.mark_validated(request.credential)
        if item is not None:
            self.history.append(item)
        self.events.emit("generation_succeeded", **request.describe())
        return Settlement(request=request, ok=True, applied=True)

    def _settle_failure(self, request: GenerationRequest, error: ProviderError) -> Settlement:
        key = (request.mode, request.slot)
        flags = self._release_inflight(key)
        if request.ticket <= self._applied[key]:
            self.state.update_mode_state(request.mode, **flags)
            self.events.emit("generation_discarded", outcome=error.kind, **request.describe())
            return Settlement(request=request, ok=False, applied=False)
        self._applied[key] = request.ticket
        notice = self._react(request, error)
        self._error_owner[request.mode] = (request.slot, request.ticket)
        self.state.update_mode_state(request.mode, error=notice, **flags)
        self.events.emit("generation_failed", kind=error.kind, message=error.message, **request.describe())
        return Settlement(request=request, ok=False, applied=True, error=notice)

    def _react(self, request: GenerationRequest, error: ProviderError) -> ErrorNotice:
        if isinstance(error, AuthOrQuotaError):
            # A newer key supplied while this call was in flight stays untouched.
            if self.credentials.is_current(request.credential):
                self.credentials.invalidate(error.message)
            if self.credentials.get() is None:
                return ErrorNotice(REVOKED_MESSAGE, action=RESELECT_CREDENTIAL, kind=error.kind)
        return ErrorNotice(error.message, kind=error.kind)

    def _release_inflight(self, key: SlotKey) -> dict[str, Any]:
        self._inflight[key] = max(0, self._inflight[key] - 1)
        return {_FLAG_FOR_SLOT[key[1]]: self._inflight[key] > 0}

    def _require_credential(self, mode: Mode) -> Credential | None:
        credential = self.credentials.get()
        if credential is None:
            self.state.update_mode_state(
                mode,
                error=ErrorNotice(MISSING_CREDENTIAL_MESSAGE, action=RESELECT_CREDENTIAL, kind=AuthOrQuotaError.kind),
            )
        return credential

    def _guard_failed(self, mode: Mode, message: str) -> list[Settlement]:
        self.state.update_mode_state(mode, error=ErrorNotice(message, kind=UserInputError.kind))
        return []


def _main_output(urls: tuple[str, ...], kind: AssetKind) -> dict[str, Any]:
    return {"asset_urls": urls, "asset_kind": kind}


def open_session(
    config: SessionConfig,
    adapters: AdapterRegistry | None = None,
    *,
    sleep: Sleep | None = None,
) -> OrchestrationEngine:
    """Wire the owned stores for one session and start it."""
    registry = adapters or default_registry()
    adapter = registry.get(config.provider)
    if adapter is None:
        raise ValueError(f"Unknown provider '{config.provider}'. Available: {', '.join(registry.list())}")
    store = LocalStore(config.store_path)
    store.init_db()
    events = EventWriter(config.events_path, uuid.uuid4().hex, enabled=config.events_enabled)

    def forward(event_type: str, payload: dict) -> None:
        events.emit(event_type, **payload)

    engine = OrchestrationEngine(
        adapter=adapter,
        credentials=CredentialStore(store, on_change=forward),
        state=SessionStateStore(),
        history=HistoryLog(store, capacity=config.history_capacity, on_change=forward),
        events=events,
        poll_interval_s=config.poll_interval_s,
        sleep=sleep,
    )
    engine.start()
    return engine
