from __future__ import annotations

import asyncio
import random
from pathlib import Path
from typing import Any

import pytest

from prism_engine.credentials.store import REVOKED_MESSAGE, CredentialNotice, CredentialStore
from prism_engine.engine import MISSING_CREDENTIAL_MESSAGE, OrchestrationEngine
from prism_engine.history.log import HistoryLog
from prism_engine.modes import RESELECT_CREDENTIAL, AssetKind, ImageData, Mode, OutputSlot
from prism_engine.providers.base import AsyncOperation, GeneratedMedia, LinkedRecipe, StructuredArticle
from prism_engine.providers.errors import AuthOrQuotaError, TransientProviderError, UserInputError
from prism_engine.runs.events import EventWriter, read_events
from prism_engine.session.state import SessionStateStore
from prism_engine.storage.local_store import LocalStore


SECRET = "sk-test-secret-0001"


class FakeAdapter:
    name = "fake"

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.secrets: list[str] = []
        self.gates: dict[str, list[asyncio.Event]] = {}
        self.errors: dict[str, Exception] = {}
        self.poll_states = [False, False, True]
        self.video_error: str | None = None

    async def _enter(self, op: str, credential, *args: Any) -> None:
        self.calls.append((op, args))
        self.secrets.append(credential.secret)
        pending = self.gates.get(op)
        if pending:
            await pending.pop(0).wait()
        if op in self.errors:
            raise self.errors[op]

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]

    async def generate_image(self, credential, prompt, image):
        await self._enter("generate_image", credential, prompt, image is not None)
        return GeneratedMedia(data=f"png:{prompt}".encode(), mime_type="image/png")

    async def generate_product_shot(self, credential, prompt, product_images, inspiration):
        await self._enter("generate_product_shot", credential, prompt, len(product_images))
        return [GeneratedMedia(data=b"shot", mime_type="image/png") for _ in product_images]

    async def analyze_image(self, credential, image):
        await self._enter("analyze_image", credential)
        return "a person reading a newspaper"

    async def generate_recipe(self, credential, prompt):
        await self._enter("generate_recipe", credential, prompt)
        return f"Recipe: {prompt}"

    async def generate_recipe_from_link(self, credential, url):
        await self._enter("generate_recipe_from_link", credential, url)
        return LinkedRecipe(text=f"Recipe from {url}")

    async def generate_recipe_card(self, credential, url):
        await self._enter("generate_recipe_card", credential, url)
        return {"title": "Card", "imageUrl": "https://example.com/card.jpg"}

    async def generate_speech(self, credential, text, voice):
        await self._enter("generate_speech", credential, text, voice)
        return GeneratedMedia(data=f"wav:{text}".encode(), mime_type="audio/wav")

    async def generate_structured_article(self, credential, url, keyword, language):
        await self._enter("generate_structured_article", credential, url, keyword, language)
        return StructuredArticle(content='{"title": "Article"}', image_url=None)

    async def translate_text(self, credential, text, target_language, stylize):
        await self._enter("translate_text", credential, text, target_language, stylize)
        return f"[{target_language}] {text}"

    async def submit_video(self, credential, prompt, image):
        await self._enter("submit_video", credential, prompt)
        return AsyncOperation(name="operations/fake-video")

    async def poll_video(self, credential, operation):
        await self._enter("poll_video", credential, operation.polls)
        if self.video_error:
            return operation.advanced(done=True, error=self.video_error)
        return operation.advanced(done=self.poll_states[operation.polls])

    async def download_video(self, credential, operation):
        await self._enter("download_video", credential, operation.name)
        return GeneratedMedia(data=b"mp4", mime_type="video/mp4")


def _engine(tmp_path: Path, adapter: FakeAdapter, secret: str | None = SECRET, sleep=None) -> OrchestrationEngine:
    store = LocalStore(tmp_path / "store.sqlite")
    store.init_db()
    events = EventWriter(tmp_path / "events.jsonl", "session-test")

    def forward(event_type: str, payload: dict) -> None:
        events.emit(event_type, **payload)

    credentials = CredentialStore(store, on_change=forward)
    if secret:
        credentials.save(secret)
    engine = OrchestrationEngine(
        adapter=adapter,
        credentials=credentials,
        state=SessionStateStore(),
        history=HistoryLog(store, on_change=forward),
        events=events,
        sleep=sleep,
        rng=random.Random(7),
    )
    engine.start()
    return engine


async def _until(predicate, limit: int = 500) -> None:
    for _ in range(limit):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def test_every_mode_has_a_handler(tmp_path: Path) -> None:
    engine = _engine(tmp_path, FakeAdapter())
    assert set(engine._handlers) == set(Mode)


def test_plain_prompt_issues_exactly_one_image_call(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(Mode.IMAGE, prompt="a red bicycle")

    settlements = asyncio.run(engine.run())

    assert adapter.calls == [("generate_image", ("a red bicycle", False))]
    assert [s.applied for s in settlements] == [True]
    state = engine.state.get(Mode.IMAGE)
    assert state.asset_kind is AssetKind.IMAGE
    assert len(state.asset_urls) == 1 and state.asset_urls[0].startswith("data:image/png;base64,")
    assert state.is_loading is False
    assert state.error is None
    assert [item.prompt for item in engine.history.items] == ["a red bicycle"]
    assert engine.credentials.get().validated is True


@pytest.mark.parametrize("first", ["generate_image", "translate_text"])
def test_image_and_translation_settle_independently(tmp_path: Path, first: str) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(
        Mode.IMAGE, prompt="a lighthouse", text_to_translate="good evening", target_language="French"
    )
    flags = {"generate_image": "is_loading", "translate_text": "is_translating"}
    second = next(op for op in flags if op != first)

    async def scenario() -> None:
        gates = {op: asyncio.Event() for op in flags}
        for op, gate in gates.items():
            adapter.gates[op] = [gate]
        task = asyncio.create_task(engine.run(Mode.IMAGE))
        await _until(lambda: len(adapter.calls) == 2)
        state = engine.state.get(Mode.IMAGE)
        assert state.is_loading and state.is_translating

        gates[first].set()
        await _until(lambda: not getattr(engine.state.get(Mode.IMAGE), flags[first]))
        assert getattr(engine.state.get(Mode.IMAGE), flags[second]) is True

        gates[second].set()
        await task

    asyncio.run(scenario())

    state = engine.state.get(Mode.IMAGE)
    assert state.is_loading is False and state.is_translating is False
    assert state.translation_result == "[French] good evening"
    assert state.asset_kind is AssetKind.IMAGE
    slots = sorted(item.slot.value for item in engine.history.items)
    assert slots == [OutputSlot.MAIN.value, OutputSlot.TRANSLATION.value]


def test_translation_only_skips_image_call(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(Mode.IMAGE, text_to_translate="thank you", stylize_and_correct=True)
    asyncio.run(engine.run(Mode.IMAGE))
    assert adapter.calls == [("translate_text", ("thank you", "Spanish", True))]
    assert engine.state.get(Mode.IMAGE).asset_urls == ()


def test_auth_failure_invalidates_and_blocks_until_new_key(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    adapter.errors["generate_image"] = AuthOrQuotaError("Quota exceeded for this project.")
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(Mode.IMAGE, prompt="a harbour at dawn")

    asyncio.run(engine.run())

    state = engine.state.get(Mode.IMAGE)
    assert state.prompt == "a harbour at dawn"
    assert state.error.message == REVOKED_MESSAGE
    assert state.error.action == RESELECT_CREDENTIAL
    assert engine.credentials.get() is None
    assert engine.credentials.notice.notice is CredentialNotice.REVOKED_BY_PROVIDER

    asyncio.run(engine.run())
    assert adapter.ops() == ["generate_image"]
    assert engine.state.get(Mode.IMAGE).error.message == MISSING_CREDENTIAL_MESSAGE

    del adapter.errors["generate_image"]
    engine.credentials.save("sk-replacement-0002")
    asyncio.run(engine.run())
    assert adapter.ops() == ["generate_image", "generate_image"]
    assert adapter.secrets[-1] == "sk-replacement-0002"
    assert engine.state.get(Mode.IMAGE).error is None


def test_key_replaced_mid_flight_survives_old_auth_failure(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(Mode.RECIPE, prompt="ramen")

    async def scenario() -> None:
        gate = asyncio.Event()
        adapter.gates["generate_recipe"] = [gate]
        task = asyncio.create_task(engine.run(Mode.RECIPE))
        await _until(lambda: len(adapter.calls) == 1)
        engine.credentials.save("sk-replacement-0002")
        adapter.errors["generate_recipe"] = AuthOrQuotaError("API key not valid.")
        gate.set()
        await task

    asyncio.run(scenario())

    assert engine.credentials.get().secret == "sk-replacement-0002"
    assert engine.credentials.notice is None
    error = engine.state.get(Mode.RECIPE).error
    assert error.message == "API key not valid."
    assert error.action is None


def test_user_input_error_keeps_credential(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    adapter.errors["generate_recipe_from_link"] = UserInputError("No recipe found at that address.")
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(Mode.RECIPE_FROM_LINK, prompt="https://example.com/blog")

    asyncio.run(engine.run(Mode.RECIPE_FROM_LINK))

    state = engine.state.get(Mode.RECIPE_FROM_LINK)
    assert state.error.kind == UserInputError.kind
    assert state.error.message == "No recipe found at that address."
    assert state.prompt == "https://example.com/blog"
    assert engine.credentials.get().secret == SECRET
    assert len(engine.history) == 0


def test_video_polls_until_done(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    engine = _engine(tmp_path, adapter, sleep=fake_sleep)
    engine.state.update_mode_state(Mode.VIDEO, prompt="waves at night")

    asyncio.run(engine.run(Mode.VIDEO))

    assert adapter.ops() == ["submit_video", "poll_video", "poll_video", "poll_video", "download_video"]
    assert sleeps == [10.0, 10.0, 10.0]
    state = engine.state.get(Mode.VIDEO)
    assert state.asset_kind is AssetKind.VIDEO
    assert state.asset_urls[0].startswith("blob:prism/")
    assert engine.assets.resolve(state.asset_urls[0]) == b"mp4"
    assert state.is_loading is False
    assert len(engine.history) == 1
    polled = [event for event in read_events(tmp_path / "events.jsonl") if event["type"] == "video_polled"]
    assert [event["polls"] for event in polled] == [1, 2, 3]


def test_video_failure_message_is_shown(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    adapter.video_error = "The prompt could not be rendered as a clip."

    async def fake_sleep(seconds: float) -> None:
        return None

    engine = _engine(tmp_path, adapter, sleep=fake_sleep)
    engine.state.update_mode_state(Mode.VIDEO, prompt="waves at night")

    asyncio.run(engine.run(Mode.VIDEO))

    assert "download_video" not in adapter.ops()
    state = engine.state.get(Mode.VIDEO)
    assert state.error.message == "The prompt could not be rendered as a clip."
    assert state.asset_urls == ()
    assert engine.credentials.get() is not None


def test_stale_result_is_discarded(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)

    async def scenario():
        slow = asyncio.Event()
        adapter.gates["generate_recipe"] = [slow]
        engine.state.update_mode_state(Mode.RECIPE, prompt="first")
        first = asyncio.create_task(engine.run(Mode.RECIPE))
        await _until(lambda: len(adapter.calls) == 1)
        engine.state.update_mode_state(Mode.RECIPE, prompt="second")
        second = await engine.run(Mode.RECIPE)
        assert engine.state.get(Mode.RECIPE).is_loading is True
        slow.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert second[0].applied is True
    assert first[0].applied is False
    state = engine.state.get(Mode.RECIPE)
    assert state.asset_urls == ("Recipe: second",)
    assert state.is_loading is False
    assert [item.prompt for item in engine.history.items] == ["second"]


def test_newer_success_clears_older_failure(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)

    async def scenario() -> None:
        first_gate, second_gate = asyncio.Event(), asyncio.Event()
        adapter.gates["generate_recipe"] = [first_gate, second_gate]
        engine.state.update_mode_state(Mode.RECIPE, prompt="first")
        first = asyncio.create_task(engine.run(Mode.RECIPE))
        await _until(lambda: len(adapter.calls) == 1)
        engine.state.update_mode_state(Mode.RECIPE, prompt="second")
        second = asyncio.create_task(engine.run(Mode.RECIPE))
        await _until(lambda: len(adapter.calls) == 2)

        adapter.errors["generate_recipe"] = TransientProviderError("server overloaded")
        first_gate.set()
        await first
        assert engine.state.get(Mode.RECIPE).error.message == "server overloaded"

        del adapter.errors["generate_recipe"]
        second_gate.set()
        await second

    asyncio.run(scenario())

    state = engine.state.get(Mode.RECIPE)
    assert state.asset_urls == ("Recipe: second",)
    assert state.error is None
    assert state.is_loading is False


def test_main_success_keeps_translation_failure(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    adapter.errors["translate_text"] = TransientProviderError("translation backend unavailable")
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(Mode.IMAGE, prompt="a lighthouse", text_to_translate="good evening")

    async def scenario() -> None:
        gate = asyncio.Event()
        adapter.gates["generate_image"] = [gate]
        task = asyncio.create_task(engine.run(Mode.IMAGE))
        await _until(lambda: not engine.state.get(Mode.IMAGE).is_translating and len(adapter.calls) == 2)
        gate.set()
        await task

    asyncio.run(scenario())

    state = engine.state.get(Mode.IMAGE)
    assert state.asset_kind is AssetKind.IMAGE
    assert state.error.message == "translation backend unavailable"


def test_results_settling_after_finish_are_dropped(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(Mode.SPEECH, prompt="late line")

    async def scenario():
        gate = asyncio.Event()
        adapter.gates["generate_speech"] = [gate]
        task = asyncio.create_task(engine.run(Mode.SPEECH))
        await _until(lambda: len(adapter.calls) == 1)
        engine.finish()
        gate.set()
        return await task

    settlements = asyncio.run(scenario())

    assert settlements[0].applied is False
    assert engine.assets.created == 0
    assert engine.assets.live() == []
    assert engine.state.get(Mode.SPEECH).is_loading is False
    assert len(engine.history) == 0


@pytest.mark.parametrize("mode", list(Mode))
def test_guards_reject_empty_input_without_calling(tmp_path: Path, mode: Mode) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    assert asyncio.run(engine.run(mode)) == []
    assert adapter.calls == []
    assert engine.state.get(mode).error.kind == UserInputError.kind


def test_image_with_edit_flag_needs_no_prompt(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(
        Mode.IMAGE, single_image=ImageData(data=b"img", mime_type="image/png"), remove_text=True
    )
    asyncio.run(engine.run(Mode.IMAGE))
    assert adapter.calls == [("generate_image", ("remove any text from the image", True))]


def test_article_requires_keyword(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(Mode.STRUCTURED_ARTICLE, prompt="https://example.com/post")
    asyncio.run(engine.run(Mode.STRUCTURED_ARTICLE))
    assert adapter.calls == []
    engine.state.update_mode_state(Mode.STRUCTURED_ARTICLE, primary_keyword="sourdough")
    asyncio.run(engine.run(Mode.STRUCTURED_ARTICLE))
    assert adapter.calls == [
        ("generate_structured_article", ("https://example.com/post", "sourdough", "Spanish")),
    ]


def test_missing_credential_blocks_dispatch(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter, secret=None)
    engine.state.update_mode_state(Mode.RECIPE, prompt="ramen")
    asyncio.run(engine.run(Mode.RECIPE))
    assert adapter.calls == []
    error = engine.state.get(Mode.RECIPE).error
    assert error.message == MISSING_CREDENTIAL_MESSAGE
    assert error.action == RESELECT_CREDENTIAL


def test_speech_handles_are_released_on_replacement(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    for idx in range(4):
        engine.state.update_mode_state(Mode.SPEECH, prompt=f"line {idx}")
        asyncio.run(engine.run(Mode.SPEECH))
        assert len(engine.assets.live()) == 1
    assert engine.assets.created == 4
    assert engine.assets.released == 3
    live = engine.state.get(Mode.SPEECH).asset_urls[0]
    assert engine.assets.resolve(live) == b"wav:line 3"

    engine.finish()
    assert engine.assets.live() == []
    assert engine.assets.released == 4


def test_analysis_suggestion_feeds_person_clause(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    settlement = asyncio.run(engine.attach_image(Mode.IMAGE, ImageData(data=b"img", mime_type="image/png")))
    assert settlement.applied is True
    state = engine.state.get(Mode.IMAGE)
    assert state.contextual_person_suggestion == "a person reading a newspaper"
    assert state.is_analyzing is False

    engine.state.update_mode_state(Mode.IMAGE, prompt="a park bench", add_person=True)
    asyncio.run(engine.run(Mode.IMAGE))
    assert adapter.calls[-1] == ("generate_image", ("a park bench, a person reading a newspaper", True))
    assert len(engine.history) == 1


def test_background_result_lands_in_originating_mode(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(Mode.RECIPE, prompt="curry")
    engine.switch_mode(Mode.RECIPE)
    broadcast: list[Mode] = []

    async def scenario() -> None:
        gate = asyncio.Event()
        adapter.gates["generate_recipe"] = [gate]
        task = asyncio.create_task(engine.run())
        await _until(lambda: len(adapter.calls) == 1)
        engine.switch_mode(Mode.IMAGE)
        engine.state.subscribe(lambda mode, state: broadcast.append(mode))
        gate.set()
        await task

    asyncio.run(scenario())

    assert engine.state.active_mode is Mode.IMAGE
    assert engine.state.get(Mode.RECIPE).asset_urls == ("Recipe: curry",)
    assert engine.state.get(Mode.IMAGE).asset_urls == ()
    assert broadcast == []


def test_replay_restores_output_and_wins_over_pending(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    engine = _engine(tmp_path, adapter)
    for prompt in ("tacos", "paella"):
        engine.state.update_mode_state(Mode.RECIPE, prompt=prompt)
        asyncio.run(engine.run(Mode.RECIPE))
    engine.switch_mode(Mode.SPEECH)
    oldest = engine.history.items[-1]

    async def scenario() -> None:
        gate = asyncio.Event()
        adapter.gates["generate_recipe"] = [gate]
        engine.state.update_mode_state(Mode.RECIPE, prompt="gumbo")
        task = asyncio.create_task(engine.run(Mode.RECIPE))
        await _until(lambda: len(adapter.calls) == 3)
        engine.replay(oldest)
        gate.set()
        await task

    asyncio.run(scenario())

    assert engine.state.active_mode is Mode.RECIPE
    state = engine.state.get(Mode.RECIPE)
    assert state.prompt == "tacos"
    assert state.asset_urls == ("Recipe: tacos",)
    assert state.is_loading is False
    assert len(engine.history) == 2


def test_events_never_carry_the_secret(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    adapter.errors["generate_recipe"] = AuthOrQuotaError("Permission denied.")
    engine = _engine(tmp_path, adapter)
    engine.state.update_mode_state(Mode.RECIPE, prompt="ramen")
    asyncio.run(engine.run(Mode.RECIPE))
    engine.credentials.save("sk-second-secret-0003")
    engine.finish()

    text = (tmp_path / "events.jsonl").read_text(encoding="utf-8")
    assert SECRET not in text
    assert "sk-second-secret-0003" not in text
    types = [event["type"] for event in read_events(tmp_path / "events.jsonl")]
    assert "generation_failed" in types
    assert "credential_invalidated" in types
    assert types[-1] == "session_finished"
