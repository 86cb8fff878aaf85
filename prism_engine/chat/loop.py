"""Interactive chat loop wrapper."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

from ..credentials.store import env_key_flow
from ..engine import OrchestrationEngine
from ..modes import LANGUAGES, VOICES, AssetKind, ImageData, Mode, ModeState
from ..runs.export import export_outputs
from .command_registry import ALL_COMMANDS
from .intent_parser import parse_intent
from .intent_schema import Intent


DEFAULT_OUT_DIR = Path("prism-out")


def resolve_mode(value: str) -> Mode:
    normalized = value.strip().lower().replace("-", "_")
    for mode in Mode:
        if normalized in {mode.value, mode.name.lower()}:
            return mode
    raise ValueError(f"Unknown mode '{value}'. Modes: {', '.join(mode.value for mode in Mode)}")


def resolve_language(value: str) -> str:
    for language in LANGUAGES:
        if language.lower() == value.strip().lower():
            return language
    raise ValueError(f"Unsupported language '{value}'. Languages: {', '.join(LANGUAGES)}")


def resolve_voice(value: str) -> str:
    for voice in VOICES:
        if voice.lower() == value.strip().lower():
            return voice
    raise ValueError(f"Unknown voice '{value}'. Voices: {', '.join(VOICES)}")


def format_outputs(state: ModeState) -> list[str]:
    lines: list[str] = []
    if state.error:
        suffix = " (use /key to supply a new API key)" if state.error.action else ""
        lines.append(f"Error: {state.error.message}{suffix}")
    kind = state.asset_kind
    for idx, url in enumerate(state.asset_urls):
        if kind in {AssetKind.RECIPE, AssetKind.RECIPE_CARD, AssetKind.ARTICLE}:
            lines.append(url)
        elif url.startswith("data:"):
            lines.append(f"[{kind.value if kind else 'asset'} {idx + 1}] data URI ({len(url)} chars)")
        else:
            lines.append(f"[{kind.value if kind else 'asset'} {idx + 1}] {url}")
    if state.cover_image_url:
        lines.append(f"Cover image: {state.cover_image_url}")
    for source in state.sources:
        lines.append(f"Source: {source.title or source.uri} <{source.uri}>")
    if state.translation_result:
        lines.append(f"Translation: {state.translation_result}")
    return lines


class ChatLoop:
    def __init__(
        self,
        engine: OrchestrationEngine,
        out_dir: Path | None = None,
        input_fn: Callable[[str], str] = input,
        print_fn: Callable[[str], None] = print,
    ) -> None:
        self.engine = engine
        self.out_dir = out_dir or DEFAULT_OUT_DIR
        self._input = input_fn
        self._print = print_fn
        self._handlers: dict[str, Callable[[Intent], None]] = {
            "help": self._help,
            "set_mode": self._set_mode,
            "save_key": self._save_key,
            "clear_key": self._clear_key,
            "set_similarity": self._set_similarity,
            "set_translation_text": self._set_translation_text,
            "set_target_language": self._set_target_language,
            "set_voice": self._set_voice,
            "set_keyword": self._set_keyword,
            "set_article_language": self._set_article_language,
            "set_add_person": self._toggle("add_person"),
            "set_remove_text": self._toggle("remove_text"),
            "set_stylize": self._toggle("stylize_and_correct"),
            "set_image": self._set_image,
            "set_inspiration": self._set_inspiration,
            "set_products": self._set_products,
            "generate": self._generate,
            "history": self._history,
            "replay": self._replay,
            "clear_history": self._clear_history,
            "status": self._status,
            "save_outputs": self._save_outputs,
        }

    @property
    def mode(self) -> Mode:
        return self.engine.state.active_mode

    def run(self) -> None:
        self._print("Prism chat started. Type /help for commands.")
        self._print_notice()
        while True:
            try:
                line = self._input(f"{self.mode.value}> ")
            except (EOFError, KeyboardInterrupt):
                break
            self.handle(line)

    def handle(self, line: str) -> None:
        intent = parse_intent(line)
        if intent.action == "noop":
            return
        if intent.action == "unknown":
            self._print(f"Unknown command /{intent.command_args.get('command')}. Type /help for commands.")
            return
        try:
            self._handlers[intent.action](intent)
        except (ValueError, OSError) as exc:
            self._print(str(exc))

    def _update(self, **changes) -> ModeState:
        return self.engine.state.update_mode_state(self.mode, **changes)

    def _print_notice(self) -> None:
        notice = self.engine.credentials.notice
        if notice is not None:
            self._print(notice.message)
        elif self.engine.credentials.get() is None:
            self._print("No API key stored. Use /key <secret> or /key to read it from the environment.")

    def _help(self, intent: Intent) -> None:
        for spec in ALL_COMMANDS:
            self._print(f"/{spec.command:<17} {spec.help}")

    def _set_mode(self, intent: Intent) -> None:
        self.engine.switch_mode(resolve_mode(intent.command_args.get("value") or ""))
        self._print(f"Mode: {self.mode.value}")

    def _save_key(self, intent: Intent) -> None:
        secret = intent.command_args.get("value") or ""
        if secret:
            self.engine.credentials.save(secret)
        elif self.engine.credentials.acquire(env_key_flow) is None:
            self._print("No API key found in PRISM_API_KEY, GEMINI_API_KEY or GOOGLE_API_KEY.")
            return
        self._print("API key saved.")

    def _clear_key(self, intent: Intent) -> None:
        self.engine.credentials.clear()
        self._print_notice()

    def _set_similarity(self, intent: Intent) -> None:
        value = (intent.command_args.get("value") or "").strip().lower()
        if value in {"", "off", "none"}:
            self._update(similarity=None)
            self._print("Similarity: off")
            return
        try:
            band = int(value)
        except ValueError as exc:
            raise ValueError("Similarity must be 25, 50, 75, 100 or off.") from exc
        self._update(similarity=band)
        self._print(f"Similarity: {band}")

    def _set_translation_text(self, intent: Intent) -> None:
        self._update(text_to_translate=intent.command_args.get("value") or "")
        self._print("Translation text set.")

    def _set_target_language(self, intent: Intent) -> None:
        language = resolve_language(intent.command_args.get("value") or "")
        self._update(target_language=language)
        self._print(f"Target language: {language}")

    def _set_voice(self, intent: Intent) -> None:
        voice = resolve_voice(intent.command_args.get("value") or "")
        self._update(selected_voice=voice)
        self._print(f"Voice: {VOICES[voice]}")

    def _set_keyword(self, intent: Intent) -> None:
        self._update(primary_keyword=intent.command_args.get("value") or "")
        self._print("Keyword set.")

    def _set_article_language(self, intent: Intent) -> None:
        language = resolve_language(intent.command_args.get("value") or "")
        self._update(article_language=language)
        self._print(f"Article language: {language}")

    def _toggle(self, field_name: str) -> Callable[[Intent], None]:
        def handler(intent: Intent) -> None:
            enabled = intent.command_args.get("enabled")
            if enabled is None:
                enabled = not getattr(self.engine.state.get(self.mode), field_name)
            self._update(**{field_name: enabled})
            self._print(f"{field_name}: {'on' if enabled else 'off'}")

        return handler

    def _set_image(self, intent: Intent) -> None:
        image = _load_image(intent.command_args.get("path") or "")
        asyncio.run(self.engine.attach_image(self.mode, image))
        state = self.engine.state.get(self.mode)
        if state.error:
            self._print(f"Error: {state.error.message}")
        elif state.contextual_person_suggestion:
            self._print(f"Suggested person: {state.contextual_person_suggestion}")
        self._print("Image set." if image else "Image cleared.")

    def _set_inspiration(self, intent: Intent) -> None:
        image = _load_image(intent.command_args.get("path") or "")
        self._update(inspiration_image=image)
        self._print("Inspiration set." if image else "Inspiration cleared.")

    def _set_products(self, intent: Intent) -> None:
        images = [ImageData.from_path(path) for path in intent.command_args.get("paths") or []]
        self._update(product_images=images)
        self._print(f"Product images: {len(images)}")

    def _generate(self, intent: Intent) -> None:
        if intent.prompt:
            self._update(prompt=intent.prompt)
        asyncio.run(self.engine.run(self.mode))
        for line in format_outputs(self.engine.state.get(self.mode)):
            self._print(line)

    def _history(self, intent: Intent) -> None:
        items = self.engine.history.items
        if not items:
            self._print("History is empty.")
            return
        for idx, item in enumerate(items, start=1):
            label = item.asset_kind.value if item.asset_kind else item.slot.value
            self._print(f"{idx:>3}. [{item.mode.value}/{label}] {item.prompt[:60]} ({item.id})")

    def _replay(self, intent: Intent) -> None:
        value = (intent.command_args.get("value") or "").strip()
        items = self.engine.history.items
        item = None
        if value.isdigit() and 1 <= int(value) <= len(items):
            item = items[int(value) - 1]
        elif value:
            item = self.engine.history.find(value)
        if item is None:
            raise ValueError("/replay requires a history index or id.")
        state = self.engine.replay(item)
        self._print(f"Mode: {item.mode.value}")
        for line in format_outputs(state):
            self._print(line)

    def _clear_history(self, intent: Intent) -> None:
        answer = self._input("Clear all history? [y/N] ")
        if answer.strip().lower() not in {"y", "yes"}:
            self._print("History kept.")
            return
        self.engine.clear_history()
        self._print("History cleared.")

    def _status(self, intent: Intent) -> None:
        snapshot = self.engine.state.snapshot()
        state = snapshot.state
        self._print(f"Mode: {snapshot.active_mode.value}")
        self._print(f"Prompt: {state.prompt or '-'}")
        self._print(
            f"Image: {'yes' if state.single_image else 'no'} | products: {len(state.product_images)} | "
            f"person: {state.add_person} | remove text: {state.remove_text} | similarity: {state.similarity}"
        )
        self._print(f"API key: {'set' if self.engine.credentials.get() else 'missing'}")
        for line in format_outputs(state):
            self._print(line)

    def _save_outputs(self, intent: Intent) -> None:
        value = (intent.command_args.get("value") or "").strip()
        out_dir = Path(value).expanduser() if value else self.out_dir
        written = export_outputs(self.engine.state.get(self.mode), self.engine.assets, out_dir)
        if not written:
            self._print("Nothing to save.")
            return
        for path in written:
            self._print(f"Saved {path}")


def _load_image(path: str) -> ImageData | None:
    if not path or path.lower() == "none":
        return None
    return ImageData.from_path(path)
