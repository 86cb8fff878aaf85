"""Prism CLI entrypoints."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace
from pathlib import Path

from .chat.loop import ChatLoop, format_outputs, resolve_language, resolve_mode, resolve_voice
from .config import SessionConfig
from .credentials.store import env_key_flow
from .engine import OrchestrationEngine, open_session
from .modes import SIMILARITY_BANDS, ImageData, Mode
from .runs.export import export_outputs
from .utils import load_dotenv


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prism", description="Prism multi-mode generation client")
    parser.add_argument("--home", help="State directory (default: $PRISM_HOME or ~/.prism)")
    parser.add_argument("--provider", help="Adapter name: gemini or dryrun (default: $PRISM_PROVIDER)")
    sub = parser.add_subparsers(dest="command")

    chat = sub.add_parser("chat", help="Interactive chat loop")
    chat.add_argument("--out", help="Directory for /save (default: ./prism-out)")

    run = sub.add_parser("run", help="Single generation")
    run.add_argument("--mode", default=Mode.IMAGE.value, help="Mode to run")
    run.add_argument("--prompt", default="", help="Prompt, text or URL depending on the mode")
    run.add_argument("--image", help="Source image path")
    run.add_argument("--product", action="append", default=[], help="Product image path (repeatable)")
    run.add_argument("--inspiration", help="Style inspiration image path")
    run.add_argument("--similarity", type=int, choices=SIMILARITY_BANDS)
    run.add_argument("--person", action="store_true", help="Add a person to the image")
    run.add_argument("--remove-text", dest="remove_text", action="store_true")
    run.add_argument("--translate", default="", help="Text to translate (image mode)")
    run.add_argument("--language", help="Target language for translation")
    run.add_argument("--stylize", action="store_true", help="Correct and stylize the translation")
    run.add_argument("--voice", help="Speech voice")
    run.add_argument("--keyword", default="", help="Primary keyword (structured article)")
    run.add_argument("--article-language", dest="article_language", help="Article language")
    run.add_argument("--out", help="Directory to write outputs to")

    history = sub.add_parser("history", help="Inspect or clear history")
    history_sub = history.add_subparsers(dest="history_command")
    history_sub.add_parser("list", help="List history entries")
    clear = history_sub.add_parser("clear", help="Clear history")
    clear.add_argument("--yes", action="store_true", help="Confirm clearing")

    return parser


def _config_from_args(args: argparse.Namespace) -> SessionConfig:
    config = SessionConfig.from_env()
    if args.home:
        config = replace(config, home=Path(args.home).expanduser())
    if args.provider:
        config = replace(config, provider=args.provider.strip().lower())
    return config


def _open(args: argparse.Namespace) -> OrchestrationEngine:
    engine = open_session(_config_from_args(args))
    if engine.credentials.get() is None:
        engine.credentials.acquire(env_key_flow)
    return engine


def _handle_chat(args: argparse.Namespace) -> int:
    engine = _open(args)
    try:
        ChatLoop(engine, out_dir=Path(args.out) if args.out else None).run()
    finally:
        engine.finish()
    return 0


def _handle_run(args: argparse.Namespace) -> int:
    try:
        mode = resolve_mode(args.mode)
        changes: dict[str, object] = {
            "prompt": args.prompt,
            "similarity": args.similarity,
            "add_person": args.person,
            "remove_text": args.remove_text,
            "text_to_translate": args.translate,
            "stylize_and_correct": args.stylize,
            "primary_keyword": args.keyword,
            "product_images": [ImageData.from_path(path) for path in args.product],
        }
        if args.inspiration:
            changes["inspiration_image"] = ImageData.from_path(args.inspiration)
        if args.language:
            changes["target_language"] = resolve_language(args.language)
        if args.article_language:
            changes["article_language"] = resolve_language(args.article_language)
        if args.voice:
            changes["selected_voice"] = resolve_voice(args.voice)
        image = ImageData.from_path(args.image) if args.image else None
    except (ValueError, OSError) as exc:
        print(f"Invalid input: {exc}")
        return 2

    engine = _open(args)
    try:
        engine.switch_mode(mode)
        engine.state.update_mode_state(mode, **changes)
        if image is not None:
            # Analysis feeds the person clause; generation goes ahead without it.
            asyncio.run(engine.attach_image(mode, image))
            engine.state.update_mode_state(mode, error=None)
        asyncio.run(engine.run(mode))
        state = engine.state.get(mode)
        for line in format_outputs(state):
            print(line)
        if args.out and state.asset_urls:
            for path in export_outputs(state, engine.assets, Path(args.out)):
                print(f"Saved {path}")
    finally:
        engine.finish()
    return 1 if state.error else 0


def _handle_history(args: argparse.Namespace) -> int:
    engine = open_session(_config_from_args(args))
    try:
        if args.history_command == "clear":
            if not args.yes:
                print("Refusing to clear history without --yes.")
                return 1
            engine.clear_history()
            print("History cleared.")
            return 0
        items = engine.history.items
        if not items:
            print("History is empty.")
        for idx, item in enumerate(items, start=1):
            label = item.asset_kind.value if item.asset_kind else item.slot.value
            print(f"{idx:>3}. {item.timestamp} [{item.mode.value}/{label}] {item.prompt[:60]} ({item.id})")
        return 0
    finally:
        engine.finish()


def main() -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args()
    try:
        if args.command == "chat":
            raise SystemExit(_handle_chat(args))
        if args.command == "run":
            raise SystemExit(_handle_run(args))
        if args.command == "history":
            raise SystemExit(_handle_history(args))
    except ValueError as exc:
        print(f"Error: {exc}")
        raise SystemExit(2)
    parser.print_help()
    raise SystemExit(1)


if __name__ == "__main__":
    main()
