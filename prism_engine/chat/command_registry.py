"""Shared slash-command metadata for parse + chat handling."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CommandSpec:
    command: str
    action: str
    arg_kind: str
    help: str = ""


RAW_ARG_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("mode", "set_mode", "raw", "Switch mode (image, video, recipe, ...)"),
    CommandSpec("key", "save_key", "raw", "Save an API key (no argument: read it from the environment)"),
    CommandSpec("similarity", "set_similarity", "raw", "Similarity band: 25, 50, 75, 100 or off"),
    CommandSpec("translate", "set_translation_text", "raw", "Text to translate alongside the image"),
    CommandSpec("language", "set_target_language", "raw", "Target language for translation"),
    CommandSpec("voice", "set_voice", "raw", "Speech voice"),
    CommandSpec("keyword", "set_keyword", "raw", "Primary keyword for articles"),
    CommandSpec("article_language", "set_article_language", "raw", "Article language"),
    CommandSpec("replay", "replay", "raw", "Replay a history entry by index or id"),
    CommandSpec("save", "save_outputs", "raw", "Write the current outputs to a directory"),
)

TOGGLE_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("person", "set_add_person", "toggle", "Add a person to the image (on/off)"),
    CommandSpec("remove_text", "set_remove_text", "toggle", "Remove text from the image (on/off)"),
    CommandSpec("stylize", "set_stylize", "toggle", "Correct and stylize translations (on/off)"),
)

SINGLE_PATH_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("image", "set_image", "single_path", "Source image (none to clear)"),
    CommandSpec("inspiration", "set_inspiration", "single_path", "Style inspiration image (none to clear)"),
)

MULTI_PATH_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("product", "set_products", "multi_path", "Product images for product shots"),
)

NO_ARG_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("generate", "generate", "none", "Run the current mode"),
    CommandSpec("clear_key", "clear_key", "none", "Forget the stored API key"),
    CommandSpec("history", "history", "none", "List history"),
    CommandSpec("clear_history", "clear_history", "none", "Clear history"),
    CommandSpec("status", "status", "none", "Show the current mode state"),
    CommandSpec("help", "help", "none", "Show help"),
)

ALL_COMMANDS = RAW_ARG_COMMANDS + TOGGLE_COMMANDS + SINGLE_PATH_COMMANDS + MULTI_PATH_COMMANDS + NO_ARG_COMMANDS

RAW_ARG_COMMAND_MAP = {spec.command: spec.action for spec in RAW_ARG_COMMANDS}
TOGGLE_COMMAND_MAP = {spec.command: spec.action for spec in TOGGLE_COMMANDS}
SINGLE_PATH_COMMAND_MAP = {spec.command: spec.action for spec in SINGLE_PATH_COMMANDS}
MULTI_PATH_COMMAND_MAP = {spec.command: spec.action for spec in MULTI_PATH_COMMANDS}
NO_ARG_COMMAND_MAP = {spec.command: spec.action for spec in NO_ARG_COMMANDS}

