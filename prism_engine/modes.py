"""Modes, per-mode state records and the values they carry."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping


class Mode(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    RECIPE = "recipe"
    RECIPE_FROM_LINK = "recipe_from_link"
    RECIPE_CARD = "recipe_card"
    SPEECH = "speech"
    PRODUCT_SHOT = "product_shot"
    STRUCTURED_ARTICLE = "structured_article"


class AssetKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    RECIPE = "recipe"
    RECIPE_CARD = "recipe_card"
    AUDIO = "audio"
    PRODUCT_SHOT = "product_shot"
    ARTICLE = "article"


class OutputSlot(str, Enum):
    MAIN = "main"
    TRANSLATION = "translation"
    SUGGESTION = "suggestion"


RESELECT_CREDENTIAL = "reselect_credential"

SIMILARITY_BANDS = (25, 50, 75, 100)

VOICES = {
    "Kore": "Kore (Female)",
    "Puck": "Puck (Male)",
    "Charon": "Charon (Male)",
    "Fenrir": "Fenrir (Male)",
    "Zephyr": "Zephyr (Female)",
}

LANGUAGES = (
    "Spanish",
    "French",
    "German",
    "Italian",
    "Portuguese",
    "Japanese",
    "Chinese (Simplified)",
    "Russian",
    "Arabic",
    "English",
    "Korean",
)

DEFAULT_LANGUAGE = "Spanish"
DEFAULT_VOICE = "Kore"


@dataclass(frozen=True)
class ImageData:
    data: bytes
    mime_type: str

    @classmethod
    def from_path(cls, path: str | Path) -> "ImageData":
        resolved = Path(path).expanduser()
        mime_type, _ = mimetypes.guess_type(resolved.name)
        if not mime_type or not mime_type.startswith("image/"):
            raise ValueError(f"Unsupported image type: {resolved.name}")
        return cls(data=resolved.read_bytes(), mime_type=mime_type)

    def __repr__(self) -> str:
        return f"ImageData(mime_type={self.mime_type!r}, bytes={len(self.data)})"


@dataclass(frozen=True)
class GroundingSource:
    uri: str
    title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"uri": self.uri, "title": self.title}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GroundingSource":
        return cls(uri=str(payload.get("uri") or ""), title=payload.get("title"))


@dataclass(frozen=True)
class ErrorNotice:
    """A user-displayable error; `action` names a recovery affordance."""

    message: str
    action: str | None = None
    kind: str | None = None


@dataclass(frozen=True)
class ModeState:
    prompt: str = ""
    similarity: int | None = None
    remove_text: bool = False
    add_person: bool = False
    single_image: ImageData | None = None
    product_images: tuple[ImageData, ...] = ()
    inspiration_image: ImageData | None = None
    asset_urls: tuple[str, ...] = ()
    asset_kind: AssetKind | None = None
    sources: tuple[GroundingSource, ...] = ()
    cover_image_url: str | None = None
    contextual_person_suggestion: str | None = None
    text_to_translate: str = ""
    target_language: str = DEFAULT_LANGUAGE
    stylize_and_correct: bool = False
    translation_result: str | None = None
    selected_voice: str = DEFAULT_VOICE
    primary_keyword: str = ""
    article_language: str = DEFAULT_LANGUAGE
    is_loading: bool = False
    is_analyzing: bool = False
    is_translating: bool = False
    error: ErrorNotice | None = None

    def merged(self, **changes: Any) -> "ModeState":
        unknown = set(changes) - _FIELD_NAMES
        if unknown:
            raise KeyError(f"Unknown ModeState fields: {sorted(unknown)}")
        if "similarity" in changes:
            validate_similarity(changes["similarity"])
        if "product_images" in changes:
            changes["product_images"] = tuple(changes["product_images"] or ())
        if "asset_urls" in changes:
            changes["asset_urls"] = tuple(changes["asset_urls"] or ())
        if "sources" in changes:
            changes["sources"] = tuple(changes["sources"] or ())
        return replace(self, **changes)

    def visible_output(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "asset_urls": self.asset_urls,
            "asset_kind": self.asset_kind,
            "translation_result": self.translation_result,
            "cover_image_url": self.cover_image_url,
            "sources": self.sources,
        }


_FIELD_NAMES = {f.name for f in fields(ModeState)}


def validate_similarity(value: int | None) -> None:
    if value is None:
        return
    if value not in SIMILARITY_BANDS:
        raise ValueError(f"Similarity must be one of {SIMILARITY_BANDS}, got {value!r}")


def initial_states() -> dict[Mode, ModeState]:
    return {mode: ModeState() for mode in Mode}
