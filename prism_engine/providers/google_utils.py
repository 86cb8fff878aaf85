"""Shared helpers for the Google provider: response parsing and media wrapping."""

from __future__ import annotations

import io
import json
import wave
from typing import Any, Mapping, Optional, Sequence

from ..modes import GroundingSource
from ..utils import is_valid_url


# Gemini TTS returns raw little-endian PCM at this rate, mono, 16-bit.
TTS_SAMPLE_RATE = 24000
TTS_CHANNELS = 1
TTS_SAMPLE_WIDTH = 2


def pcm_to_wav(
    pcm: bytes,
    *,
    sample_rate: int = TTS_SAMPLE_RATE,
    channels: int = TTS_CHANNELS,
    sample_width: int = TTS_SAMPLE_WIDTH,
) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as handle:
        handle.setnchannels(channels)
        handle.setsampwidth(sample_width)
        handle.setframerate(sample_rate)
        handle.writeframes(pcm)
    return buffer.getvalue()


def extract_json_object(text: str | None) -> Optional[dict[str, Any]]:
    """Pull a JSON object out of a model reply that may wrap it in prose or fences."""
    raw = str(text or "").strip()
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    try:
        payload = json.loads(raw[start : end + 1])
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def parse_image_url(text: str | None) -> Optional[str]:
    candidate = str(text or "").strip().strip("<>").strip()
    if not candidate.startswith("http"):
        return None
    return candidate if is_valid_url(candidate) else None


def extract_inline_blobs(candidates: Sequence[Any]) -> list[dict[str, Any]]:
    blobs: list[dict[str, Any]] = []
    for candidate in candidates[:1]:
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None) or getattr(candidate, "parts", None) or []
        for part in parts:
            inline_data = getattr(part, "inline_data", None)
            data = getattr(inline_data, "data", None) if inline_data else None
            if data is None:
                continue
            mime_type = getattr(inline_data, "mime_type", None)
            if isinstance(data, str):
                data = data.encode("latin1")
            if isinstance(data, (bytes, bytearray)):
                blobs.append({"bytes": bytes(data), "mime_type": mime_type})
    return blobs


def response_text(response: Any) -> str:
    try:
        text = getattr(response, "text", None)
    except ValueError:
        # The SDK raises when the reply holds only non-text parts.
        text = None
    return str(text or "").strip()


def extract_grounding_sources(response: Any) -> tuple[GroundingSource, ...]:
    sources: list[GroundingSource] = []
    seen: set[str] = set()
    for candidate in getattr(response, "candidates", None) or []:
        metadata = getattr(candidate, "grounding_metadata", None)
        for chunk in getattr(metadata, "grounding_chunks", None) or []:
            web = getattr(chunk, "web", None)
            if isinstance(web, Mapping):
                uri, title = web.get("uri"), web.get("title")
            else:
                uri, title = getattr(web, "uri", None), getattr(web, "title", None)
            if not uri or uri in seen:
                continue
            seen.add(uri)
            sources.append(GroundingSource(uri=str(uri), title=title))
    return tuple(sources)
