"""Write a mode's visible outputs to disk."""

from __future__ import annotations

import json
import mimetypes
from pathlib import Path

from ..modes import AssetKind, ModeState
from ..session.assets import AssetRegistry
from ..utils import decode_data_uri, ensure_dir, now_ms


_TEXT_SUFFIXES = {
    AssetKind.RECIPE: ".md",
    AssetKind.RECIPE_CARD: ".json",
    AssetKind.ARTICLE: ".json",
}


def _suffix_for(mime_type: str) -> str:
    if mime_type == "audio/wav":
        return ".wav"
    return mimetypes.guess_extension(mime_type) or ".bin"


def export_outputs(state: ModeState, assets: AssetRegistry, out_dir: Path) -> list[Path]:
    ensure_dir(out_dir)
    stamp = now_ms()
    kind = state.asset_kind.value if state.asset_kind else "output"
    written: list[Path] = []
    for idx, url in enumerate(state.asset_urls):
        base = out_dir / f"{kind}-{stamp}-{idx:02d}"
        if url.startswith("data:"):
            data, mime_type = decode_data_uri(url)
            path = base.with_suffix(_suffix_for(mime_type))
            path.write_bytes(data)
        elif url.startswith("blob:"):
            mime_type = assets.mime_type(url)
            if mime_type is None:
                continue
            path = assets.write_to(url, base.with_suffix(_suffix_for(mime_type)))
        else:
            path = base.with_suffix(_TEXT_SUFFIXES.get(state.asset_kind, ".txt"))
            path.write_text(url, encoding="utf-8")
        written.append(path)
    if state.translation_result:
        path = out_dir / f"translation-{stamp}.txt"
        path.write_text(state.translation_result, encoding="utf-8")
        written.append(path)
    if state.sources:
        path = out_dir / f"sources-{stamp}.json"
        path.write_text(json.dumps([source.to_dict() for source in state.sources], indent=2), encoding="utf-8")
        written.append(path)
    return written
