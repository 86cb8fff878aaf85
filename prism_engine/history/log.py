"""Bounded, persisted log of completed generations."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from ..modes import AssetKind, GroundingSource, Mode, ModeState, OutputSlot
from ..storage.local_store import HISTORY_KEY, LocalStore
from ..utils import now_utc_iso, time_ordered_id


DEFAULT_CAPACITY = 50


@dataclass(frozen=True)
class HistoryItem:
    mode: Mode
    prompt: str
    asset_urls: tuple[str, ...] = ()
    asset_kind: AssetKind | None = None
    translation_result: str | None = None
    target_language: str | None = None
    cover_image_url: str | None = None
    sources: tuple[GroundingSource, ...] = ()
    slot: OutputSlot = OutputSlot.MAIN
    id: str = field(default_factory=time_ordered_id)
    timestamp: str = field(default_factory=now_utc_iso)

    def visible_output(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "asset_urls": self.asset_urls,
            "asset_kind": self.asset_kind,
            "translation_result": self.translation_result,
            "cover_image_url": self.cover_image_url,
            "sources": self.sources,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "mode": self.mode.value,
            "slot": self.slot.value,
            "prompt": self.prompt,
            "asset_urls": list(self.asset_urls),
            "asset_kind": self.asset_kind.value if self.asset_kind else None,
            "translation_result": self.translation_result,
            "target_language": self.target_language,
            "cover_image_url": self.cover_image_url,
            "sources": [source.to_dict() for source in self.sources],
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "HistoryItem":
        asset_kind = payload.get("asset_kind")
        return cls(
            id=str(payload["id"]),
            mode=Mode(payload["mode"]),
            slot=OutputSlot(payload.get("slot") or OutputSlot.MAIN.value),
            prompt=str(payload.get("prompt") or ""),
            asset_urls=tuple(str(url) for url in payload.get("asset_urls") or ()),
            asset_kind=AssetKind(asset_kind) if asset_kind else None,
            translation_result=payload.get("translation_result"),
            target_language=payload.get("target_language"),
            cover_image_url=payload.get("cover_image_url"),
            sources=tuple(GroundingSource.from_dict(item) for item in payload.get("sources") or ()),
            timestamp=str(payload.get("timestamp") or ""),
        )


def select_for_replay(item: HistoryItem) -> ModeState:
    """Rebuild the ModeState that was on screen when `item` was recorded."""
    state = ModeState(
        prompt=item.prompt,
        asset_urls=item.asset_urls,
        asset_kind=item.asset_kind,
        translation_result=item.translation_result,
        cover_image_url=item.cover_image_url,
        sources=item.sources,
    )
    if item.slot is OutputSlot.TRANSLATION:
        changes: dict[str, Any] = {"text_to_translate": item.prompt}
        if item.target_language:
            changes["target_language"] = item.target_language
        state = state.merged(**changes)
    return state


class HistoryLog:
    def __init__(
        self,
        store: LocalStore,
        capacity: int = DEFAULT_CAPACITY,
        on_change: Callable[[str, dict], None] | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1.")
        self._store = store
        self.capacity = capacity
        self._items: list[HistoryItem] = []
        self._on_change = on_change

    @property
    def items(self) -> tuple[HistoryItem, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def load(self) -> list[HistoryItem]:
        """Read the durable copy; a missing or unreadable store yields an empty log."""
        try:
            raw = self._store.get(HISTORY_KEY)
            payload = json.loads(raw) if raw else []
        except Exception:
            payload = []
        items: list[HistoryItem] = []
        if isinstance(payload, list):
            for entry in payload:
                if not isinstance(entry, Mapping):
                    continue
                try:
                    items.append(HistoryItem.from_dict(entry))
                except (KeyError, ValueError, TypeError):
                    continue
        self._items = items[: self.capacity]
        return list(self._items)

    def append(self, item: HistoryItem) -> list[HistoryItem]:
        """Prepend `item`, evict past capacity and persist. Returns the evicted items."""
        self._items.insert(0, item)
        evicted = self._items[self.capacity :]
        del self._items[self.capacity :]
        self._persist()
        self._emit("history_appended", item_id=item.id, mode=item.mode.value, evicted=[old.id for old in evicted])
        return evicted

    def clear(self) -> None:
        self._items = []
        self._store.delete(HISTORY_KEY)
        self._emit("history_cleared")

    def find(self, item_id: str) -> HistoryItem | None:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def _persist(self) -> None:
        self._store.set(HISTORY_KEY, json.dumps([item.to_dict() for item in self._items]))

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self._on_change is not None:
            self._on_change(event_type, payload)
