"""Transient binary assets and their per-slot ownership.

Generated audio and video live in memory behind ``blob:`` URIs until released.
A slot owns at most one live handle; assigning a new one releases the old
occupant on the spot.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Hashable


class AssetReleaseError(RuntimeError):
    pass


@dataclass(eq=False)
class AssetHandle:
    uri: str
    mime_type: str
    size: int
    released: bool = False


class AssetRegistry:
    def __init__(self) -> None:
        self._blobs: dict[str, tuple[bytes, str]] = {}
        self.created = 0
        self.released = 0

    def create(self, data: bytes, mime_type: str) -> AssetHandle:
        uri = f"blob:prism/{uuid.uuid4().hex}"
        self._blobs[uri] = (bytes(data), mime_type)
        self.created += 1
        return AssetHandle(uri=uri, mime_type=mime_type, size=len(data))

    def resolve(self, uri: str) -> bytes | None:
        entry = self._blobs.get(uri)
        return entry[0] if entry else None

    def mime_type(self, uri: str) -> str | None:
        entry = self._blobs.get(uri)
        return entry[1] if entry else None

    def release(self, handle: AssetHandle) -> None:
        if handle.released or handle.uri not in self._blobs:
            raise AssetReleaseError(f"Asset {handle.uri} already released")
        del self._blobs[handle.uri]
        handle.released = True
        self.released += 1

    def live(self) -> list[str]:
        return list(self._blobs.keys())

    def write_to(self, uri: str, path: Path) -> Path:
        data = self.resolve(uri)
        if data is None:
            raise KeyError(f"Asset {uri} is not live")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path


class AssetSlots:
    def __init__(self, registry: AssetRegistry) -> None:
        self.registry = registry
        self._occupants: dict[Hashable, AssetHandle] = {}

    def current(self, slot: Hashable) -> AssetHandle | None:
        return self._occupants.get(slot)

    def assign(self, slot: Hashable, handle: AssetHandle | None) -> AssetHandle | None:
        previous = self._occupants.get(slot)
        if previous is handle:
            return None
        if previous is not None:
            del self._occupants[slot]
            self.registry.release(previous)
        if handle is not None:
            self._occupants[slot] = handle
        return previous

    def release_all(self) -> int:
        occupants = list(self._occupants.values())
        self._occupants.clear()
        for handle in occupants:
            self.registry.release(handle)
        return len(occupants)
