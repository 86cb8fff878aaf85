"""Per-mode session state with an active-mode pointer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from ..modes import ErrorNotice, Mode, ModeState, initial_states


Listener = Callable[[Mode, ModeState], None]


@dataclass(frozen=True)
class SessionSnapshot:
    active_mode: Mode
    state: ModeState

    @property
    def is_loading(self) -> bool:
        return self.state.is_loading

    @property
    def is_analyzing(self) -> bool:
        return self.state.is_analyzing

    @property
    def is_translating(self) -> bool:
        return self.state.is_translating

    @property
    def error(self) -> ErrorNotice | None:
        return self.state.error


class SessionStateStore:
    """Owns one ModeState per mode.

    Listeners observe the active view only: a write to a mode that is not
    active is stored silently and shows up once that mode is switched to.
    """

    def __init__(self, states: Mapping[Mode, ModeState] | None = None, active_mode: Mode = Mode.IMAGE) -> None:
        self._states: dict[Mode, ModeState] = initial_states()
        if states:
            self._states.update(states)
        self._active = active_mode
        self._listeners: list[Listener] = []

    @property
    def active_mode(self) -> Mode:
        return self._active

    def switch_mode(self, mode: Mode) -> None:
        mode = Mode(mode)
        if mode is self._active:
            return
        self._active = mode
        self._notify(mode)

    def get(self, mode: Mode) -> ModeState:
        return self._states[Mode(mode)]

    def update_mode_state(self, mode: Mode, **changes: Any) -> ModeState:
        mode = Mode(mode)
        current = self._states[mode]
        updated = current.merged(**changes)
        if updated == current:
            return current
        self._states[mode] = updated
        if mode is self._active:
            self._notify(mode)
        return updated

    def replace_mode_state(self, mode: Mode, state: ModeState) -> ModeState:
        mode = Mode(mode)
        self._states[mode] = state
        if mode is self._active:
            self._notify(mode)
        return state

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(active_mode=self._active, state=self._states[self._active])

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, mode: Mode) -> None:
        state = self._states[mode]
        for listener in list(self._listeners):
            listener(mode, state)
