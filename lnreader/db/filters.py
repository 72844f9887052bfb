"""Tri-state chapter filter toggles persisted as a flat key list."""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Callable, Iterable, Literal

from .constants import ChapterFilterKey, ChapterFilterPositiveKey

LOGGER = logging.getLogger(__name__)

StateName = Literal["ON", "OFF", "INDETERMINATE"]


class FilterState(IntEnum):
    OFF = 0
    INDETERMINATE = 1
    ON = 2


class ChapterFilterObject:
    """In-memory view of a persisted filter list such as ``["downloaded", "not-read"]``.

    ``ON`` encodes as the bare key, ``INDETERMINATE`` as ``not-<key>`` and
    ``OFF`` as absence. Every mutation hands the re-encoded list to
    ``set_state``.
    """

    def __init__(
        self,
        state: Iterable[ChapterFilterKey | str] | None = None,
        set_state: Callable[[list[ChapterFilterKey]], None] | None = None,
    ) -> None:
        self._filter: dict[ChapterFilterPositiveKey, FilterState] = {}
        for raw in state or ():
            self._decode_one(raw)
        self._set_state = set_state or (lambda _value: None)

    def _decode_one(self, raw: ChapterFilterKey | str) -> None:
        value = raw.value if isinstance(raw, ChapterFilterKey) else str(raw)
        parts = value.split("-")
        name = parts[1] if len(parts) > 1 else parts[0]
        try:
            key = ChapterFilterPositiveKey(name)
        except ValueError:
            LOGGER.warning("Ignoring unknown chapter filter key %r", value)
            return
        self._filter[key] = FilterState.ON if len(parts) == 1 else FilterState.INDETERMINATE

    def to_array(self) -> list[ChapterFilterKey]:
        result: list[ChapterFilterKey] = []
        for key, value in self._filter.items():
            if value is FilterState.ON:
                result.append(ChapterFilterKey(key.value))
            elif value is FilterState.INDETERMINATE:
                result.append(ChapterFilterKey(f"not-{key.value}"))
        return result

    def _persist(self) -> None:
        self._set_state(list(self.to_array()))

    def set(self, key: ChapterFilterPositiveKey | str, value: StateName) -> "ChapterFilterObject":
        positive = ChapterFilterPositiveKey(key)
        state = FilterState[value]
        if state is FilterState.OFF:
            self._filter.pop(positive, None)
        else:
            self._filter[positive] = state
        self._persist()
        return self

    def unset(self, key: ChapterFilterPositiveKey | str) -> "ChapterFilterObject":
        self._filter.pop(ChapterFilterPositiveKey(key), None)
        self._persist()
        return self

    def get(self, key: ChapterFilterPositiveKey | str) -> FilterState | None:
        return self._filter.get(ChapterFilterPositiveKey(key))

    def state(self, key: ChapterFilterPositiveKey | str) -> bool | Literal["indeterminate"]:
        value = self._filter.get(ChapterFilterPositiveKey(key))
        if value is None or value is FilterState.OFF:
            return False
        if value is FilterState.INDETERMINATE:
            return "indeterminate"
        return True

    def cycle(self, key: ChapterFilterPositiveKey | str) -> "ChapterFilterObject":
        """Advance ``key`` through OFF, ON, INDETERMINATE and back to OFF."""

        current = self.state(key)
        if current == "indeterminate":
            return self.set(key, "OFF")
        if current is True:
            return self.set(key, "INDETERMINATE")
        return self.set(key, "ON")

    def get_map(self) -> dict[ChapterFilterPositiveKey, FilterState]:
        return dict(self._filter)


__all__ = ["ChapterFilterObject", "FilterState"]
