from __future__ import annotations

"""Persisted tracker snapshot with atomic saves and a change-notification channel."""

import hashlib
import json
import math
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from .clock import Clock
from .logs import LogStore, as_timestamp


StateListener = Callable[["PersistedState"], None]


@dataclass
class PersistedState:
    """The single source of truth: level, next unresolved window start, and history."""

    level: int
    last_update: int
    logs: LogStore = field(default_factory=LogStore)

    def to_dict(self) -> dict[str, Any]:
        return {"level": self.level, "lastUpdate": self.last_update, "logs": self.logs.to_list()}

    @classmethod
    def from_dict(cls, raw: Any, *, now_ms: int) -> "PersistedState":
        """Build a snapshot from stored JSON, defaulting each broken field on its own."""

        if not isinstance(raw, dict):
            return cls(level=0, last_update=now_ms)
        level = _as_count(raw.get("level"))
        if level is None or level < 0:
            level = 0
        last_update = as_timestamp(raw.get("lastUpdate"))
        if last_update is None:
            last_update = now_ms
        return cls(level=level, last_update=last_update, logs=LogStore.from_list(raw.get("logs")))


def _as_count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def _fingerprint(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


def _write_atomic(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.parent / f".{path.name}.tmp"
    for attempt in range(5):
        temp_path.write_text(payload, encoding="utf-8")
        try:
            temp_path.replace(path)
            return
        except PermissionError:
            if attempt == 4:
                raise
            # On Windows, AV/indexers can briefly lock newly-written temp files.
            time.sleep(0.02 * (attempt + 1))


class StateRepository:
    """Owns the live `PersistedState` and broadcasts it after every save or external reload."""

    def __init__(self, path: Path, clock: Clock, *, initial_level: int = 1) -> None:
        self.path = path
        self.clock = clock
        self.initial_level = max(0, int(initial_level))
        self.state: PersistedState | None = None
        self._fingerprint: str | None = None
        self._listeners: list[StateListener] = []

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, state: PersistedState) -> None:
        for listener in list(self._listeners):
            listener(state)

    def _parse(self, raw_bytes: bytes) -> PersistedState:
        try:
            payload = json.loads(raw_bytes.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            payload = None
        return PersistedState.from_dict(payload, now_ms=self.clock.now_ms())

    def load(self) -> PersistedState:
        """Read the stored snapshot, creating and saving a fresh one on first run."""

        if not self.path.exists():
            self.state = PersistedState(level=self.initial_level, last_update=self.clock.now_ms())
            self.save(self.state)
            return self.state
        raw_bytes = self.path.read_bytes()
        state = self._parse(raw_bytes)
        self.state = state
        self._fingerprint = _fingerprint(raw_bytes)
        return state

    def current(self) -> PersistedState:
        if self.state is None:
            return self.load()
        return self.state

    def save(self, state: PersistedState | None = None) -> PersistedState:
        target = state if state is not None else self.current()
        payload = json.dumps(target.to_dict(), indent=2, ensure_ascii=False)
        _write_atomic(self.path, payload)
        self.state = target
        self._fingerprint = _fingerprint(payload.encode("utf-8"))
        self._publish(target)
        return target

    def poll(self) -> bool:
        """Reload and publish when another process rewrote the snapshot file."""

        if not self.path.exists():
            return False
        raw_bytes = self.path.read_bytes()
        digest = _fingerprint(raw_bytes)
        if digest == self._fingerprint:
            return False
        state = self._parse(raw_bytes)
        self.state = state
        self._fingerprint = digest
        self._publish(state)
        return True
