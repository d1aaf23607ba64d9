from __future__ import annotations

"""Once-per-second countdown toward the next report deadline."""

import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from .clock import Clock
from .debt import time_remaining
from .engine import ReconciliationEngine
from .render import format_countdown
from .repository import StateRepository


class Notifier(Protocol):
    def alert(self, count: int, next_timestamp: int) -> None: ...

    def dismiss(self) -> None: ...


class NullNotifier:
    def alert(self, count: int, next_timestamp: int) -> None:
        return None

    def dismiss(self) -> None:
        return None


@dataclass(frozen=True)
class TimerReading:
    remaining_ms: int
    display: str
    alerting: bool
    pending: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "remaining_ms": self.remaining_ms,
            "display": self.display,
            "alerting": self.alerting,
            "pending": self.pending,
        }


class ReportTimer:
    """Cooperative ticker. It only reads state and asks the engine to re-evaluate."""

    def __init__(
        self,
        repository: StateRepository,
        engine: ReconciliationEngine,
        clock: Clock,
        *,
        interval_ms: int,
        notifier: Notifier | None = None,
        tick_seconds: float = 1.0,
        sync: Callable[[], bool] | None = None,
    ) -> None:
        self.repository = repository
        self.engine = engine
        self.clock = clock
        self.interval_ms = interval_ms
        self.notifier = notifier or NullNotifier()
        self.tick_seconds = tick_seconds
        self.sync = sync or repository.poll
        self._alerted_count: int | None = None

    @property
    def alerting(self) -> bool:
        return self._alerted_count is not None

    def time_remaining(self) -> int:
        return time_remaining(self.clock.now_ms(), self.repository.current().last_update, self.interval_ms)

    def tick(self) -> TimerReading:
        self.sync()
        remaining = self.time_remaining()
        if remaining <= 0:
            status = self.engine.refresh()
            if status.pending != self._alerted_count:
                self.notifier.alert(status.pending, status.next_slot)
                self._alerted_count = status.pending
            return TimerReading(remaining_ms=remaining, display=format_countdown(remaining), alerting=True, pending=status.pending)

        if self._alerted_count is not None:
            self.notifier.dismiss()
            self._alerted_count = None
        return TimerReading(remaining_ms=remaining, display=format_countdown(remaining), alerting=False, pending=0)

    def run(
        self,
        *,
        max_ticks: int | None = None,
        on_tick: Callable[[TimerReading], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        """Tick until `max_ticks` is reached (forever when None). Returns ticks performed."""

        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            reading = self.tick()
            ticks += 1
            if on_tick is not None:
                on_tick(reading)
            if max_ticks is not None and ticks >= max_ticks:
                break
            sleep(self.tick_seconds)
        return ticks
