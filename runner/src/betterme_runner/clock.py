from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol


class Clock(Protocol):
    def now_ms(self) -> int: ...


class SystemClock:
    """Wall clock in epoch milliseconds."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000


@dataclass
class ManualClock:
    """Settable clock for tests and offline simulations."""

    current_ms: int = 0

    def now_ms(self) -> int:
        return self.current_ms

    def set(self, value_ms: int) -> None:
        self.current_ms = int(value_ms)

    def advance(self, delta_ms: int) -> int:
        self.current_ms += int(delta_ms)
        return self.current_ms
