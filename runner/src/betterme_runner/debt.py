from __future__ import annotations

"""Pure interval arithmetic for outstanding report windows."""


def _require_interval(interval_ms: int) -> None:
    if interval_ms <= 0:
        raise ValueError("interval_ms must be positive.")


def pending_count(now_ms: int, last_update_ms: int, interval_ms: int) -> int:
    """Return how many whole intervals elapsed since `last_update_ms`.

    Clock skew (now earlier than the last update) counts as zero debt.
    """

    _require_interval(interval_ms)
    elapsed = now_ms - last_update_ms
    if elapsed <= 0:
        return 0
    return elapsed // interval_ms


def next_deadline(last_update_ms: int, interval_ms: int) -> int:
    _require_interval(interval_ms)
    return last_update_ms + interval_ms


def time_remaining(now_ms: int, last_update_ms: int, interval_ms: int) -> int:
    """Milliseconds until the next report is due; negative when overdue."""

    return next_deadline(last_update_ms, interval_ms) - now_ms
