from __future__ import annotations

"""Text rendering helpers shared by the CLI and the HTTP API."""

from datetime import datetime
from typing import Any

from .logs import EntryType, ReportEntry


ENTRY_LABELS: dict[EntryType, str] = {
    EntryType.REGULAR: "NORMAL",
    EntryType.RECOVERY: "RECOVERY",
    EntryType.RESET: "RESET",
}

# Resets share the recovery styling.
ENTRY_STYLES: dict[EntryType, str] = {
    EntryType.REGULAR: "regular",
    EntryType.RECOVERY: "recovery",
    EntryType.RESET: "recovery",
}

OVERDUE_TEXT = "NOW!"
MISSING_ANSWER = "-"


def entry_label(entry_type: EntryType) -> str:
    return ENTRY_LABELS[entry_type]


def entry_style(entry_type: EntryType) -> str:
    return ENTRY_STYLES[entry_type]


def level_tier(level: int) -> str:
    if level > 20:
        return "magenta"
    if level > 10:
        return "green"
    return "default"


def format_countdown(remaining_ms: int) -> str:
    """Render time left as `MM:SS`, or the overdue marker once the deadline passed."""

    if remaining_ms <= 0:
        return OVERDUE_TEXT
    total_seconds = remaining_ms // 1000
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes:02d}:{seconds:02d}"


def format_timestamp(timestamp_ms: int, *, with_date: bool = True) -> str:
    try:
        moment = datetime.fromtimestamp(timestamp_ms / 1000).astimezone()
    except (OverflowError, OSError, ValueError):
        return str(timestamp_ms)
    if with_date:
        return moment.strftime("%Y-%m-%d %H:%M:%S")
    return moment.strftime("%H:%M")


def log_row(entry: ReportEntry, categories: tuple[str, ...]) -> dict[str, Any]:
    return {
        "when": format_timestamp(entry.timestamp),
        "timestamp": entry.timestamp,
        "type": entry.type.value,
        "label": entry_label(entry.type),
        "style": entry_style(entry.type),
        "answers": {category: entry.data.get(category) or MISSING_ANSWER for category in categories},
    }


def render_log_table(entries: list[ReportEntry], categories: tuple[str, ...]) -> str:
    header = ["when", "type", *categories]
    lines = [" | ".join(header)]
    for entry in entries:
        row = log_row(entry, categories)
        lines.append(" | ".join([row["when"], row["label"], *[row["answers"][c] for c in categories]]))
    return "\n".join(lines)
