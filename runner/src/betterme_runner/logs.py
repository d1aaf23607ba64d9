from __future__ import annotations

"""Append-only report log with tolerant loading from persisted rows."""

import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping


# Last millisecond of 9999-12-31 UTC, the upper bound datetime can represent.
MAX_TIMESTAMP_MS = 253_402_300_799_999


def as_timestamp(value: Any) -> int | None:
    """Return an epoch-ms integer, or None for values no clock could have produced."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    timestamp = int(value)
    if not 0 <= timestamp <= MAX_TIMESTAMP_MS:
        return None
    return timestamp


class EntryType(str, Enum):
    REGULAR = "regular"
    RECOVERY = "recovery"
    RESET = "reset"


@dataclass(frozen=True)
class ReportEntry:
    """One immutable report row: an on-time report, a backfilled window, or a reset."""

    type: EntryType
    timestamp: int
    data: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "timestamp": self.timestamp, "data": dict(self.data)}

    @classmethod
    def from_dict(cls, raw: Any) -> "ReportEntry | None":
        """Parse a persisted row, returning None when it cannot be salvaged."""

        if not isinstance(raw, dict):
            return None
        try:
            entry_type = EntryType(raw.get("type"))
        except ValueError:
            return None
        timestamp = as_timestamp(raw.get("timestamp"))
        if timestamp is None:
            return None
        data = raw.get("data")
        if not isinstance(data, dict):
            data = {}
        answers = {str(key): "" if value is None else str(value) for key, value in data.items()}
        return cls(type=entry_type, timestamp=timestamp, data=answers)


class LogStore:
    """Insertion-ordered report history. Entries are never removed or reordered."""

    def __init__(self, entries: list[ReportEntry] | None = None) -> None:
        self._entries: list[ReportEntry] = list(entries or [])

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ReportEntry]:
        return iter(list(self._entries))

    def append(self, entry: ReportEntry) -> ReportEntry:
        if not isinstance(entry, ReportEntry):
            raise TypeError("LogStore only accepts ReportEntry values.")
        self._entries.append(entry)
        return entry

    def latest(self) -> ReportEntry | None:
        if not self._entries:
            return None
        return self._entries[-1]

    def descending(self, limit: int | None = None) -> list[ReportEntry]:
        # Newest first; on equal timestamps the later insertion wins.
        indexed = sorted(enumerate(self._entries), key=lambda item: (item[1].timestamp, item[0]), reverse=True)
        rows = [entry for _, entry in indexed]
        if limit is not None:
            return rows[: max(0, limit)]
        return rows

    def count_by_type(self) -> dict[str, int]:
        counts = {entry_type.value: 0 for entry_type in EntryType}
        for entry in self._entries:
            counts[entry.type.value] += 1
        return counts

    def to_list(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]

    @classmethod
    def from_list(cls, raw: Any) -> "LogStore":
        if not isinstance(raw, list):
            return cls()
        entries: list[ReportEntry] = []
        for row in raw:
            entry = ReportEntry.from_dict(row)
            if entry is not None:
                entries.append(entry)
        return cls(entries)
