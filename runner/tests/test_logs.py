from __future__ import annotations

from dataclasses import FrozenInstanceError

import pytest

from betterme_runner.logs import EntryType, LogStore, ReportEntry
from betterme_runner.render import ENTRY_LABELS, ENTRY_STYLES, format_countdown, format_timestamp, level_tier, log_row


def _entry(kind: EntryType, ts: int, **answers: str) -> ReportEntry:
    return ReportEntry(type=kind, timestamp=ts, data=answers)


def test_descending_view_does_not_reorder_storage() -> None:
    store = LogStore()
    store.append(_entry(EntryType.REGULAR, 300))
    store.append(_entry(EntryType.RECOVERY, 100))
    store.append(_entry(EntryType.RECOVERY, 200))

    assert [entry.timestamp for entry in store.descending()] == [300, 200, 100]
    assert [entry.timestamp for entry in store] == [300, 100, 200]
    assert [entry.timestamp for entry in store.descending(limit=2)] == [300, 200]


def test_equal_timestamps_show_latest_insertion_first() -> None:
    store = LogStore()
    store.append(_entry(EntryType.REGULAR, 100, health="a"))
    store.append(_entry(EntryType.RESET, 100, health="b"))
    assert [entry.data["health"] for entry in store.descending()] == ["b", "a"]


def test_entries_are_immutable() -> None:
    entry = _entry(EntryType.REGULAR, 1, health="ok")
    with pytest.raises(FrozenInstanceError):
        entry.timestamp = 2  # type: ignore[misc]
    with pytest.raises(TypeError):
        entry.data["health"] = "changed"  # type: ignore[index]


def test_from_list_skips_unsalvageable_rows() -> None:
    store = LogStore.from_list(
        [
            {"type": "regular", "timestamp": 10, "data": {"health": "si", "focus": 3}},
            {"type": "bogus", "timestamp": 11, "data": {}},
            {"type": "recovery", "timestamp": "yesterday"},
            "not-a-row",
            {"type": "reset", "timestamp": 12.0, "data": None},
        ]
    )
    assert len(store) == 2
    rows = store.to_list()
    assert rows[0] == {"type": "regular", "timestamp": 10, "data": {"health": "si", "focus": "3"}}
    assert rows[1] == {"type": "reset", "timestamp": 12, "data": {}}
    assert LogStore.from_list({"not": "a list"}).to_list() == []


def test_count_by_type_covers_every_variant() -> None:
    store = LogStore([_entry(EntryType.REGULAR, 1), _entry(EntryType.REGULAR, 2), _entry(EntryType.RESET, 3)])
    assert store.count_by_type() == {"regular": 2, "recovery": 0, "reset": 1}


def test_every_entry_type_has_label_and_style() -> None:
    assert set(ENTRY_LABELS) == set(EntryType)
    assert set(ENTRY_STYLES) == set(EntryType)
    assert ENTRY_STYLES[EntryType.RESET] == ENTRY_STYLES[EntryType.RECOVERY]


def test_countdown_and_tiers() -> None:
    assert format_countdown(0) == "NOW!"
    assert format_countdown(-10) == "NOW!"
    assert format_countdown(61_000) == "01:01"
    assert format_countdown(1_800_000) == "30:00"
    assert format_countdown(999) == "00:00"
    assert level_tier(10) == "default"
    assert level_tier(11) == "green"
    assert level_tier(21) == "magenta"


def test_log_row_marks_missing_answers() -> None:
    row = log_row(_entry(EntryType.RECOVERY, 1_700_000_000_000, health="si"), ("health", "focus"))
    assert row["label"] == "RECOVERY"
    assert row["answers"] == {"health": "si", "focus": "-"}


def test_unrepresentable_timestamp_renders_as_number() -> None:
    assert format_timestamp(10**20) == str(10**20)
    assert format_timestamp(-(10**18), with_date=False) == str(-(10**18))
    row = log_row(_entry(EntryType.REGULAR, 10**20, health="si"), ("health",))
    assert row["when"] == str(10**20)
