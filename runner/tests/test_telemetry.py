from __future__ import annotations

import json
from pathlib import Path

import pytest

from betterme_runner.telemetry import (
    TelemetryLogger,
    normalize_actor_model,
    parse_range,
    sanitize_event_data,
    summary_sha256,
)


def _read_jsonl(path: Path) -> list[dict]:
    if not path.exists():
        return []
    rows: list[dict] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        rows.append(json.loads(line))
    return rows


def test_sanitize_strips_controls_and_truncates() -> None:
    payload = {"note": "a" * 250, "nested": {"label": "ok\x07"}, "count": 3}
    sanitized, truncated = sanitize_event_data(payload)
    assert sanitized["note"].endswith("...[truncated]")
    assert sanitized["nested"]["label"] == "ok"
    assert sanitized["count"] == 3
    assert truncated == 1


def test_event_logger_appends_valid_jsonl(tmp_path: Path) -> None:
    events_path = tmp_path / "telemetry" / "events.jsonl"
    logger = TelemetryLogger(events_path=events_path)
    logger.log_event("report.submitted", source="cli", trace_id="cli:1", data={"level": 2})
    rows = _read_jsonl(events_path)
    assert len(rows) == 1
    row = rows[0]
    assert row["schema_version"] == "0.1"
    assert row["event_type"] == "report.submitted"
    assert row["source"] == "cli"
    assert row["trace_id"] == "cli:1"
    assert row["data"] == {"level": 2}
    assert row["actor"] == {"kind": "system", "id": "local"}
    assert "build" in row


def test_unknown_event_type_is_flagged(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    logger = TelemetryLogger(events_path=events_path)
    logger.log_event("made.up", source="somewhere", data={"secret": "value"})
    row = _read_jsonl(events_path)[0]
    assert row["event_type"] == "risk.flagged"
    assert row["source"] == "cli"
    assert row["data"]["reason"] == "invalid_event_type"
    assert "secret" not in row["data"]


def test_export_summary_counts_reports(tmp_path: Path) -> None:
    logger = TelemetryLogger(events_path=tmp_path / "events.jsonl")
    logger.log_event("report.submitted", source="cli", data={}, actor="user", actor_id="me\x07")
    logger.log_event("report.recovered", source="api", data={})
    logger.log_event("report.recovered", source="api", data={})
    logger.log_event("report.rejected", source="api", data={"code": "REPORT_INCOMPLETE"})
    logger.log_event("level.reset", source="cli", data={})
    out = tmp_path / "exports" / "summary.json"
    summary = logger.export_summary(range_value="24h", level=4, out_path=out)

    assert summary["events_considered"] == 5
    assert summary["reports_on_time"] == 1
    assert summary["reports_recovered"] == 2
    assert summary["resets"] == 1
    assert summary["rejections_by_code"] == {"REPORT_INCOMPLETE": 1}
    assert summary["events_by_source"] == {"api": 3, "cli": 2}
    assert summary["events_by_actor_kind"] == {"system": 4, "user": 1}
    assert summary["on_time_ratio"] == round(1 / 3, 4)
    assert summary["level"] == 4
    assert json.loads(out.read_text(encoding="utf-8")) == summary
    unsigned = {key: value for key, value in summary.items() if key != "summary_sha256"}
    assert summary["summary_sha256"] == summary_sha256(unsigned)


def test_parse_range_rejects_bad_windows() -> None:
    assert parse_range("7d").days == 7
    assert parse_range("24h").total_seconds() == 24 * 3600
    with pytest.raises(ValueError):
        parse_range("1w")
    with pytest.raises(ValueError):
        parse_range("0d")


def test_actor_model_is_normalized() -> None:
    assert normalize_actor_model("USER", actor_id="me\x07") == {"kind": "user", "id": "me"}
    assert normalize_actor_model("robot") == {"kind": "system", "id": "local"}
    assert normalize_actor_model(None, actor_id="   ") == {"kind": "system", "id": "local"}
