from __future__ import annotations

"""Local JSONL event log for tracker activity, with windowed summary export."""

import hashlib
import json
import platform
import re
import sys
import unicodedata
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Any


SCHEMA_VERSION = "0.1"
VALID_EVENT_TYPES = {
    "runner.started",
    "report.submitted",
    "report.recovered",
    "report.rejected",
    "backlog.detected",
    "level.reset",
    "state.synced",
    "risk.flagged",
}
VALID_SOURCES = {"cli", "api", "timer"}
VALID_ACTOR_KINDS = {"user", "system"}
DEFAULT_ACTOR_ID = "local"
MAX_STRING_LENGTH = 200
RANGE_PATTERN = re.compile(r"^(\d+)([dh])$")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _utc_now_rfc3339() -> str:
    return _utc_now().replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _parse_ts(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    normalized = value.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _safe_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def _strip_control_chars(value: str) -> str:
    return "".join(ch for ch in value if not unicodedata.category(ch).startswith("C"))


@dataclass(frozen=True)
class BuildInfo:
    """Runtime metadata attached to every event."""

    runner_version: str
    python_version: str
    platform: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "runner_version": self.runner_version,
            "python_version": self.python_version,
            "platform": self.platform,
        }


def _sanitize_text(value: str) -> tuple[str, bool]:
    cleaned = _strip_control_chars(value).strip()
    if len(cleaned) > MAX_STRING_LENGTH:
        return f"{cleaned[:MAX_STRING_LENGTH]}...[truncated]", True
    return cleaned, False


def sanitize_event_data(data: Any) -> tuple[Any, int]:
    """Recursively strip control characters and truncate long strings.

    Returns the sanitized payload and the number of truncated fields.
    """

    if isinstance(data, dict):
        sanitized: dict[str, Any] = {}
        truncated = 0
        for key, value in data.items():
            key_text, key_cut = _sanitize_text(str(key))
            value_sanitized, value_cut = sanitize_event_data(value)
            sanitized[key_text] = value_sanitized
            truncated += int(key_cut) + value_cut
        return sanitized, truncated
    if isinstance(data, (list, tuple)):
        items: list[Any] = []
        truncated = 0
        for item in data:
            item_sanitized, item_cut = sanitize_event_data(item)
            items.append(item_sanitized)
            truncated += item_cut
        return items, truncated
    if data is None or isinstance(data, (int, float, bool)):
        return data, 0
    text, cut = _sanitize_text(str(data))
    return text, int(cut)


def normalize_actor_model(actor: Any, *, actor_id: Any | None = None) -> dict[str, str]:
    """Return the `{kind, id}` actor attached to every event."""

    kind = str(actor).strip().lower() if actor is not None else "system"
    if kind not in VALID_ACTOR_KINDS:
        kind = "system"
    text = "" if actor_id is None else str(actor_id)
    cleaned, _ = _sanitize_text(text)
    return {"kind": kind, "id": cleaned or DEFAULT_ACTOR_ID}


def parse_range(range_value: str) -> timedelta:
    """Parse compact duration windows such as `7d` or `24h`."""

    match = RANGE_PATTERN.match(range_value.strip().lower())
    if not match:
        raise ValueError("range must be like 7d or 24h")
    amount = int(match.group(1))
    unit = match.group(2)
    if amount <= 0:
        raise ValueError("range amount must be > 0")
    if unit == "d":
        return timedelta(days=amount)
    return timedelta(hours=amount)


def detect_runner_version() -> str:
    try:
        return package_version("betterme-runner")
    except PackageNotFoundError:
        return "0.1.0"


class TelemetryLogger:
    """Append-only event logger. Write failures are reported on stderr, never raised."""

    def __init__(self, events_path: Path) -> None:
        self.events_path = events_path
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        self.build = BuildInfo(
            runner_version=detect_runner_version(),
            python_version=sys.version.split()[0],
            platform=platform.platform(),
        )

    def _normalize_source(self, source: str) -> str:
        if source in VALID_SOURCES:
            return source
        return "cli"

    def _append_jsonl(self, payload: dict[str, Any]) -> None:
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        with self.events_path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write(_safe_json(payload))
            handle.write("\n")

    def log_event(
        self,
        event_type: str,
        *,
        source: str,
        data: dict[str, Any],
        trace_id: str | None = None,
        actor: str = "system",
        actor_id: str | None = None,
    ) -> None:
        try:
            if event_type not in VALID_EVENT_TYPES:
                data = {
                    "reason": "invalid_event_type",
                    "invalid_event_type_hash": hashlib.sha256(event_type.encode("utf-8")).hexdigest(),
                }
                event_type = "risk.flagged"
            sanitized, truncated = sanitize_event_data(data)
            if truncated:
                sanitized["fields_truncated_count"] = truncated
            self._append_jsonl(
                {
                    "schema_version": SCHEMA_VERSION,
                    "event_id": str(uuid.uuid4()),
                    "ts": _utc_now_rfc3339(),
                    "event_type": event_type,
                    "actor": normalize_actor_model(actor, actor_id=actor_id),
                    "source": self._normalize_source(source),
                    "trace_id": trace_id,
                    "build": self.build.to_dict(),
                    "data": sanitized,
                }
            )
        except Exception as exc:  # noqa: BLE001
            print(f"[telemetry] failed to append event: {exc}", file=sys.stderr)

    def iter_events(self) -> list[dict[str, Any]]:
        if not self.events_path.exists():
            return []
        events: list[dict[str, Any]] = []
        with self.events_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(payload, dict):
                    events.append(payload)
        return events

    def count_events(self) -> int:
        if not self.events_path.exists():
            return 0
        count = 0
        with self.events_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if line.strip():
                    count += 1
        return count

    def export_summary(
        self,
        *,
        range_value: str,
        level: int,
        out_path: Path | None = None,
    ) -> dict[str, Any]:
        """Aggregate event counts inside a trailing window."""

        window = parse_range(range_value)
        end = _utc_now()
        start = end - window

        in_window: list[dict[str, Any]] = []
        for event in self.iter_events():
            parsed_ts = _parse_ts(event.get("ts"))
            if parsed_ts is None or not (start <= parsed_ts <= end):
                continue
            in_window.append(event)

        by_type = Counter(str(evt.get("event_type", "unknown")) for evt in in_window)
        by_source = Counter(str(evt.get("source", "cli")) for evt in in_window)
        by_actor_kind = Counter(
            str(evt["actor"].get("kind", "system")) if isinstance(evt.get("actor"), dict) else "system"
            for evt in in_window
        )
        rejected_by_code = Counter(
            str(evt.get("data", {}).get("code", "unknown"))
            for evt in in_window
            if evt.get("event_type") == "report.rejected"
        )
        submitted = by_type.get("report.submitted", 0)
        recovered = by_type.get("report.recovered", 0)

        summary = {
            "schema_version": SCHEMA_VERSION,
            "generated_at": _utc_now_rfc3339(),
            "range": range_value,
            "window_start": start.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            "window_end": end.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            "events_considered": len(in_window),
            "events_by_type": dict(sorted(by_type.items())),
            "events_by_source": dict(sorted(by_source.items())),
            "events_by_actor_kind": dict(sorted(by_actor_kind.items())),
            "reports_on_time": submitted,
            "reports_recovered": recovered,
            "resets": by_type.get("level.reset", 0),
            "rejections_by_code": dict(sorted(rejected_by_code.items())),
            "on_time_ratio": round(submitted / (submitted + recovered), 4) if (submitted + recovered) else 0.0,
            "level": int(level),
        }
        summary["summary_sha256"] = summary_sha256(summary)
        if out_path is not None:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        return summary


def summary_sha256(summary: dict[str, Any]) -> str:
    """Deterministic SHA-256 for an exported summary."""

    return hashlib.sha256(_safe_json(summary).encode("utf-8")).hexdigest()
