from __future__ import annotations

import json
from pathlib import Path

from fastapi.testclient import TestClient

from betterme_runner.api import create_app
from betterme_runner.clock import ManualClock
from betterme_runner.service import TrackerService


T0 = 1_700_000_000_000
HOUR_MS = 3_600_000
ANSWERS = {"health": "si", "focus": "si", "income": "si", "control": "si"}


def _service_and_client(tmp_path: Path, monkeypatch) -> tuple[TrackerService, ManualClock, TestClient]:  # type: ignore[no-untyped-def]
    monkeypatch.delenv("BETTERME_INTERVAL_MS", raising=False)
    monkeypatch.delenv("BETTERME_LEVEL_FLOOR", raising=False)
    clock = ManualClock(T0)
    service = TrackerService.create(tmp_path / "home", clock=clock)
    return service, clock, TestClient(create_app(service))


def _events(tmp_path: Path) -> list[dict]:
    events_path = tmp_path / "home" / "telemetry" / "events.jsonl"
    if not events_path.exists():
        return []
    return [json.loads(line) for line in events_path.read_text(encoding="utf-8").splitlines() if line.strip()]


def test_health_endpoint(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _, _, client = _service_and_client(tmp_path, monkeypatch)
    response = client.get("/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers["X-Betterme-Trace-Id"].startswith("api:")


def test_state_endpoint_exposes_snapshot_and_status(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _, _, client = _service_and_client(tmp_path, monkeypatch)
    payload = client.get("/v1/state").json()
    assert payload["snapshot"] == {"level": 1, "lastUpdate": T0, "logs": []}
    assert payload["status"]["mode"] == "current"
    assert payload["status"]["countdown"] == "60:00"
    assert payload["status"]["categories"] == ["health", "focus", "income", "control"]
    assert payload["status"]["entries_by_type"] == {"regular": 0, "recovery": 0, "reset": 0}


def test_logs_endpoint_survives_corrupt_timestamps(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    state_path = tmp_path / "home" / "state" / "tracker_state.json"
    state_path.parent.mkdir(parents=True, exist_ok=True)
    state_path.write_text(
        json.dumps(
            {
                "level": 3,
                "lastUpdate": T0,
                "logs": [
                    {"type": "regular", "timestamp": 1e20, "data": {"health": "si"}},
                    {"type": "regular", "timestamp": T0 - HOUR_MS, "data": ANSWERS},
                ],
            }
        ),
        encoding="utf-8",
    )
    _, _, client = _service_and_client(tmp_path, monkeypatch)
    response = client.get("/v1/logs")
    assert response.status_code == 200
    assert [row["timestamp"] for row in response.json()] == [T0 - HOUR_MS]


def test_report_submission_and_validation(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    service, _, client = _service_and_client(tmp_path, monkeypatch)
    incomplete = client.post("/v1/reports", json={"answers": {"health": "si"}})
    assert incomplete.status_code == 400
    assert incomplete.json()["code"] == "REPORT_INCOMPLETE"
    assert incomplete.json()["missing"] == ["focus", "income", "control"]

    response = client.post("/v1/reports", json={"answers": ANSWERS}, headers={"X-Betterme-Trace-Id": "trace-1"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["entry"]["type"] == "regular"
    assert payload["status"]["level"] == 2
    assert payload["trace_id"] == "trace-1"
    assert service.state.level == 2

    event_types = [event["event_type"] for event in _events(tmp_path)]
    assert "report.rejected" in event_types
    assert "report.submitted" in event_types
    actors = {event["event_type"]: event["actor"]["kind"] for event in _events(tmp_path)}
    assert actors["runner.started"] == "system"
    assert actors["report.submitted"] == "user"


def test_backlog_flow_over_http(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _, clock, client = _service_and_client(tmp_path, monkeypatch)
    clock.advance(2 * HOUR_MS + 1_000)

    timer = client.get("/v1/timer").json()
    assert timer["alerting"] is True
    assert timer["display"] == "NOW!"
    assert timer["pending"] == 2

    blocked = client.post("/v1/reports/on-time", json={"answers": ANSWERS})
    assert blocked.status_code == 409
    assert blocked.json()["code"] == "BACKLOG_PENDING"

    first = client.post("/v1/reports/backlog", json={"answers": ANSWERS}).json()
    assert first["entry"]["timestamp"] == T0 + HOUR_MS
    assert first["status"]["mode"] == "backlog"
    second = client.post("/v1/reports/backlog", json={"answers": ANSWERS}).json()
    assert second["entry"]["timestamp"] == T0 + 2 * HOUR_MS
    assert second["status"]["mode"] == "current"
    assert second["status"]["level"] == 3

    extra = client.post("/v1/reports/backlog", json={"answers": ANSWERS})
    assert extra.status_code == 409
    assert extra.json()["code"] == "NO_BACKLOG"

    logs = client.get("/v1/logs").json()
    assert [row["timestamp"] for row in logs] == [T0 + 2 * HOUR_MS, T0 + HOUR_MS]
    assert all(row["label"] == "RECOVERY" for row in logs)


def test_reset_requires_double_confirmation(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    service, _, client = _service_and_client(tmp_path, monkeypatch)
    client.post("/v1/reports", json={"answers": ANSWERS})

    denied = client.post("/v1/reset", json={"confirm": True})
    assert denied.status_code == 400
    assert service.state.level == 2

    allowed = client.post("/v1/reset", json={"confirm": True}, headers={"X-Betterme-Confirm": "true"})
    assert allowed.status_code == 200
    assert allowed.json()["entry"]["type"] == "reset"
    assert service.state.level == 1
    assert len(service.state.logs) == 2


def test_telemetry_summary_endpoint(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _, _, client = _service_and_client(tmp_path, monkeypatch)
    client.post("/v1/reports", json={"answers": ANSWERS})
    summary = client.get("/v1/telemetry/summary", params={"range": "24h"}).json()
    assert summary["reports_on_time"] == 1
    assert summary["level"] == 2

    bad = client.get("/v1/telemetry/summary", params={"range": "forever"})
    assert bad.status_code == 422
