from __future__ import annotations

"""Tracker service wiring settings, persisted state, reconciliation, and telemetry."""

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

from .clock import Clock, SystemClock
from .config import Settings, load_settings
from .debt import time_remaining
from .engine import EngineMode, ReconciliationEngine, ReportStateError, ReportValidationError, SubmissionResult
from .logs import EntryType
from .paths import ensure_home_dirs, tracker_home
from .render import format_countdown, level_tier, log_row
from .repository import PersistedState, StateRepository
from .telemetry import TelemetryLogger
from .timer import Notifier, ReportTimer


DEFAULT_TRACE_ID_PREFIX = "cli"
STATE_FILE_NAME = "tracker_state.json"


def _new_trace_id(prefix: str = DEFAULT_TRACE_ID_PREFIX) -> str:
    return f"{prefix}:{uuid.uuid4()}"


@dataclass
class TrackerService:
    """Local tracker facade used by the CLI and the HTTP API."""

    home: Path
    dirs: dict[str, Path]
    settings: Settings
    clock: Clock
    repository: StateRepository
    engine: ReconciliationEngine
    telemetry: TelemetryLogger

    @classmethod
    def create(cls, home: Path | None = None, *, clock: Clock | None = None) -> "TrackerService":
        """Load settings and state from the tracker home and log startup telemetry."""

        base = home or tracker_home()
        dirs = ensure_home_dirs(base)
        settings = load_settings(base)
        active_clock = clock or SystemClock()
        repository = StateRepository(dirs["state"] / STATE_FILE_NAME, active_clock, initial_level=settings.level_floor)
        repository.load()
        engine = ReconciliationEngine(repository, active_clock, settings)
        telemetry = TelemetryLogger(events_path=dirs["telemetry"] / "events.jsonl")
        service = cls(
            home=base,
            dirs=dirs,
            settings=settings,
            clock=active_clock,
            repository=repository,
            engine=engine,
            telemetry=telemetry,
        )
        status = engine.refresh()
        telemetry.log_event(
            "runner.started",
            source="cli",
            data={"interval_ms": settings.interval_ms, "level": status.level, "mode": status.mode.value},
        )
        service._note_backlog(source="cli", trace_id=None)
        return service

    @property
    def state_path(self) -> Path:
        return self.repository.path

    @property
    def state(self) -> PersistedState:
        return self.repository.current()

    def _note_backlog(self, *, source: str, trace_id: str | None) -> None:
        status = self.engine.status
        if status.mode is EngineMode.BACKLOG:
            self.telemetry.log_event(
                "backlog.detected",
                source=source,
                trace_id=trace_id,
                data={"pending": status.pending, "next_slot": status.next_slot},
            )

    def on_state_changed(self, callback: Callable[[PersistedState], None]) -> Callable[[], None]:
        """Subscribe to every save and every reload triggered by another instance."""

        return self.repository.subscribe(callback)

    def sync(self, *, source: str = "timer") -> bool:
        changed = self.repository.poll()
        if changed:
            status = self.engine.status
            self.telemetry.log_event(
                "state.synced",
                source=source,
                data={"level": status.level, "pending": status.pending, "log_count": len(self.state.logs)},
            )
        return changed

    def create_timer(self, notifier: Notifier | None = None) -> ReportTimer:
        return ReportTimer(
            self.repository,
            self.engine,
            self.clock,
            interval_ms=self.settings.interval_ms,
            notifier=notifier,
            tick_seconds=self.settings.tick_seconds,
            sync=self.sync,
        )

    def time_remaining(self) -> int:
        return time_remaining(self.clock.now_ms(), self.state.last_update, self.settings.interval_ms)

    def status(self) -> dict[str, Any]:
        engine_status = self.engine.refresh()
        remaining = self.time_remaining()
        return {
            **engine_status.to_dict(),
            "level_tier": level_tier(engine_status.level),
            "time_remaining_ms": remaining,
            "countdown": format_countdown(remaining),
            "interval_ms": self.settings.interval_ms,
            "categories": list(self.settings.categories),
            "log_count": len(self.state.logs),
            "entries_by_type": self.state.logs.count_by_type(),
        }

    def snapshot(self) -> dict[str, Any]:
        return self.state.to_dict()

    def timeline(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Log rows newest first; stored order is left untouched."""

        return [log_row(entry, self.settings.categories) for entry in self.state.logs.descending(limit)]

    def _run_submission(
        self,
        action: Callable[[], SubmissionResult],
        *,
        source: str,
        trace_id: str | None,
    ) -> dict[str, Any]:
        trace = trace_id or _new_trace_id(source)
        try:
            result = action()
        except (ReportValidationError, ReportStateError) as exc:
            self.telemetry.log_event(
                "report.rejected",
                source=source,
                trace_id=trace,
                actor="user",
                data=exc.to_dict(),
            )
            raise
        entry = result.entry
        event_type = "report.recovered" if entry.type is EntryType.RECOVERY else "report.submitted"
        self.telemetry.log_event(
            event_type,
            source=source,
            trace_id=trace,
            actor="user",
            data={
                "entry_type": entry.type.value,
                "entry_timestamp": entry.timestamp,
                "categories": sorted(entry.data),
                "level": result.status.level,
                "pending_after": result.status.pending,
            },
        )
        payload = result.to_dict()
        payload["trace_id"] = trace
        return payload

    def submit_report(
        self,
        answers: Mapping[str, Any] | None,
        *,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Submit one report, recovering the oldest missed window first if any are owed."""

        return self._run_submission(lambda: self.engine.submit(answers), source=source, trace_id=trace_id)

    def submit_on_time(
        self,
        answers: Mapping[str, Any] | None,
        *,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return self._run_submission(lambda: self.engine.submit_on_time(answers), source=source, trace_id=trace_id)

    def submit_backlog_item(
        self,
        answers: Mapping[str, Any] | None,
        *,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return self._run_submission(lambda: self.engine.submit_backlog_item(answers), source=source, trace_id=trace_id)

    def reset(self, *, confirm: bool, source: str = "cli", trace_id: str | None = None) -> dict[str, Any]:
        """Discard progress back to the configured level floor. Requires explicit confirmation."""

        if not confirm:
            raise ValueError("Level reset requires explicit confirmation.")
        previous = self.engine.refresh()
        result = self.engine.reset()
        trace = trace_id or _new_trace_id(source)
        self.telemetry.log_event(
            "level.reset",
            source=source,
            trace_id=trace,
            actor="user",
            data={
                "previous_level": previous.level,
                "forgiven_pending": previous.pending,
                "level": result.status.level,
            },
        )
        payload = result.to_dict()
        payload["trace_id"] = trace
        return payload

    def telemetry_status(self) -> dict[str, Any]:
        return {"events_path": str(self.telemetry.events_path), "event_count": self.telemetry.count_events()}

    def telemetry_export(self, range_value: str, out_path: Path | None = None) -> dict[str, Any]:
        target = out_path or self.dirs["exports"] / f"telemetry-{range_value}.json"
        return self.telemetry.export_summary(range_value=range_value, level=self.state.level, out_path=target)
