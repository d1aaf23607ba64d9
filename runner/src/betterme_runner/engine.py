from __future__ import annotations

"""Reconciliation of missed report windows against the persisted tracker snapshot."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from .clock import Clock
from .config import Settings
from .debt import next_deadline, pending_count
from .logs import EntryType, ReportEntry
from .repository import PersistedState, StateRepository


class EngineMode(str, Enum):
    CURRENT = "current"
    BACKLOG = "backlog"


class ReportValidationError(ValueError):
    """Raised when a report leaves one or more categories unanswered."""

    def __init__(self, missing: list[str], *, hint: str | None = None) -> None:
        message = f"Every category needs an answer; missing: {', '.join(missing)}."
        super().__init__(message)
        self.code = "REPORT_INCOMPLETE"
        self.message = message
        self.missing = missing
        self.hint = hint

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message, "missing": list(self.missing)}
        if self.hint:
            payload["hint"] = self.hint
        return payload


class ReportStateError(ValueError):
    """Raised when an operation does not match the current reconciliation mode."""

    def __init__(self, code: str, message: str, *, pending: int) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.pending = pending

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "pending": self.pending}


@dataclass(frozen=True)
class EngineStatus:
    mode: EngineMode
    pending: int
    level: int
    last_update: int
    next_slot: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "pending": self.pending,
            "level": self.level,
            "last_update": self.last_update,
            "next_slot": self.next_slot,
        }


@dataclass(frozen=True)
class SubmissionResult:
    entry: ReportEntry
    status: EngineStatus

    def to_dict(self) -> dict[str, Any]:
        return {"entry": self.entry.to_dict(), "status": self.status.to_dict()}


class ReconciliationEngine:
    """State machine over `CURRENT` and `BACKLOG(n)`.

    Debt is always derived from the clock and `last_update`; nothing about missed
    windows is persisted, so reloading the snapshot never applies a penalty twice.
    Every mutation goes through `StateRepository.save`.
    """

    def __init__(self, repository: StateRepository, clock: Clock, settings: Settings) -> None:
        self.repository = repository
        self.clock = clock
        self.settings = settings
        self._status: EngineStatus | None = None
        repository.subscribe(self._on_state_changed)

    @property
    def state(self) -> PersistedState:
        return self.repository.current()

    @property
    def status(self) -> EngineStatus:
        if self._status is None:
            return self.refresh()
        return self._status

    def _on_state_changed(self, _state: PersistedState) -> None:
        self.refresh()

    def _evaluate(self, now_ms: int) -> EngineStatus:
        state = self.state
        pending = pending_count(now_ms, state.last_update, self.settings.interval_ms)
        return EngineStatus(
            mode=EngineMode.BACKLOG if pending > 0 else EngineMode.CURRENT,
            pending=pending,
            level=state.level,
            last_update=state.last_update,
            next_slot=next_deadline(state.last_update, self.settings.interval_ms),
        )

    def refresh(self) -> EngineStatus:
        """Re-derive the mode from the clock and the current snapshot."""

        self._status = self._evaluate(self.clock.now_ms())
        return self._status

    def validate_answers(self, answers: Mapping[str, Any] | None) -> dict[str, str]:
        provided = answers or {}
        cleaned: dict[str, str] = {}
        missing: list[str] = []
        for category in self.settings.categories:
            value = provided.get(category)
            text = "" if value is None else str(value).strip()
            if not text:
                missing.append(category)
                continue
            cleaned[category] = text
        if missing:
            raise ReportValidationError(missing, hint="Fill in every category and submit again.")
        return cleaned

    def submit_on_time(self, answers: Mapping[str, Any] | None) -> SubmissionResult:
        """Record a regular report; submitting early also restarts the interval."""

        return self._submit_on_time(answers, self.clock.now_ms())

    def _submit_on_time(self, answers: Mapping[str, Any] | None, now: int) -> SubmissionResult:
        status = self._evaluate(now)
        if status.mode is not EngineMode.CURRENT:
            raise ReportStateError(
                "BACKLOG_PENDING",
                f"{status.pending} missed report(s) must be recovered first.",
                pending=status.pending,
            )
        data = self.validate_answers(answers)
        state = self.state
        entry = state.logs.append(ReportEntry(type=EntryType.REGULAR, timestamp=now, data=data))
        state.level += 1
        state.last_update = now
        self.repository.save(state)
        return SubmissionResult(entry=entry, status=self.refresh())

    def submit_backlog_item(self, answers: Mapping[str, Any] | None) -> SubmissionResult:
        """Backfill the oldest missed window, timestamped at the slot it covers."""

        return self._submit_backlog_item(answers, self.clock.now_ms())

    def _submit_backlog_item(self, answers: Mapping[str, Any] | None, now: int) -> SubmissionResult:
        status = self._evaluate(now)
        if status.mode is not EngineMode.BACKLOG:
            raise ReportStateError("NO_BACKLOG", "There are no missed reports to recover.", pending=0)
        data = self.validate_answers(answers)
        state = self.state
        slot = state.last_update + self.settings.interval_ms
        entry = state.logs.append(ReportEntry(type=EntryType.RECOVERY, timestamp=slot, data=data))
        state.last_update = slot
        state.level += 1
        if pending_count(now, state.last_update, self.settings.interval_ms) == 0:
            # Fully caught up: the next interval starts now, dropping the partial window.
            state.last_update = now
        self.repository.save(state)
        return SubmissionResult(entry=entry, status=self.refresh())

    def submit(self, answers: Mapping[str, Any] | None) -> SubmissionResult:
        """Route a report to backlog recovery or on-time submission."""

        # One clock read decides the mode and stamps the entry.
        now = self.clock.now_ms()
        self._status = self._evaluate(now)
        if self._status.mode is EngineMode.BACKLOG:
            return self._submit_backlog_item(answers, now)
        return self._submit_on_time(answers, now)

    def reset(self) -> SubmissionResult:
        """Drop the level to its floor and forgive any outstanding backlog. History is kept."""

        now = self.clock.now_ms()
        state = self.state
        entry = state.logs.append(
            ReportEntry(type=EntryType.RESET, timestamp=now, data=self.settings.reset_answers())
        )
        state.level = self.settings.level_floor
        state.last_update = now
        self.repository.save(state)
        return SubmissionResult(entry=entry, status=self.refresh())
