from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Callable, Protocol
from uuid import uuid4

import uvicorn

from .api import create_app
from .engine import ReportStateError, ReportValidationError
from .render import format_timestamp, render_log_table
from .service import TrackerService
from .timer import TimerReading


class AnswerSource(Protocol):
    def get_answers(self, categories: tuple[str, ...]) -> dict[str, str] | None: ...

    def clear(self) -> None: ...


class PromptAnswerSource:
    """Terminal prompts, one per category. Returns None when any answer is blank."""

    def __init__(self, input_fn: Callable[[str], str] | None = None) -> None:
        self.input_fn = input_fn or input
        self._last: dict[str, str] = {}

    def get_answers(self, categories: tuple[str, ...]) -> dict[str, str] | None:
        answers: dict[str, str] = {}
        for category in categories:
            answers[category] = self.input_fn(f"  {category}: ").strip()
        self._last = answers
        if not all(answers.values()):
            return None
        return answers

    def clear(self) -> None:
        self._last = {}


class ConsoleNotifier:
    def alert(self, count: int, next_timestamp: int) -> None:
        print(f"\n[!] {count} report(s) overdue. Next to recover: {format_timestamp(next_timestamp, with_date=False)}")

    def dismiss(self) -> None:
        print("\n[ok] All caught up.")


def _service() -> TrackerService:
    return TrackerService.create()


def parse_answer_flags(values: list[str]) -> dict[str, str]:
    answers: dict[str, str] = {}
    for raw in values:
        if "=" not in raw:
            raise ValueError(f"Answer must look like category=value: {raw!r}")
        key, value = raw.split("=", 1)
        answers[key.strip()] = value
    return answers


def _print_error(exc: ReportValidationError | ReportStateError) -> None:
    print(json.dumps(exc.to_dict(), indent=2), file=sys.stderr)


def _interactive_report(service: TrackerService, source: AnswerSource, trace_id: str) -> int:
    categories = service.settings.categories
    while True:
        status = service.status()
        if status["mode"] == "backlog":
            print(
                f"Missed report {status['pending']} window(s) behind "
                f"({format_timestamp(status['next_slot'], with_date=False)})"
            )
        else:
            print(f"Report for level {status['level'] + 1}")
        try:
            answers = source.get_answers(categories)
        except EOFError:
            return 1
        if answers is None:
            print("Every category needs an answer. No excuses.")
            continue
        try:
            result = service.submit_report(answers, source="cli", trace_id=trace_id)
        except (ReportValidationError, ReportStateError) as exc:
            _print_error(exc)
            continue
        source.clear()
        after = result["status"]
        if after["mode"] == "current":
            print(f"Updated! Level {after['level']}. Keep going.")
            return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="BetterMe tracker CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Print level, pending windows and countdown")

    report_cmd = sub.add_parser("report", help="Submit a report (recovers missed windows first)")
    report_cmd.add_argument("--answer", action="append", default=[], help="category=value (repeatable)")

    reset_cmd = sub.add_parser("reset", help="Reset the level to its floor")
    reset_cmd.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    log_cmd = sub.add_parser("log", help="Show the report log, newest first")
    log_cmd.add_argument("--limit", type=int, default=None)
    log_cmd.add_argument("--format", choices=["text", "json"], default="text")

    watch_cmd = sub.add_parser("watch", help="Run the countdown timer")
    watch_cmd.add_argument("--ticks", type=int, default=None, help="Stop after N ticks")

    api_cmd = sub.add_parser("api", help="Run local API server")
    api_cmd.add_argument("--host", default="127.0.0.1")
    api_cmd.add_argument("--port", type=int, default=8000)

    telemetry_cmd = sub.add_parser("telemetry", help="Telemetry operations")
    telemetry_sub = telemetry_cmd.add_subparsers(dest="telemetry_command", required=True)
    telemetry_sub.add_parser("status", help="Show telemetry status")
    telemetry_export = telemetry_sub.add_parser("export", help="Export aggregated telemetry summary")
    telemetry_export.add_argument("--range", default="7d", help="Range window like 7d or 24h")
    telemetry_export.add_argument("--out", default=None, help="Output JSON path")

    args = parser.parse_args(argv)
    service = _service()
    trace_id = f"cli:{uuid4()}"

    if args.command == "status":
        print(json.dumps(service.status(), indent=2))
        return 0

    if args.command == "report":
        if not args.answer:
            return _interactive_report(service, PromptAnswerSource(), trace_id)
        try:
            answers = parse_answer_flags(args.answer)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return 2
        try:
            result = service.submit_report(answers, source="cli", trace_id=trace_id)
        except (ReportValidationError, ReportStateError) as exc:
            _print_error(exc)
            return 1
        print(json.dumps(result, indent=2))
        return 0

    if args.command == "reset":
        confirmed = args.yes
        if not confirmed:
            reply = input("Are you sure? You will lose your current level. [y/N] ")
            confirmed = reply.strip().lower() in {"y", "yes"}
        if not confirmed:
            print("Reset cancelled.")
            return 1
        result = service.reset(confirm=True, source="cli", trace_id=trace_id)
        print(json.dumps(result, indent=2))
        return 0

    if args.command == "log":
        if args.format == "json":
            print(json.dumps(service.timeline(limit=args.limit), indent=2))
        else:
            entries = service.state.logs.descending(args.limit)
            print(render_log_table(entries, service.settings.categories))
        return 0

    if args.command == "watch":
        timer = service.create_timer(ConsoleNotifier())

        def show(reading: TimerReading) -> None:
            print(f"\rLevel {service.state.level} | next report: {reading.display}   ", end="", flush=True)

        try:
            timer.run(max_ticks=args.ticks, on_tick=show)
        except KeyboardInterrupt:
            pass
        print()
        return 0

    if args.command == "api":
        app = create_app(service)
        uvicorn.run(app, host=args.host, port=args.port, log_level="info")
        return 0

    if args.command == "telemetry":
        if args.telemetry_command == "status":
            print(json.dumps(service.telemetry_status(), indent=2))
            return 0
        if args.telemetry_command == "export":
            try:
                summary = service.telemetry_export(args.range, Path(args.out) if args.out else None)
            except ValueError as exc:
                print(str(exc), file=sys.stderr)
                return 2
            print(json.dumps(summary, indent=2))
            return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
