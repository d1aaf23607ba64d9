from __future__ import annotations

"""Tracker settings: defaults, optional YAML file, and environment overrides."""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator


DEFAULT_INTERVAL_MS = 60 * 60 * 1000
DEFAULT_CATEGORIES = ("health", "focus", "income", "control")
VALID_LEVEL_FLOORS = (0, 1)
CONFIG_FILE_NAME = "config.yaml"

SETTINGS_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "interval_ms": {"type": "integer", "minimum": 1000},
        "level_floor": {"type": "integer", "enum": list(VALID_LEVEL_FLOORS)},
        "categories": {
            "type": "array",
            "minItems": 1,
            "uniqueItems": True,
            "items": {"type": "string", "pattern": r"^[a-z][a-z0-9_]{0,39}$"},
        },
        "reset_marker": {"type": "string", "minLength": 1, "maxLength": 40},
        "reset_note": {"type": "string", "minLength": 1, "maxLength": 80},
        "tick_seconds": {"type": "number", "exclusiveMinimum": 0, "maximum": 60},
    },
}


@dataclass(frozen=True)
class Settings:
    interval_ms: int = DEFAULT_INTERVAL_MS
    level_floor: int = 1
    categories: tuple[str, ...] = DEFAULT_CATEGORIES
    reset_marker: str = "FAIL"
    reset_note: str = "LEVEL RESET"
    tick_seconds: float = 1.0

    def reset_answers(self) -> dict[str, str]:
        """Sentinel answers recorded when progress is discarded."""

        answers = {category: self.reset_marker for category in self.categories}
        answers[self.categories[-1]] = self.reset_note
        return answers

    def to_dict(self) -> dict[str, Any]:
        return {
            "interval_ms": self.interval_ms,
            "level_floor": self.level_floor,
            "categories": list(self.categories),
            "reset_marker": self.reset_marker,
            "reset_note": self.reset_note,
            "tick_seconds": self.tick_seconds,
        }


def _env_int(name: str, fallback: int, *, allowed: tuple[int, ...] | None = None, minimum: int = 1) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        return fallback
    if allowed is not None:
        return value if value in allowed else fallback
    if value < minimum:
        return fallback
    return value


def _load_file_overrides(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Settings file is not valid YAML: {path}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError(f"Settings file must be a mapping: {path}")
    validator = Draft202012Validator(SETTINGS_SCHEMA)
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.path) or "<root>"
        raise ValueError(f"Settings validation failed for {path} at {where}: {first.message}")
    return payload


def load_settings(home: Path | None = None) -> Settings:
    """Resolve settings from `<home>/config.yaml` and `BETTERME_*` overrides."""

    settings = Settings()
    if home is not None:
        overrides = _load_file_overrides(home / CONFIG_FILE_NAME)
        if "categories" in overrides:
            overrides["categories"] = tuple(overrides["categories"])
        if "tick_seconds" in overrides:
            overrides["tick_seconds"] = float(overrides["tick_seconds"])
        settings = replace(settings, **overrides)

    return replace(
        settings,
        interval_ms=_env_int("BETTERME_INTERVAL_MS", settings.interval_ms, minimum=1000),
        level_floor=_env_int("BETTERME_LEVEL_FLOOR", settings.level_floor, allowed=VALID_LEVEL_FLOORS),
    )
