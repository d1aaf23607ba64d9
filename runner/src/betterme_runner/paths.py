from __future__ import annotations

import os
from pathlib import Path


def tracker_home() -> Path:
    configured = os.environ.get("BETTERME_HOME")
    if configured:
        return Path(configured).expanduser().resolve()
    return Path.home() / ".betterme"


def ensure_home_dirs(base: Path) -> dict[str, Path]:
    state = base / "state"
    telemetry = base / "telemetry"
    exports = base / "exports"
    for path in (base, state, telemetry, exports):
        path.mkdir(parents=True, exist_ok=True)
    return {"base": base, "state": state, "telemetry": telemetry, "exports": exports}
