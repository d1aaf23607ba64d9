from __future__ import annotations

"""HTTP API surface for the local tracker."""

from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .engine import ReportStateError, ReportValidationError
from .service import TrackerService


class ReportRequest(BaseModel):
    """Category answers for one report."""

    answers: dict[str, str] = Field(default_factory=dict)


class ResetRequest(BaseModel):
    """Level reset request; needs `confirm=true` plus the confirmation header."""

    confirm: bool = False


def _clean_trace_id(value: str) -> str:
    cleaned = "".join(ch for ch in value if ch.isprintable()).strip()
    return cleaned[:200]


def create_app(service: TrackerService) -> FastAPI:
    """Create API routes backed by `TrackerService`."""

    app = FastAPI(title="BetterMe Runner API", version="0.1")

    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        incoming = _clean_trace_id(request.headers.get("x-betterme-trace-id") or "")
        trace_id = incoming or f"api:{uuid4()}"
        request.state.trace_id = trace_id
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            service.telemetry.log_event(
                "risk.flagged",
                source="api",
                trace_id=trace_id,
                data={
                    "reason": "api_internal_error",
                    "endpoint": request.url.path,
                    "error_type": exc.__class__.__name__,
                },
            )
            response = JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "Internal server error",
                    "trace_id": trace_id,
                },
            )
        response.headers["X-Betterme-Trace-Id"] = trace_id
        return response

    def request_trace_id(request: Request) -> str:
        value = getattr(request.state, "trace_id", None)
        if isinstance(value, str) and value:
            return value
        return f"api:{uuid4()}"

    def submission(action: Any, answers: dict[str, str], http_request: Request) -> Any:
        try:
            return action(answers, source="api", trace_id=request_trace_id(http_request))
        except ReportValidationError as exc:
            return JSONResponse(status_code=400, content=exc.to_dict())
        except ReportStateError as exc:
            return JSONResponse(status_code=409, content=exc.to_dict())

    @app.get("/v1/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "version": "0.1", "schema_versions": {"state": "0.1", "telemetry": "0.1"}}

    @app.get("/v1/state")
    def get_state() -> dict[str, Any]:
        service.sync(source="api")
        return {"status": service.status(), "snapshot": service.snapshot()}

    @app.get("/v1/timer")
    def get_timer() -> dict[str, Any]:
        service.sync(source="api")
        status = service.status()
        return {
            "remaining_ms": status["time_remaining_ms"],
            "display": status["countdown"],
            "alerting": status["time_remaining_ms"] <= 0,
            "pending": status["pending"],
            "next_slot": status["next_slot"],
        }

    @app.get("/v1/logs")
    def get_logs(limit: int = Query(100, ge=1, le=1000)) -> list[dict[str, Any]]:
        return service.timeline(limit=limit)

    @app.post("/v1/reports")
    def submit_report(request: ReportRequest, http_request: Request) -> Any:
        return submission(service.submit_report, request.answers, http_request)

    @app.post("/v1/reports/on-time")
    def submit_on_time(request: ReportRequest, http_request: Request) -> Any:
        return submission(service.submit_on_time, request.answers, http_request)

    @app.post("/v1/reports/backlog")
    def submit_backlog_item(request: ReportRequest, http_request: Request) -> Any:
        return submission(service.submit_backlog_item, request.answers, http_request)

    @app.post("/v1/reset")
    def reset(request: ResetRequest, http_request: Request) -> dict[str, Any]:
        header_confirm = (http_request.headers.get("x-betterme-confirm") or "").strip().lower() == "true"
        if not (request.confirm and header_confirm):
            raise HTTPException(
                status_code=400,
                detail="Level reset requires body confirm=true and header X-Betterme-Confirm: true.",
            )
        return service.reset(confirm=True, source="api", trace_id=request_trace_id(http_request))

    @app.get("/v1/telemetry/summary")
    def telemetry_summary(range: str = Query("7d", pattern=r"^\d+[dh]$")) -> dict[str, Any]:
        try:
            return service.telemetry.export_summary(range_value=range, level=service.state.level)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    return app
