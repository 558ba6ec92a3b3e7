"""API routes of the AWS Cost Exporter.

Endpoints
─────────
GET  /metrics  – Prometheus exposition of every cost gauge + internal metrics.
GET  /healthz  – Liveness probe (always 200).
GET  /readyz   – Readiness probe (always 200).
GET  /status   – Summary of the last refresh cycle.
POST /refresh  – Run a refresh cycle now.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from helpers.constants import APP_LOGGER
from helpers.errors import RefreshError
from services.cost_collector import CostCollector

router = APIRouter()


def _get_collector(request: Request) -> CostCollector:
    return request.app.state.collector


# ── Exposition ────────────────────────────────────────────────────────────

@router.get("/metrics")
def metrics(request: Request) -> Response:
    """Render the last published snapshot."""
    collector = _get_collector(request)
    return Response(content=generate_latest(collector.registry), media_type=CONTENT_TYPE_LATEST)


# ── Probes ────────────────────────────────────────────────────────────────

@router.get("/healthz")
def healthz() -> PlainTextResponse:
    return PlainTextResponse("ok")


@router.get("/readyz")
def readyz() -> PlainTextResponse:
    return PlainTextResponse("ok")


# ── Refresh status / trigger ──────────────────────────────────────────────

@router.get("/status")
def status(request: Request) -> JSONResponse:
    """Return the last refresh summary (``null`` before the first one)."""
    collector = _get_collector(request)
    last = collector.last_refresh
    return JSONResponse(
        content={
            "refreshing": collector.is_refreshing,
            "last_refresh": last.as_dict() if last else None,
            "rows": collector.snapshot.row_count(),
        },
        status_code=200,
    )


@router.post("/refresh")
async def refresh(request: Request) -> JSONResponse:
    """Execute a refresh cycle outside the polling schedule."""
    collector = _get_collector(request)
    if collector.is_refreshing:
        return JSONResponse(content={"error": "refresh already in progress"}, status_code=409)
    try:
        summary = await collector.refresh()
    except RefreshError as exc:
        APP_LOGGER.error(msg=f"Manual refresh had errors: {exc}")
        last = collector.last_refresh
        return JSONResponse(
            content={"error": str(exc), "summary": last.as_dict() if last else None},
            status_code=500,
        )
    if summary.skipped:
        return JSONResponse(content={"error": "refresh already in progress"}, status_code=409)
    return JSONResponse(content=summary.as_dict(), status_code=200)
