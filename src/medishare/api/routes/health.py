"""Health, readiness, and metrics endpoints."""

from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, Request, Response
from starlette.responses import JSONResponse

from medishare.healthchecks import check_postgres

router = APIRouter()

__all__ = [
    "record_request",
    "record_resolution",
    "record_revocations",
    "record_token_issued",
    "reset_metrics",
    "router",
]

# ──────────── In-process metrics counters ────────────


def _fresh_metrics() -> dict[str, Any]:
    return {
        "requests_total": 0,
        "requests_by_status": {},
        "share_tokens_issued": 0,
        "share_tokens_revoked": 0,
        "resolutions_by_outcome": {},
        "start_time": time.time(),
    }


_metrics: dict[str, Any] = _fresh_metrics()


def reset_metrics() -> None:
    _metrics.clear()
    _metrics.update(_fresh_metrics())


def record_request(status: int) -> None:
    """Call from middleware to track request counts."""
    _metrics["requests_total"] += 1
    key = str(status)
    _metrics["requests_by_status"][key] = _metrics["requests_by_status"].get(key, 0) + 1


def record_token_issued() -> None:
    _metrics["share_tokens_issued"] += 1


def record_revocations(count: int) -> None:
    _metrics["share_tokens_revoked"] += count


def record_resolution(outcome: str) -> None:
    by_outcome = _metrics["resolutions_by_outcome"]
    by_outcome[outcome] = by_outcome.get(outcome, 0) + 1


# ──────────── Endpoints ────────────


@router.get("/health", summary="Liveness probe", operation_id="health")
async def health() -> dict[str, str]:
    """Liveness: app process is running."""
    return {"status": "ok"}


@router.get("/ready", summary="Readiness probe", operation_id="ready")
async def ready(request: Request) -> JSONResponse:
    """Readiness: the configured token backend is reachable.

    In-memory mode is ready as soon as the app is up; with no backend at
    all the service is never ready.
    """
    settings = request.app.state.settings
    if settings.pg_dsn:
        checks = {"postgres": await check_postgres(settings.pg_dsn)}
    else:
        checks = {"in_memory": bool(settings.use_in_memory_store)}

    all_ok = all(checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"ready": all_ok, "checks": checks},
    )


@router.get("/metrics", summary="Prometheus metrics", operation_id="metrics")
async def metrics() -> Response:
    """Prometheus text exposition format."""
    uptime = time.time() - _metrics["start_time"]

    lines = [
        "# HELP medishare_up Service is up",
        "# TYPE medishare_up gauge",
        "medishare_up 1",
        "",
        "# HELP medishare_uptime_seconds Seconds since process start",
        "# TYPE medishare_uptime_seconds gauge",
        f"medishare_uptime_seconds {uptime:.1f}",
        "",
        "# HELP medishare_requests_total Total HTTP requests",
        "# TYPE medishare_requests_total counter",
        f"medishare_requests_total {_metrics['requests_total']}",
    ]
    for status, count in sorted(_metrics["requests_by_status"].items()):
        lines.append(f'medishare_requests_total{{status="{status}"}} {count}')

    lines += [
        "",
        "# HELP medishare_share_tokens_issued_total Share tokens issued",
        "# TYPE medishare_share_tokens_issued_total counter",
        f"medishare_share_tokens_issued_total {_metrics['share_tokens_issued']}",
        "",
        "# HELP medishare_share_tokens_revoked_total Share tokens revoked",
        "# TYPE medishare_share_tokens_revoked_total counter",
        f"medishare_share_tokens_revoked_total {_metrics['share_tokens_revoked']}",
        "",
        "# HELP medishare_share_resolutions_total Resolve attempts by outcome",
        "# TYPE medishare_share_resolutions_total counter",
    ]
    for outcome, count in sorted(_metrics["resolutions_by_outcome"].items()):
        lines.append(f'medishare_share_resolutions_total{{outcome="{outcome}"}} {count}')
    lines.append("")

    return Response(content="\n".join(lines), media_type="text/plain; charset=utf-8")
