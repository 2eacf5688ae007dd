"""
Health Check Endpoints

Probes for orchestrators and load balancers. Only the SQL store can make
the service unready: a missing or failing remote model is absorbed by the
heuristic classifier, so it is reported but never fails a probe.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from companion.config import settings
from companion.core.conversation import ConversationManager, get_conversation_manager
from companion.infra.database import check_db_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"

# Monotonic start mark, set by the app lifespan
_started_at: Optional[float] = None


def set_start_time() -> None:
    """Mark process start. Called once from the lifespan."""
    global _started_at
    _started_at = time.monotonic()


def get_uptime_seconds() -> Optional[float]:
    if _started_at is None:
        return None
    return round(time.monotonic() - _started_at, 3)


class ProbeResponse(BaseModel):
    """Common probe payload."""

    status: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = VERSION
    environment: str = Field(default_factory=lambda: settings.app_env)
    uptime_seconds: Optional[float] = Field(default_factory=get_uptime_seconds)
    checks: dict[str, str] = Field(default_factory=dict)


class DetailedProbeResponse(ProbeResponse):
    """Probe payload with runtime settings (development only)."""

    live_conversations: int = 0
    runtime: dict[str, str] = Field(default_factory=dict)


def remote_analysis_mode() -> str:
    return "enabled" if settings.remote_analysis_enabled else "fallback_only"


async def store_status() -> str:
    """Status of the message store backing reloads."""
    if settings.persistence_backend != "sql":
        return "not_configured"

    try:
        if await check_db_health():
            return "ok"
        logger.warning("Health probe: database unreachable")
        return "failed"
    except Exception as e:
        logger.error(f"Health probe: database check raised - {e}")
        return "error"


def store_is_ready(store: str) -> bool:
    return store in ("ok", "not_configured")


@router.get(
    "",
    response_model=ProbeResponse,
    summary="Basic health check",
    description="200 whenever the process is serving requests. No dependency checks.",
)
async def health() -> ProbeResponse:
    return ProbeResponse(status="healthy", checks={"remote_analysis": remote_analysis_mode()})


@router.get(
    "/ready",
    response_model=ProbeResponse,
    summary="Readiness probe",
    description="503 when the SQL store is configured but unreachable.",
    responses={503: {"description": "Message store unavailable"}},
)
async def ready():
    """Readiness probe. Remote analysis state is informational only."""
    database = await store_status()
    probe = ProbeResponse(
        status="ready" if store_is_ready(database) else "not_ready",
        checks={"database": database, "remote_analysis": remote_analysis_mode()},
    )

    if not store_is_ready(database):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=probe.model_dump(mode="json"),
        )
    return probe


@router.get(
    "/live",
    response_model=ProbeResponse,
    summary="Liveness probe",
)
async def live() -> ProbeResponse:
    return ProbeResponse(status="alive")


@router.get(
    "/detailed",
    response_model=DetailedProbeResponse,
    summary="Detailed health check",
    description="Probe state plus non-secret settings. Development only.",
    include_in_schema=settings.is_development,
)
async def detailed(
    manager: ConversationManager = Depends(get_conversation_manager),
) -> DetailedProbeResponse:
    if not settings.is_development:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    database = await store_status()
    return DetailedProbeResponse(
        status="healthy" if store_is_ready(database) else "degraded",
        checks={"database": database, "remote_analysis": remote_analysis_mode()},
        live_conversations=manager.live_count,
        runtime={
            "analysis_model": settings.claude_analysis_model,
            "persistence_backend": settings.persistence_backend,
            "default_persona": settings.default_persona,
            "debounce_seconds": str(settings.duplicate_debounce_seconds),
            "escalation_min_high_count": str(settings.escalation_min_high_count),
        },
    )
