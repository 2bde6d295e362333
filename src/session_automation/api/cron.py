"""Cron trigger endpoints for the session sweeps."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from session_automation.domain.errors import ArchiveSweepError, SweepFailedError

if TYPE_CHECKING:
    from session_automation.containers import AppContainer

router = APIRouter(prefix="/cron", tags=["cron"])
_logger = logging.getLogger(__name__)


def _get_cron_secret(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.cron_secret


async def require_cron(
    authorization: str | None = Header(default=None),
    x_cron_token: str | None = Header(default=None),
    cron_secret: str = Depends(_get_cron_secret),
) -> None:
    """Accept Vercel's `Authorization: Bearer` header or an `X-Cron-Token`."""
    bearer = None
    if authorization and authorization.startswith("Bearer "):
        bearer = authorization.removeprefix("Bearer ").strip()
    presented = {token for token in (bearer, x_cron_token) if token}
    if not cron_secret or cron_secret not in presented:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.api_route(
    "/session-statuses",
    methods=["GET", "POST"],
    dependencies=[Depends(require_cron)],
    response_model=None,
)
async def update_session_statuses(request: Request) -> dict[str, object] | JSONResponse:
    """Run one status transition sweep (scheduled every 15 minutes)."""
    container: AppContainer = request.app.state.container
    try:
        result = await container.session_status_service.run_transition_sweep(
            datetime.now(tz=UTC)
        )
    except SweepFailedError as exc:
        _logger.error("Session status sweep failed: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "status": "error",
                "detail": str(exc),
                "result": exc.result.as_dict() if exc.result else None,
            },
        )
    return {"status": "ok", "result": result.as_dict()}


@router.api_route(
    "/archive-sessions",
    methods=["GET", "POST"],
    dependencies=[Depends(require_cron)],
    response_model=None,
)
async def archive_sessions(request: Request) -> dict[str, object] | JSONResponse:
    """Run one archival sweep (scheduled daily)."""
    container: AppContainer = request.app.state.container
    try:
        result = await container.archive_service.run_archival_sweep(
            datetime.now(tz=UTC), container.settings.archive_retention
        )
    except ArchiveSweepError as exc:
        _logger.error("Session archival sweep failed: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "status": "error",
                "detail": str(exc),
                "result": exc.result.as_dict() if exc.result else None,
            },
        )
    return {"status": "ok", "result": result.as_dict()}
