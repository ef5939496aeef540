"""Operations endpoints providing health checks and metrics."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from roomshare.infra import postgres
from roomshare.infra.redis import redis_client
from roomshare.settings import settings

_LOG = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["ops"])


def _resolve_token(x_admin_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
	if x_admin_token:
		return x_admin_token
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1]
	return None


async def require_metrics_access(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	if settings.obs_metrics_public:
		return
	token = settings.obs_admin_token
	if not token:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="admin_token_not_configured")
	if _resolve_token(x_admin_token, authorization) != token:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


async def _check_redis(timeout: float = 0.2) -> Dict[str, Any]:
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
		return {"ok": True}
	except Exception as exc:
		_LOG.warning("Redis readiness check failed", exc_info=True)
		return {"ok": False, "error": type(exc).__name__}


async def _check_postgres(timeout: float = 0.3) -> Dict[str, Any]:
	try:
		pool = await postgres.get_pool()
		async with pool.acquire() as conn:
			await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
		return {"ok": True}
	except Exception as exc:
		_LOG.warning("Postgres readiness check failed", exc_info=True)
		return {"ok": False, "error": type(exc).__name__}


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return {"status": "ok"}


@router.get("/health/ready")
async def health_ready() -> Response:
	checks = {"redis": await _check_redis(), "postgres": await _check_postgres()}
	ready = all(check["ok"] for check in checks.values())
	payload = {"status": "ok" if ready else "degraded", "checks": checks}
	return JSONResponse(content=payload, status_code=200 if ready else 503)


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
