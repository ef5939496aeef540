"""Request ID helper for endpoints and error handlers."""

from __future__ import annotations

from fastapi import Request

from roomshare.obs import logging as obs_logging


def get_request_id(request: Request | None = None, default: str = "unknown") -> str:
    """Return the request id bound by the observability middleware.

    Falls back to request.state, then the inbound header, then ``default``.
    """
    rid = obs_logging.current_request_id()
    if rid:
        return rid
    if request is not None:
        rid = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    return rid or default
