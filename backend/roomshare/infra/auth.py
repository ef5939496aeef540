"""Authentication helpers for FastAPI endpoints.

Bearer JWTs (HS256, settings.secret_key) identify the caller in every
environment. In development the X-User-Id header is accepted as well so
local tools and tests can act as any user.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from roomshare.infra import jwt as jwt_helper
from roomshare.obs import metrics as obs_metrics
from roomshare.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str


_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser."""
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		obs_metrics.inc_auth_rejected("invalid_token")
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	sub = str(payload.get("sub") or "").strip()
	if not sub:
		obs_metrics.inc_auth_rejected("missing_sub")
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	return AuthenticatedUser(id=sub)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow a simple header. In all other environments, headers are
	ignored and a valid Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id.strip())

	obs_metrics.inc_auth_rejected("missing_credentials")
	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
