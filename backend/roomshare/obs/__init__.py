"""Observability package bootstrap."""

from __future__ import annotations

from fastapi import FastAPI

from roomshare.obs import logging as obs_logging
from roomshare.obs import middleware

_logging_configured = False


def init(app: FastAPI) -> None:
	global _logging_configured
	middleware.install(app)
	if not _logging_configured:
		obs_logging.configure_logging()
		_logging_configured = True


__all__ = ["init"]
