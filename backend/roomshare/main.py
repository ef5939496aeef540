"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roomshare import obs
from roomshare.api import ops, room_requests, rooms
from roomshare.api.errors import install_error_handlers
from roomshare.domain.rooms import build_room_services
from roomshare.domain.rooms.dispatcher import RoomSideEffectDispatcher
from roomshare.domain.rooms.repository import ensure_schema
from roomshare.infra import postgres
from roomshare.settings import settings

_LOG = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	try:
		pool = await postgres.init_pool()
	except (OSError, asyncpg.PostgresError):
		_LOG.warning("Postgres unavailable at startup; rooms use the in-process store", exc_info=True)
		pool = None
	if pool is not None:
		await ensure_schema(pool)
	worker_tasks: list[asyncio.Task] = []
	dispatcher: RoomSideEffectDispatcher | None = None
	if settings.rooms_dispatcher_enabled:
		dispatcher = RoomSideEffectDispatcher(repository=app.state.room_services.rooms.repo)
		worker_tasks.append(asyncio.create_task(dispatcher.run_forever(), name="rooms-side-effect-dispatcher"))
	app.state.rooms_dispatcher = dispatcher
	try:
		yield
	finally:
		if dispatcher is not None:
			dispatcher.stop()
		for task in worker_tasks:
			task.cancel()
		if worker_tasks:
			await asyncio.gather(*worker_tasks, return_exceptions=True)
		await postgres.close_pool()


app = FastAPI(title="Roomshare API", lifespan=lifespan)
app.state.room_services = build_room_services()
install_error_handlers(app)

allow_origins = list(settings.cors_allow_origins)
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []
if "*" in allow_origins:
	_LOG.warning("Ignoring wildcard CORS origin; credentials require explicit origins")
	allow_origins = [origin for origin in allow_origins if origin != "*"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
obs.init(app)

app.include_router(rooms.router)
app.include_router(room_requests.router)
app.include_router(ops.router)
