"""Redis connection management.

Provides a stable proxy object so imports like `from roomshare.infra.redis import redis_client`
always reference the same proxy instance. The underlying client can be swapped at
runtime (e.g., to fakeredis in tests) without breaking previously imported references.
"""

from __future__ import annotations

import redis.asyncio as redis

from roomshare.settings import settings


class RedisProxy:
	"""Lightweight proxy that forwards attribute access to an underlying Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	async def xadd_capped(self, name: str, fields: dict, *, maxlen: int | None = None):
		"""XADD with approximate trimming so outbox streams stay bounded."""
		if maxlen is None:
			return await self._client.xadd(name, fields)
		return await self._client.xadd(name, fields, maxlen=maxlen, approximate=True)

	# Fallback: delegate everything else to the underlying client
	def __getattr__(self, item):
		return getattr(self._client, item)


_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
