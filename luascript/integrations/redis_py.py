"""
redis-py transport.

Wraps a ``redis.asyncio.Redis`` client so it satisfies RedisLike.

redis-py strips the "NOSCRIPT" prefix from the server's reply and raises
NoScriptError; this adapter puts the marker back so the execution engine
can recognize the reply. Other redis errors become TransportError with
the server text kept.

Usage:
    redis = RedisPyTransport.from_url("redis://localhost:6379")
    try:
        result = await my_script.run(redis, keys={"key": "user:1"})
    finally:
        await redis.close()

Requires the ``redis`` extra: ``pip install luascript[redis]``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from luascript.cache import ScriptLoadRegistry, get_load_registry
from luascript.errors import TransportError
from luascript.transport import NOSCRIPT_MARKER

logger = logging.getLogger(__name__)


def _redis_exceptions() -> Any:
    try:
        import redis.exceptions
    except ImportError:
        raise ImportError(
            "redis package required for RedisPyTransport. Install with: pip install redis"
        )
    return redis.exceptions


class RedisPyTransport:
    """
    RedisLike adapter over an existing redis.asyncio client.

    The client should be created with ``decode_responses=True`` so script
    replies come back as str rather than bytes.
    """

    def __init__(self, client: Any, *, registry: ScriptLoadRegistry | None = None):
        self._client = client
        self._registry = registry
        self.connection_id = uuid.uuid4().hex

    @classmethod
    def from_url(
        cls,
        url: str = "redis://localhost:6379",
        *,
        registry: ScriptLoadRegistry | None = None,
    ) -> RedisPyTransport:
        """Create a client from a redis:// URL."""
        try:
            import redis.asyncio as aioredis
        except ImportError:
            raise ImportError(
                "redis package required for RedisPyTransport. Install with: pip install redis"
            )

        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, registry=registry)

    @property
    def name(self) -> str:
        return "redis"

    @property
    def client(self) -> Any:
        return self._client

    @property
    def load_registry(self) -> ScriptLoadRegistry:
        """Registry holding this connection's script load cache."""
        return self._registry if self._registry is not None else get_load_registry()

    async def _call(self, method: str, *parts: Any) -> Any:
        exceptions = _redis_exceptions()
        try:
            return await getattr(self._client, method)(*parts)
        except exceptions.NoScriptError as e:
            raise TransportError(f"[{self.name}] {NOSCRIPT_MARKER} {e}") from e
        except (exceptions.ConnectionError, exceptions.TimeoutError) as e:
            raise TransportError(f"[{self.name}] Connection error: {e}", retryable=True) from e
        except exceptions.ResponseError as e:
            raise TransportError(f"[{self.name}] {e}") from e

    async def eval(self, script: str, keys: list[str], args: list[str]) -> Any:
        return await self._call("eval", script, len(keys), *keys, *args)

    async def evalsha(self, sha: str, keys: list[str], args: list[str]) -> Any:
        return await self._call("evalsha", sha, len(keys), *keys, *args)

    async def script_load(self, script: str) -> str:
        return await self._call("script_load", script)

    async def close(self) -> None:
        """Close the client and forget this connection's loaded scripts."""
        await self._client.aclose()
        if self.load_registry.discard(self):
            logger.debug(f"[{self.name}] Discarded load cache for {self.connection_id}")

    async def __aenter__(self) -> RedisPyTransport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
