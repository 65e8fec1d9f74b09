"""
Transport Protocol for luascript.

Defines the minimal surface a Redis client must offer for script
execution. luascript does not depend on any specific client; anything
with these three coroutines works (see luascript.integrations.UpstashRedis
for the bundled HTTP implementation).

A transport may expose a ``connection_id`` attribute. When present it is
used to key the per-connection script load cache; otherwise the transport
object itself is the key.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

NOSCRIPT_MARKER = "NOSCRIPT"


@runtime_checkable
class RedisLike(Protocol):
    """
    Async Redis client able to run lua scripts.

    Example implementations:
    - UpstashRedis (bundled, REST over httpx)
    - A thin wrapper around redis.asyncio.Redis
    """

    async def eval(self, script: str, keys: list[str], args: list[str]) -> Any:
        """
        Execute a lua script by sending its full source.

        Not used on the cached path; kept for callers that want a
        one-off execution.
        """
        ...

    async def evalsha(self, sha: str, keys: list[str], args: list[str]) -> Any:
        """
        Execute a cached lua script by its SHA1.

        Raises:
            Exception: whose text contains "NOSCRIPT" when the store has
                no script for this SHA1
        """
        ...

    async def script_load(self, script: str) -> str:
        """
        Upload a lua script into the store's script cache.

        Idempotent: the same source always yields the same SHA1.

        Returns:
            The SHA1 the store assigned to the script
        """
        ...


def is_no_script_error(error: Any) -> bool:
    """
    Check whether an error is the store's "script not cached" reply.

    Redis reports this as plain text ("NOSCRIPT No matching script..."),
    so the check is a case-insensitive substring match on the error text.
    """
    if isinstance(error, BaseException | str):
        return NOSCRIPT_MARKER in str(error).upper()
    return False


def connection_key(redis: Any) -> Any:
    """
    Return the key identifying a connection in the load registry.

    The transport's ``connection_id`` when set, else the transport itself.
    """
    connection_id = getattr(redis, "connection_id", None)
    if connection_id is not None:
        return connection_id
    return redis
