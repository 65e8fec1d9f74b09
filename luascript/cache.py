"""
Script Load Cache for luascript.

Tracks which scripts have been uploaded (SCRIPT LOAD) on each connection,
so a script is loaded at most once per connection.

Single-flight:
    The first caller for a SHA registers an upload task before awaiting
    anything; every caller arriving afterwards awaits that same task.
    Registration contains no await, so two coroutines can never both see
    a miss.

Lifetime:
    - Successful uploads stay cached for the life of the connection
    - Failed uploads are dropped so a later call can retry from scratch
    - Caches live in an explicit registry keyed by connection; transports
      call ``discard()`` when the connection closes; connections without a
      ``connection_id`` are held weakly and dropped with the transport
    - Optional LRU bound (``max_entries``); only finished uploads are evicted

Usage:
    registry = get_load_registry()
    cache = registry.for_connection(redis)
    await cache.ensure_loaded(redis, sha, script)

    # On connection close
    registry.discard(redis)
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections import OrderedDict
from collections.abc import MutableMapping
from functools import partial
from typing import TYPE_CHECKING, Any

from luascript.transport import connection_key

if TYPE_CHECKING:
    from luascript.transport import RedisLike

logger = logging.getLogger(__name__)


class ConnectionLoadCache:
    """
    Per-connection map of script SHA to its upload task.

    Not shared across connections: two connections may talk to stores
    with different script caches.
    """

    def __init__(self, max_entries: int | None = None):
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, asyncio.Future[str]] = OrderedDict()

    def __contains__(self, sha: object) -> bool:
        return sha in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def is_loaded(self, sha: str) -> bool:
        """Check if the upload for sha finished successfully."""
        entry = self._entries.get(sha)
        return (
            entry is not None
            and entry.done()
            and not entry.cancelled()
            and entry.exception() is None
        )

    async def ensure_loaded(self, redis: RedisLike, sha: str, script: str) -> None:
        """
        Make sure the script is loaded on this connection.

        Concurrent callers for the same SHA share a single SCRIPT LOAD.
        A caller that is cancelled while waiting does not cancel the
        shared upload.

        Raises:
            Exception: Whatever the upload raised; the entry is removed
        """
        entry = self._entries.get(sha)
        if entry is not None and _failed(entry):
            # Failed but its done callback has not run yet
            self._remove(sha, entry)
            entry = None

        if entry is not None:
            logger.debug(f"[load_cache] Sharing load for {sha[:12]}")
            self._entries.move_to_end(sha)
        else:
            entry = asyncio.ensure_future(self._load(redis, sha, script))
            self._entries[sha] = entry
            entry.add_done_callback(partial(self._drop_if_failed, sha))
            self._evict()

        try:
            await asyncio.shield(entry)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._remove(sha, entry)
            raise

    def discard(self, sha: str) -> bool:
        """Forget a cached SHA, e.g. after SCRIPT FLUSH on the server."""
        return self._entries.pop(sha, None) is not None

    def clear(self) -> None:
        """Forget every cached SHA."""
        self._entries.clear()

    async def _load(self, redis: RedisLike, sha: str, script: str) -> str:
        logger.info(f"[load_cache] Loading script {sha[:12]} ({len(script)} chars)")
        loaded = await redis.script_load(script)
        if isinstance(loaded, str) and loaded.lower() != sha.lower():
            logger.warning(
                f"[load_cache] SCRIPT LOAD returned {loaded} but expected {sha}; "
                f"EVALSHA will keep missing"
            )
        return loaded

    def _drop_if_failed(self, sha: str, entry: asyncio.Future[str]) -> None:
        # Reading the exception here also marks it retrieved when every
        # waiter was cancelled.
        if _failed(entry):
            self._remove(sha, entry)

    def _remove(self, sha: str, entry: asyncio.Future[str]) -> None:
        if self._entries.get(sha) is entry:
            del self._entries[sha]
            logger.debug(f"[load_cache] Dropped failed load for {sha[:12]}")

    def _evict(self) -> None:
        if self.max_entries is None:
            return
        excess = len(self._entries) - self.max_entries
        if excess <= 0:
            return
        for sha in [s for s in self._entries if self.is_loaded(s)][:excess]:
            del self._entries[sha]
            logger.debug(f"[load_cache] Evicted {sha[:12]}")


def _failed(entry: asyncio.Future[str]) -> bool:
    return entry.done() and (entry.cancelled() or entry.exception() is not None)


class ScriptLoadRegistry:
    """
    Registry of load caches, one per connection.

    Caches are created on first use and dropped explicitly with
    discard() when the connection closes.

    Connections with a ``connection_id`` are keyed by it. Any other
    connection is keyed by the transport object, held weakly, so its cache
    goes away with it and can never be matched by a later object.

    Example:
        registry = ScriptLoadRegistry(max_entries=256)
        await registry.for_connection(redis).ensure_loaded(redis, sha, script)
        registry.discard(redis)
    """

    def __init__(self, max_entries: int | None = None) -> None:
        self.max_entries = max_entries
        self._caches: dict[Any, ConnectionLoadCache] = {}
        self._object_caches: weakref.WeakKeyDictionary[Any, ConnectionLoadCache] = (
            weakref.WeakKeyDictionary()
        )

    def _caches_for(self, redis: Any) -> tuple[MutableMapping[Any, ConnectionLoadCache], Any]:
        key = connection_key(redis)
        if key is not redis:
            return self._caches, key
        try:
            weakref.ref(redis)
        except TypeError:
            # Not weakly referenceable: owned until discard()
            return self._caches, redis
        return self._object_caches, redis

    def for_connection(self, redis: Any) -> ConnectionLoadCache:
        """Get or create the load cache for a connection."""
        caches, key = self._caches_for(redis)
        cache = caches.get(key)
        if cache is None:
            cache = ConnectionLoadCache(max_entries=self.max_entries)
            caches[key] = cache
            logger.debug(
                f"[load_registry] Created load cache for connection {_describe(redis)}"
            )
        return cache

    def has(self, redis: Any) -> bool:
        """Check if a load cache exists for a connection."""
        caches, key = self._caches_for(redis)
        return key in caches

    def discard(self, redis: Any) -> bool:
        """
        Drop the load cache for a connection.

        Returns:
            True if a cache was removed, False if none existed
        """
        caches, key = self._caches_for(redis)
        if caches.pop(key, None) is not None:
            logger.debug(
                f"[load_registry] Discarded load cache for connection {_describe(redis)}"
            )
            return True
        return False

    def __len__(self) -> int:
        return len(self._caches) + len(self._object_caches)

    def clear(self) -> None:
        """Drop every load cache (for testing)."""
        self._caches.clear()
        self._object_caches.clear()


def _describe(redis: Any) -> str:
    connection_id = getattr(redis, "connection_id", None)
    if connection_id is not None:
        return str(connection_id)
    return f"{type(redis).__name__}@{id(redis):x}"


# Global registry instance
_registry: ScriptLoadRegistry | None = None


def get_load_registry() -> ScriptLoadRegistry:
    """
    Get the global load registry.

    Creates the registry on first access (lazy initialization).
    """
    global _registry
    if _registry is None:
        _registry = ScriptLoadRegistry()
    return _registry


def reset_load_registry() -> None:
    """
    Reset the global load registry (for testing).

    Creates a fresh registry instance on next access.
    """
    global _registry
    if _registry is not None:
        _registry.clear()
    _registry = None


def resolve_registry(redis: Any, registry: ScriptLoadRegistry | None = None) -> ScriptLoadRegistry:
    """
    Pick the load registry for a call.

    An explicit registry wins, then the transport's own ``load_registry``,
    then the global registry.
    """
    if registry is not None:
        return registry
    own = getattr(redis, "load_registry", None)
    if isinstance(own, ScriptLoadRegistry):
        return own
    return get_load_registry()


async def ensure_loaded(
    redis: RedisLike,
    sha: str,
    script: str,
    registry: ScriptLoadRegistry | None = None,
) -> None:
    """
    Ensure a script is loaded on the connection behind ``redis``.

    Convenience wrapper over the registry's per-connection cache.
    """
    registry = resolve_registry(redis, registry)
    await registry.for_connection(redis).ensure_loaded(redis, sha, script)
