"""
Upstash Redis REST transport.

Sends Redis commands as JSON arrays to the Upstash REST endpoint:

    POST https://<db>.upstash.io
    Authorization: Bearer <token>
    ["EVALSHA", "<sha>", "1", "user:1", "10"]

    200 {"result": ...}
    400 {"error": "NOSCRIPT No matching script. Please use EVAL."}

Errors reported by the store become TransportError with the store's text
intact, which keeps NOSCRIPT detectable by the execution engine.

Usage:
    async with UpstashRedis.from_settings(load_settings()) as redis:
        result = await my_script.run(redis, keys={"key": "user:1"})

API Reference:
    https://upstash.com/docs/redis/features/restapi
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

import httpx

from luascript.cache import ScriptLoadRegistry, get_load_registry
from luascript.errors import TransportError
from luascript.integrations.base import HttpTransport, HttpTransportConfig

if TYPE_CHECKING:
    from luascript.config import LuaScriptSettings

logger = logging.getLogger(__name__)


class UpstashRedis(HttpTransport):
    """
    Async Upstash REST client implementing RedisLike.

    Each instance is one logical connection with its own ``connection_id``;
    closing it discards that connection's script load cache.
    """

    def __init__(
        self,
        config: HttpTransportConfig,
        *,
        registry: ScriptLoadRegistry | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(config, http_transport=http_transport)
        self.connection_id = uuid.uuid4().hex
        self._registry = registry

    @classmethod
    def from_settings(
        cls,
        settings: LuaScriptSettings,
        **kwargs: Any,
    ) -> UpstashRedis:
        """
        Create a client from LuaScriptSettings.

        When max_loaded_scripts is set and no registry is given, the
        client gets its own registry bounded to that many scripts.
        """
        if settings.max_loaded_scripts is not None and "registry" not in kwargs:
            kwargs["registry"] = ScriptLoadRegistry(max_entries=settings.max_loaded_scripts)
        config = HttpTransportConfig(
            base_url=settings.upstash_url,
            token=settings.upstash_token.get_secret_value(),
            timeout=settings.timeout,
            log_requests=settings.log_requests,
        )
        return cls(config, **kwargs)

    @property
    def name(self) -> str:
        return "upstash"

    @property
    def load_registry(self) -> ScriptLoadRegistry:
        """Registry holding this connection's script load cache."""
        return self._registry if self._registry is not None else get_load_registry()

    def _get_auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.token}"}

    def _error_text(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return super()._error_text(response)
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return super()._error_text(response)

    # =========================================================================
    # Commands
    # =========================================================================

    async def command(self, *parts: str) -> Any:
        """
        Run a single Redis command and return its result.

        Raises:
            TransportError: If the store rejects the command
        """
        response = await self._post("", list(parts))

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(
                f"[{self.name}] Invalid JSON response",
                status_code=response.status_code,
                response_body=response.text,
            ) from e

        if not isinstance(data, dict):
            raise TransportError(
                f"[{self.name}] Unexpected response shape: {type(data).__name__}",
                status_code=response.status_code,
                response_body=response.text,
            )
        if data.get("error"):
            raise TransportError(
                f"[{self.name}] {data['error']}",
                status_code=response.status_code,
                response_body=response.text,
            )
        return data.get("result")

    async def eval(self, script: str, keys: list[str], args: list[str]) -> Any:
        return await self.command("EVAL", script, str(len(keys)), *keys, *args)

    async def evalsha(self, sha: str, keys: list[str], args: list[str]) -> Any:
        return await self.command("EVALSHA", sha, str(len(keys)), *keys, *args)

    async def script_load(self, script: str) -> str:
        return await self.command("SCRIPT", "LOAD", script)

    async def close(self) -> None:
        """Close the HTTP client and forget this connection's loaded scripts."""
        await super().close()
        if self.load_registry.discard(self):
            logger.debug(f"[{self.name}] Discarded load cache for {self.connection_id}")
