"""
luascript transports.

Bundled RedisLike implementations. Each one follows the same pattern:

1. Config: connection settings (frozen dataclass)
2. Transport: async client mapping store errors to TransportError
3. Lifecycle: ``close()`` discards the connection's script load cache

Directory Structure:
    integrations/
    ├── base.py      # HttpTransport base (httpx client, retries, errors)
    ├── upstash.py   # Upstash Redis REST API
    └── redis_py.py  # Adapter over redis.asyncio (optional extra)

Usage:
    from luascript.integrations import HttpTransportConfig, UpstashRedis

    async with UpstashRedis(
        HttpTransportConfig(base_url="https://db.upstash.io", token="..."),
    ) as redis:
        await my_script.run(redis, keys={"key": "user:1"})
"""

from luascript.integrations.base import HttpTransport, HttpTransportConfig
from luascript.integrations.redis_py import RedisPyTransport
from luascript.integrations.upstash import UpstashRedis

__all__ = [
    "HttpTransport",
    "HttpTransportConfig",
    "RedisPyTransport",
    "UpstashRedis",
]
