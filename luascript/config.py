"""
Configuration for luascript.

Settings are plain pydantic models populated from ``LUASCRIPT_*``
environment variables by load_settings().

Security:
    The REST token uses SecretStr to prevent accidental logging.
    Access it with ``settings.upstash_token.get_secret_value()``.
"""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, SecretStr

ENV_PREFIX = "LUASCRIPT_"


class LuaScriptSettings(BaseModel):
    """
    Connection and cache settings.

    Attributes:
        upstash_url: Upstash REST endpoint (https://<db>.upstash.io)
        upstash_token: Upstash REST token
        timeout: HTTP timeout in seconds
        max_loaded_scripts: LRU bound for each connection's load cache
            (None keeps every loaded script)
        log_requests: Log commands at debug level (never logs the token)
    """

    upstash_url: str = Field(..., description="Upstash REST URL")
    upstash_token: SecretStr = Field(..., description="Upstash REST token")
    timeout: float = Field(10.0, gt=0)
    max_loaded_scripts: int | None = Field(None, ge=1)
    log_requests: bool = False


def load_settings(prefix: str = ENV_PREFIX) -> LuaScriptSettings:
    """
    Load settings from environment variables.

    Reads ``<prefix>UPSTASH_URL``, ``<prefix>UPSTASH_TOKEN``,
    ``<prefix>TIMEOUT``, ``<prefix>MAX_LOADED_SCRIPTS`` and
    ``<prefix>LOG_REQUESTS``.

    Raises:
        pydantic.ValidationError: If a required variable is missing or invalid
    """
    values: dict[str, object] = {
        "upstash_url": os.getenv(f"{prefix}UPSTASH_URL"),
        "upstash_token": os.getenv(f"{prefix}UPSTASH_TOKEN"),
        "log_requests": os.getenv(f"{prefix}LOG_REQUESTS", "false").lower() == "true",
    }

    timeout = os.getenv(f"{prefix}TIMEOUT")
    if timeout:
        values["timeout"] = timeout

    max_loaded = os.getenv(f"{prefix}MAX_LOADED_SCRIPTS")
    if max_loaded:
        values["max_loaded_scripts"] = max_loaded

    return LuaScriptSettings(**values)
