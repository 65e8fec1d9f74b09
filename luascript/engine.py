"""
EVALSHA execution with NOSCRIPT recovery.

Strategy:
    1. EVALSHA (cheapest: only the SHA travels over the wire)
    2. On NOSCRIPT, SCRIPT LOAD through the per-connection load cache
    3. EVALSHA exactly once more; whatever it returns or raises is final

Any other error from step 1, and any error from steps 2 or 3, propagates
unchanged. A call therefore makes at most one upload and two executes.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from luascript.cache import ensure_loaded
from luascript.transport import is_no_script_error

if TYPE_CHECKING:
    from luascript.cache import ScriptLoadRegistry
    from luascript.transport import RedisLike

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EvalRequest:
    """
    One script execution.

    Attributes:
        script: Lua source, uploaded only if the store reports NOSCRIPT
        sha: SHA1 of script
        keys: Values for KEYS[1], KEYS[2], ...
        args: Values for ARGV[1], ARGV[2], ...
    """

    script: str
    sha: str
    keys: Sequence[str] = ()
    args: Sequence[str] = ()


async def eval_with_cache(
    redis: RedisLike,
    request: EvalRequest,
    *,
    registry: ScriptLoadRegistry | None = None,
) -> Any:
    """
    Execute a script by SHA, loading it on NOSCRIPT and retrying once.

    Args:
        redis: Transport to execute on
        request: Script, SHA and positional keys/args
        registry: Load registry to use (defaults to the global one)

    Returns:
        The store's raw reply

    Example:
        result = await eval_with_cache(
            redis,
            EvalRequest(
                script='return redis.call("GET", KEYS[1])',
                sha=sha1_hex('return redis.call("GET", KEYS[1])'),
                keys=["mykey"],
            ),
        )
    """
    keys = list(request.keys)
    args = list(request.args)

    try:
        return await redis.evalsha(request.sha, keys, args)
    except Exception as e:
        if not is_no_script_error(e):
            raise
        logger.debug(f"[eval] NOSCRIPT for {request.sha[:12]}, loading and retrying")

    await ensure_loaded(redis, request.sha, request.script, registry=registry)
    return await redis.evalsha(request.sha, keys, args)
