"""
Script definitions.

define_script() captures a named lua script once: its source, its ordered
key/arg names and their validators, and an optional return validator.
The resulting Script runs any number of times via EVALSHA without
re-sending the source, loading it on the first NOSCRIPT reply.

Loaded scripts are tracked in the transport's ``load_registry`` when it
has one (the global registry otherwise), so closing the transport
forgets them.

Key ordering:
    The insertion order of ``keys`` and ``args`` decides KEYS[1], KEYS[2],
    ... and ARGV[1], ARGV[2], ... Define them as dict literals in the
    intended order.

Example:
    rate_limit = define_script(
        name="rateLimit",
        keys={"key": str},
        args={
            "limit": Annotated[int, Field(gt=0), AfterValidator(str)],
            "window_seconds": Annotated[int, Field(gt=0), AfterValidator(str)],
        },
        lua=lambda KEYS, ARGV: lua(
            "local current = redis.call('INCR', ", KEYS.key, ")\\n",
            "if current == 1 then redis.call('EXPIRE', ", KEYS.key, ", ",
            ARGV.window_seconds, ") end\\n",
            "return { current <= tonumber(", ARGV.limit, ") and 1 or 0 }",
        ),
        returns=tuple[int],
    )

    allowed, = await rate_limit.run(
        redis,
        keys={"key": "rl:user:123"},
        args={"limit": 10, "window_seconds": 60},
    )
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from luascript.engine import EvalRequest, eval_with_cache
from luascript.errors import BuilderContractError
from luascript.hashing import sha1_hex
from luascript.template import CompiledLua, TokenAccessor, compile_lua
from luascript.validation import (
    ParseContext,
    as_validator,
    parse_value,
    validate_and_collect,
)

if TYPE_CHECKING:
    from luascript.transport import RedisLike
    from luascript.validation import Validator

logger = logging.getLogger(__name__)

LuaBuilder = Callable[[TokenAccessor, TokenAccessor], CompiledLua]


class Script:
    """
    A defined lua script with validated execution.

    Created by define_script(); do not construct directly unless you
    already hold compiled source.

    Attributes:
        name: Human-readable name, used in error messages
        lua: Final lua source with positional KEYS/ARGV references
        key_names: Declared key names, in KEYS order
        arg_names: Declared arg names, in ARGV order
    """

    def __init__(
        self,
        name: str,
        lua: str,
        key_validators: Mapping[str, Validator],
        arg_validators: Mapping[str, Validator],
        returns: Validator | None = None,
    ):
        self.name = name
        self.lua = lua
        self.key_names: tuple[str, ...] = tuple(key_validators)
        self.arg_names: tuple[str, ...] = tuple(arg_validators)
        self._key_validators = dict(key_validators)
        self._arg_validators = dict(arg_validators)
        self._returns = returns
        self._sha: str | None = None

    @property
    def sha(self) -> str:
        """SHA1 of the lua source, computed on first use."""
        if self._sha is None:
            self._sha = sha1_hex(self.lua)
        return self._sha

    @property
    def has_return_validator(self) -> bool:
        return self._returns is not None

    async def _execute(
        self,
        redis: RedisLike,
        keys: Mapping[str, Any] | None,
        args: Mapping[str, Any] | None,
    ) -> Any:
        key_values, arg_values = await validate_and_collect(
            self.name,
            self._key_validators,
            self._arg_validators,
            self.key_names,
            self.arg_names,
            keys,
            args,
        )

        logger.debug(
            f"[script] Running {self.name} ({self.sha[:12]}) with "
            f"{len(key_values)} keys, {len(arg_values)} args"
        )
        return await eval_with_cache(
            redis,
            EvalRequest(script=self.lua, sha=self.sha, keys=key_values, args=arg_values),
        )

    async def run_raw(
        self,
        redis: RedisLike,
        keys: Mapping[str, Any] | None = None,
        args: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Execute the script without validating the return value.

        Args:
            redis: Transport to execute on
            keys: Values for the declared keys, by name
            args: Values for the declared args, by name

        Returns:
            The raw Redis reply

        Raises:
            ScriptInputError: When a key or arg fails validation
            SchemaContractError: When a key/arg validator outputs a non-string
        """
        return await self._execute(redis, keys, args)

    async def run(
        self,
        redis: RedisLike,
        keys: Mapping[str, Any] | None = None,
        args: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Execute the script with input and return validation.

        1. Validates keys then args against their validators
        2. Executes via EVALSHA (loading the script on NOSCRIPT)
        3. Validates and transforms the reply, if a returns validator is set

        Raises:
            ScriptInputError: When a key or arg fails validation
            ScriptReturnError: When the reply fails return validation
        """
        raw = await self._execute(redis, keys, args)

        if self._returns is None:
            return raw

        return await parse_value(
            self._returns,
            raw,
            ParseContext(script_name=self.name, path="return", type="return", raw=raw),
        )

    def __repr__(self) -> str:
        return (
            f"Script(name={self.name!r}, keys={list(self.key_names)!r}, "
            f"args={list(self.arg_names)!r})"
        )


def define_script(
    name: str,
    lua: str | LuaBuilder,
    keys: Mapping[str, Any] | None = None,
    args: Mapping[str, Any] | None = None,
    returns: Any = None,
) -> Script:
    """
    Define a lua script with validated keys, args and return value.

    Args:
        name: Human-readable name, used in error messages
        lua: Lua source using KEYS[n]/ARGV[n], or a builder
            ``(KEYS, ARGV) -> lua(...)`` using named references
        keys: Ordered mapping of key name to validator; each validator
            must output a string
        args: Ordered mapping of arg name to validator; each validator
            must output a string
        returns: Optional validator for the reply

    Returns:
        A Script with run() and run_raw()

    Raises:
        ValueError: If name is empty
        BuilderContractError: If the builder does not return lua(...)
        UnknownReferenceError: If the builder references an undeclared name
    """
    if not name:
        raise ValueError("Script name is required")

    key_validators = {key: as_validator(v) for key, v in (keys or {}).items()}
    arg_validators = {arg: as_validator(v) for arg, v in (args or {}).items()}
    return_validator = as_validator(returns) if returns is not None else None

    if callable(lua):
        key_names = tuple(key_validators)
        arg_names = tuple(arg_validators)
        template = lua(TokenAccessor("key", key_names), TokenAccessor("arg", arg_names))
        if not isinstance(template, CompiledLua):
            if inspect.iscoroutine(template):
                template.close()
            raise BuilderContractError(name, template)
        source = compile_lua(template, key_names, arg_names)
    else:
        source = lua

    logger.debug(
        f"[script] Defined {name} with keys={list(key_validators)} args={list(arg_validators)}"
    )
    return Script(
        name=name,
        lua=source,
        key_validators=key_validators,
        arg_validators=arg_validators,
        returns=return_validator,
    )
