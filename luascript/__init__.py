"""
luascript - Validated, cached Lua scripts for Redis.

Define a lua script once and run it many times via EVALSHA, with:

- **Named references**: write ``KEYS.user`` / ``ARGV.limit`` instead of
  ``KEYS[1]`` / ``ARGV[1]``; compiled at definition time
- **Validation**: keys, args and the reply are checked by pluggable
  validators (any pydantic-compatible type works out of the box)
- **Single-flight loading**: a script is uploaded at most once per
  connection, even under concurrent callers
- **NOSCRIPT recovery**: a missing script is loaded and retried once,
  transparently

Quick Start:
    >>> from typing import Annotated
    >>> from pydantic import AfterValidator, Field
    >>> from luascript import define_script, lua
    >>>
    >>> incr_capped = define_script(
    ...     name="incrCapped",
    ...     keys={"counter": str},
    ...     args={"cap": Annotated[int, Field(gt=0), AfterValidator(str)]},
    ...     lua=lambda KEYS, ARGV: lua(
    ...         "local n = redis.call('INCR', ", KEYS.counter, ")\\n",
    ...         "return math.min(n, tonumber(", ARGV.cap, "))",
    ...     ),
    ...     returns=int,
    ... )
    >>> value = await incr_capped.run(redis, keys={"counter": "c:1"}, args={"cap": 10})
"""

from luascript.version import VERSION

__version__ = VERSION
__license__ = "MIT"

from luascript.cache import (
    ConnectionLoadCache,
    ScriptLoadRegistry,
    ensure_loaded,
    get_load_registry,
    reset_load_registry,
)
from luascript.config import LuaScriptSettings, load_settings
from luascript.engine import EvalRequest, eval_with_cache
from luascript.errors import (
    BuilderContractError,
    LuaScriptError,
    SchemaContractError,
    ScriptInputError,
    ScriptReturnError,
    TransportError,
    UnknownReferenceError,
    ValidationError,
    ValidationIssue,
)
from luascript.hashing import sha1_hex
from luascript.script import Script, define_script
from luascript.template import (
    CompiledLua,
    LuaToken,
    TokenAccessor,
    compile_lua,
    is_compiled_lua,
    is_lua_token,
    lua,
)
from luascript.transport import RedisLike, is_no_script_error
from luascript.validation import (
    ParseContext,
    PydanticValidator,
    ValidationFailure,
    ValidationResult,
    ValidationSuccess,
    Validator,
    as_validator,
    hash_result,
    parse_value,
    validate_value,
)

__all__ = [
    # Version info
    "VERSION",
    "__version__",
    "__license__",
    # Main API
    "Script",
    "define_script",
    # Templates
    "CompiledLua",
    "LuaToken",
    "TokenAccessor",
    "compile_lua",
    "is_compiled_lua",
    "is_lua_token",
    "lua",
    # Execution
    "ConnectionLoadCache",
    "EvalRequest",
    "RedisLike",
    "ScriptLoadRegistry",
    "ensure_loaded",
    "eval_with_cache",
    "get_load_registry",
    "is_no_script_error",
    "reset_load_registry",
    "sha1_hex",
    # Validation
    "ParseContext",
    "PydanticValidator",
    "ValidationFailure",
    "ValidationResult",
    "ValidationSuccess",
    "Validator",
    "as_validator",
    "hash_result",
    "parse_value",
    "validate_value",
    # Errors
    "BuilderContractError",
    "LuaScriptError",
    "SchemaContractError",
    "ScriptInputError",
    "ScriptReturnError",
    "TransportError",
    "UnknownReferenceError",
    "ValidationError",
    "ValidationIssue",
    # Configuration
    "LuaScriptSettings",
    "load_settings",
]
