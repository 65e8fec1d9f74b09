"""
Lua templates with named KEYS/ARGV references.

A script builder receives two accessors, one for declared keys and one for
declared args, and returns ``lua(...)`` assembled from plain strings and
the tokens those accessors hand out. compile_lua() then rewrites every
token into its positional form (``KEYS[1]``, ``ARGV[2]``, ...) using the
order in which the names were declared.

Usage:
    script = define_script(
        name="touch",
        keys={"user_key": str},
        args={"ttl": str},
        lua=lambda KEYS, ARGV: lua(
            "redis.call('EXPIRE', ", KEYS.user_key, ", ", ARGV.ttl, ")\\n",
            "return 1",
        ),
    )
    script.lua  # "redis.call('EXPIRE', KEYS[1], ARGV[1])\\nreturn 1"
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from luascript.errors import UnknownReferenceError

TokenKind = Literal["key", "arg"]

_POSITIONAL = {"key": "KEYS", "arg": "ARGV"}


@dataclass(frozen=True, slots=True)
class LuaToken:
    """Reference to a declared key or arg inside a lua template."""

    kind: TokenKind
    name: str


@dataclass(frozen=True, slots=True)
class CompiledLua:
    """
    Template produced by lua().

    Holds N+1 literal segments and N tokens; token i sits between
    segment i and segment i+1.
    """

    segments: tuple[str, ...]
    tokens: tuple[LuaToken, ...]

    def __post_init__(self) -> None:
        if len(self.segments) != len(self.tokens) + 1:
            raise ValueError(
                f"CompiledLua needs {len(self.tokens) + 1} segments for "
                f"{len(self.tokens)} tokens, got {len(self.segments)}"
            )


def is_lua_token(value: Any) -> bool:
    """Check whether value is a LuaToken."""
    return isinstance(value, LuaToken)


def is_compiled_lua(value: Any) -> bool:
    """Check whether value is a CompiledLua template."""
    return isinstance(value, CompiledLua)


class TokenAccessor(Mapping[str, LuaToken]):
    """
    Read-only set of tokens for one kind of declared name.

    Every token is created up front from the declared names, so the set
    is finite and enumerable. Tokens are reachable as attributes
    (``KEYS.user_key``) or items (``KEYS["user-key"]``) for names that are
    not valid identifiers or that collide with Mapping methods
    (``KEYS["keys"]``).

    Accessing a name that was not declared raises UnknownReferenceError.
    """

    __slots__ = ("_kind", "_tokens")

    def __init__(self, kind: TokenKind, names: Sequence[str]):
        object.__setattr__(self, "_kind", kind)
        object.__setattr__(self, "_tokens", {name: LuaToken(kind, name) for name in names})

    def __getitem__(self, name: str) -> LuaToken:
        try:
            return self._tokens[name]
        except KeyError:
            raise UnknownReferenceError(name, self._kind, tuple(self._tokens)) from None

    def __getattr__(self, name: str) -> LuaToken:
        # Only reached for names that are not real attributes.
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{_POSITIONAL[self._kind]} accessor is read-only")

    def __contains__(self, name: object) -> bool:
        return name in self._tokens

    def get(self, name: str, default: Any = None) -> Any:
        return self._tokens.get(name, default)

    def __iter__(self) -> Iterator[str]:
        return iter(self._tokens)

    def __len__(self) -> int:
        return len(self._tokens)

    def __repr__(self) -> str:
        return f"TokenAccessor({self._kind!r}, {list(self._tokens)!r})"


def lua(*fragments: str | LuaToken) -> CompiledLua:
    """
    Assemble a lua template from literal text and key/arg tokens.

    Adjacent strings are joined, so the template can be written as a run
    of string literals with tokens in between.

    Raises:
        TypeError: If a fragment is neither a str nor a LuaToken
    """
    segments: list[str] = [""]
    tokens: list[LuaToken] = []

    for position, fragment in enumerate(fragments, start=1):
        if isinstance(fragment, str):
            segments[-1] += fragment
        elif isinstance(fragment, LuaToken):
            tokens.append(fragment)
            segments.append("")
        else:
            raise TypeError(
                "lua template only accepts strings and KEYS.*/ARGV.* tokens. "
                f"Got {type(fragment).__name__} at position {position}."
            )

    return CompiledLua(segments=tuple(segments), tokens=tuple(tokens))


def compile_lua(
    template: CompiledLua,
    key_names: Sequence[str],
    arg_names: Sequence[str],
) -> str:
    """
    Compile a template into lua source with positional references.

    Given key_names=["user"] and arg_names=["limit", "window"], the tokens
    for user, limit and window become KEYS[1], ARGV[1] and ARGV[2].
    Literal text is kept byte for byte.

    Raises:
        UnknownReferenceError: If a token names an undeclared key/arg
    """
    indexes: dict[str, dict[str, int]] = {
        "key": {name: i for i, name in enumerate(key_names, start=1)},
        "arg": {name: i for i, name in enumerate(arg_names, start=1)},
    }
    declared = {"key": tuple(key_names), "arg": tuple(arg_names)}

    parts = [template.segments[0]]
    for token, segment in zip(template.tokens, template.segments[1:]):
        index = indexes[token.kind].get(token.name)
        if index is None:
            raise UnknownReferenceError(token.name, token.kind, declared[token.kind])
        parts.append(f"{_POSITIONAL[token.kind]}[{index}]")
        parts.append(segment)

    return "".join(parts)
