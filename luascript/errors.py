"""
Error types for luascript.

Every error raised by this package derives from LuaScriptError so callers
can catch the whole family in one place.

Taxonomy:
    - UnknownReferenceError: template references an undeclared key/arg
    - BuilderContractError: lua builder returned something other than CompiledLua
    - ScriptInputError / ScriptReturnError: validation failures (ValidationError)
    - SchemaContractError: a key/arg validator produced a non-string
    - TransportError: the store rejected or failed a command

NOSCRIPT replies arrive as TransportError (or any exception whose text
contains "NOSCRIPT") and are absorbed once by the execution engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from luascript.version import VERSION

_PREFIX = f"[luascript@{VERSION}]"


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """
    A single problem reported by a validator.

    Attributes:
        message: Human-readable error message
        path: Location of the problem inside the validated value (if any)
    """

    message: str
    path: tuple[Any, ...] | None = None


class LuaScriptError(Exception):
    """Base exception for luascript errors."""


class UnknownReferenceError(LuaScriptError):
    """
    Raised when a lua template references a key or arg that was not declared.

    This is always a definition-time error; it never happens during run().
    """

    def __init__(self, name: str, kind: str, available: tuple[str, ...] | list[str] = ()):
        self.name = name
        self.kind = kind
        self.available = tuple(available)
        listing = ", ".join(self.available) if self.available else "(none)"
        super().__init__(
            f"{_PREFIX} Unknown {kind} \"{name}\" in lua template. "
            f"Available {kind}s: {listing}"
        )


class BuilderContractError(LuaScriptError, TypeError):
    """Raised when a lua builder does not return a CompiledLua template."""

    def __init__(self, script_name: str, returned: Any):
        self.script_name = script_name
        self.returned = returned
        super().__init__(
            f"{_PREFIX} Script \"{script_name}\" lua builder must return lua(...), "
            f"got {type(returned).__name__}"
        )


class ValidationError(LuaScriptError):
    """Base class for input and return validation failures."""

    def __init__(self, message: str, script_name: str, issues: tuple[ValidationIssue, ...]):
        super().__init__(message)
        self.script_name = script_name
        self.issues = issues


def _join_issues(issues: tuple[ValidationIssue, ...]) -> str:
    return ", ".join(issue.message for issue in issues)


class ScriptInputError(ValidationError):
    """
    Raised when a key or arg fails validation before the script is executed.

    Attributes:
        script_name: Name of the script
        path: Field path, "keys.<name>" or "args.<name>"
        issues: Issues reported by the field's validator
    """

    def __init__(self, script_name: str, path: str, issues: tuple[ValidationIssue, ...] | list[ValidationIssue]):
        issues = tuple(issues)
        self.path = path
        super().__init__(
            f"{_PREFIX} Script \"{script_name}\" input validation failed at "
            f"\"{path}\": {_join_issues(issues)}",
            script_name,
            issues,
        )


class ScriptReturnError(ValidationError):
    """
    Raised when the value returned by Redis fails the returns validator.

    The untouched Redis reply is kept on ``raw`` for debugging.
    """

    def __init__(self, script_name: str, issues: tuple[ValidationIssue, ...] | list[ValidationIssue], raw: Any):
        issues = tuple(issues)
        self.raw = raw
        super().__init__(
            f"{_PREFIX} Script \"{script_name}\" return validation failed: "
            f"{_join_issues(issues)}",
            script_name,
            issues,
        )


class SchemaContractError(LuaScriptError, TypeError):
    """
    Raised when a key/arg validator outputs something other than a string.

    This points at a broken script definition, not at bad caller input.
    """

    def __init__(self, script_name: str, path: str, value: Any):
        self.script_name = script_name
        self.path = path
        self.value = value
        super().__init__(
            f"{_PREFIX} Script \"{script_name}\" validator for \"{path}\" must "
            f"output a string, got {type(value).__name__}"
        )


class TransportError(LuaScriptError):
    """Raised when the store fails or rejects a command."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_body: str | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.retryable = retryable

    def __str__(self) -> str:
        parts = [str(self.args[0])]
        if self.status_code:
            parts.append(f"(status={self.status_code})")
        return " ".join(parts)
