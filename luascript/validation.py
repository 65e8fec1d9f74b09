"""
Validation boundary for script inputs and return values.

A validator (validation capability) is any object with a
``validate(value)`` method, or a plain function, returning either a
ValidationSuccess / ValidationFailure or an awaitable of one. Both the
immediate and the deferred form are awaited the same way, so the
fail-fast, in-order guarantees hold whichever form a field uses.

Anything else given where a validator is expected (``str``, a pydantic
model, ``Annotated[int, Field(gt=0)]``, ...) is wrapped in a
PydanticValidator backed by ``pydantic.TypeAdapter``.

Usage:
    keys={"user": str}
    args={"limit": Annotated[int, Field(gt=0), AfterValidator(str)]}
    returns=hash_result(UserRecord)
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import (
    Any,
    ClassVar,
    Generic,
    Literal,
    Protocol,
    TypeVar,
    get_origin,
    runtime_checkable,
)

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from luascript.errors import (
    SchemaContractError,
    ScriptInputError,
    ScriptReturnError,
    ValidationIssue,
)

T = TypeVar("T")


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True, slots=True)
class ValidationSuccess(Generic[T]):
    """Validator accepted the value (possibly transformed)."""

    value: T
    success: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class ValidationFailure:
    """Validator rejected the value."""

    issues: tuple[ValidationIssue, ...]
    success: ClassVar[bool] = False


ValidationResult = ValidationSuccess[Any] | ValidationFailure


@runtime_checkable
class Validator(Protocol):
    """Validation capability for a single value."""

    def validate(self, value: Any) -> ValidationResult | Awaitable[ValidationResult]:
        ...


# =============================================================================
# Validator adapters
# =============================================================================


class FunctionValidator:
    """Adapts a plain function with the validator contract."""

    def __init__(self, func: Callable[[Any], Any]):
        self.func = func

    def validate(self, value: Any) -> Any:
        return self.func(value)

    def __repr__(self) -> str:
        return f"FunctionValidator({getattr(self.func, '__name__', self.func)!r})"


class PydanticValidator:
    """
    Validator backed by a pydantic TypeAdapter.

    Accepts anything TypeAdapter does: builtin types, BaseModel
    subclasses, ``Annotated`` types with constraints and validators.

    pydantic errors are reported as issues, with ``loc`` as the path.
    """

    def __init__(self, type_: Any, *, strict: bool | None = None):
        self.type_ = type_
        self.strict = strict
        self._adapter: TypeAdapter[Any] = TypeAdapter(type_)

    def validate(self, value: Any) -> ValidationResult:
        try:
            return ValidationSuccess(self._adapter.validate_python(value, strict=self.strict))
        except PydanticValidationError as e:
            return ValidationFailure(
                tuple(
                    ValidationIssue(message=err["msg"], path=tuple(err["loc"]) or None)
                    for err in e.errors()
                )
            )

    def __repr__(self) -> str:
        return f"PydanticValidator({self.type_!r})"


def as_validator(schema: Any) -> Validator:
    """
    Turn a schema or validator into a Validator.

    - Objects with a ``validate`` method pass through
    - Functions are wrapped in FunctionValidator
    - Types and typing constructs are wrapped in PydanticValidator
    """
    # Checked before .validate: BaseModel subclasses have one too
    if isinstance(schema, type) or get_origin(schema) is not None:
        return PydanticValidator(schema)
    if callable(getattr(schema, "validate", None)):
        return schema
    if inspect.isfunction(schema) or inspect.ismethod(schema) or isinstance(schema, functools.partial):
        return FunctionValidator(schema)
    return PydanticValidator(schema)


def _coerce_issue(issue: Any) -> ValidationIssue:
    if isinstance(issue, ValidationIssue):
        return issue
    if isinstance(issue, Mapping):
        path = issue.get("path")
        return ValidationIssue(
            message=str(issue.get("message", "")),
            path=tuple(path) if path else None,
        )
    return ValidationIssue(message=str(issue))


def _coerce_result(result: Any) -> ValidationResult:
    if isinstance(result, ValidationSuccess | ValidationFailure):
        return result
    # Mapping form: {"success": True, "value": ...} / {"success": False, "issues": [...]}
    if isinstance(result, Mapping):
        if result.get("success") is False or result.get("issues"):
            return ValidationFailure(tuple(_coerce_issue(i) for i in result.get("issues") or ()))
        return ValidationSuccess(result.get("value"))
    raise TypeError(
        "validator must return ValidationSuccess, ValidationFailure or a mapping "
        f"with success/value/issues, got {type(result).__name__}"
    )


async def validate_value(validator: Any, value: Any) -> ValidationResult:
    """
    Run a validator and normalize its result.

    Immediate and awaitable results are handled alike.
    """
    result = as_validator(validator).validate(value)
    if inspect.isawaitable(result):
        result = await result
    return _coerce_result(result)


# =============================================================================
# Parsing with script context
# =============================================================================


@dataclass(frozen=True, slots=True)
class ParseContext:
    """
    Where a value being validated came from, for error reporting.

    Attributes:
        script_name: Name of the script being executed
        path: Field path ("keys.user", "args.limit") or "return"
        type: "input" for keys/args, "return" for the script reply
        raw: The untouched reply (return validation only)
    """

    script_name: str
    path: str
    type: Literal["input", "return"]
    raw: Any = None


async def parse_value(validator: Any, value: Any, context: ParseContext) -> Any:
    """
    Validate a value and return its validated form.

    Raises:
        ScriptInputError: When an input fails validation
        ScriptReturnError: When the return value fails validation
    """
    result = await validate_value(validator, value)

    if isinstance(result, ValidationFailure):
        if context.type == "input":
            raise ScriptInputError(context.script_name, context.path, result.issues)
        raise ScriptReturnError(context.script_name, result.issues, context.raw)

    return result.value


async def validate_and_collect(
    script_name: str,
    key_validators: Mapping[str, Any],
    arg_validators: Mapping[str, Any],
    key_names: Sequence[str],
    arg_names: Sequence[str],
    keys: Mapping[str, Any] | None = None,
    args: Mapping[str, Any] | None = None,
) -> tuple[list[str], list[str]]:
    """
    Validate keys then args, in declared order, into positional lists.

    Stops at the first failing field. Omitted values are validated as None.

    Raises:
        ScriptInputError: When a field fails validation
        SchemaContractError: When a validator outputs a non-string
    """
    collected: dict[str, list[str]] = {"keys": [], "args": []}

    for section, names, validators, values in (
        ("keys", key_names, key_validators, keys or {}),
        ("args", arg_names, arg_validators, args or {}),
    ):
        for name in names:
            path = f"{section}.{name}"
            validated = await parse_value(
                validators[name],
                values.get(name),
                ParseContext(script_name=script_name, path=path, type="input"),
            )
            if not isinstance(validated, str):
                raise SchemaContractError(script_name, path, validated)
            collected[section].append(validated)

    return collected["keys"], collected["args"]


# =============================================================================
# HGETALL helper
# =============================================================================


def pairs_to_dict(value: Any) -> dict[str, Any]:
    """
    Convert a flat [field, value, field, value, ...] list to a dict.

    Raises:
        ValueError: If value is not a list/tuple, has odd length, or has a
            non-string field name
    """
    if not isinstance(value, list | tuple):
        raise ValueError(f"Expected array of key-value pairs, got {type(value).__name__}")

    if len(value) % 2 != 0:
        raise ValueError(
            f"Expected even number of elements (key-value pairs), got {len(value)}"
        )

    result: dict[str, Any] = {}
    for i in range(0, len(value), 2):
        key = value[i]
        if not isinstance(key, str):
            raise ValueError(f"Expected string key at index {i}, got {type(key).__name__}")
        result[key] = value[i + 1]
    return result


class HashResult:
    """Return validator for HGETALL-style replies; see hash_result()."""

    def __init__(self, inner: Any):
        self.inner = as_validator(inner)

    def validate(self, value: Any) -> ValidationResult | Awaitable[ValidationResult]:
        try:
            mapping = pairs_to_dict(value)
        except ValueError as e:
            return ValidationFailure((ValidationIssue(message=str(e)),))
        return self.inner.validate(mapping)


def hash_result(inner: Any) -> HashResult:
    """
    Wrap an object validator so it accepts HGETALL-style flat arrays.

    Example:
        class User(BaseModel):
            name: str
            age: int

        get_user = define_script(
            name="getUser",
            lua='return redis.call("HGETALL", KEYS[1])',
            keys={"key": str},
            returns=hash_result(User),
        )
        user = await get_user.run(redis, keys={"key": "user:123"})
    """
    return HashResult(inner)
