"""Extension hook contract for the prompt pipeline.

An extension exposes up to three hooks, looked up by their exact names:
``validate``, ``preGenerate`` and ``postGenerate``. Each receives an
:class:`ExecutionRequest` and returns either a validation outcome or text.
Hooks of one kind run sequentially in registry order; any failure stops
the request.

An extension may also define ``configure(config)``, called once at load
time with its config; raising there keeps the extension from loading.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping


class HookKind(Enum):
    """Hooks an extension can implement. Values are the attribute names."""

    VALIDATE = "validate"  # Before anything else; may reject the request
    PRE_GENERATE = "preGenerate"  # Transforms the prompt before the LLM call
    POST_GENERATE = "postGenerate"  # Transforms the model output

    @property
    def wire_name(self) -> str:
        """Name used by remote extension runtimes."""
        return _WIRE_NAMES[self]

    @classmethod
    def parse(cls, name: str) -> HookKind:
        """Accept either the attribute name or the wire name."""
        for kind in cls:
            if name in (kind.value, kind.wire_name):
                return kind
        raise ValueError(f"Unknown hook: {name}")


_WIRE_NAMES = {
    HookKind.VALIDATE: "validate",
    HookKind.PRE_GENERATE: "pre-generate",
    HookKind.POST_GENERATE: "post-generate",
}


def _frozen(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class ExecutionRequest:
    """The value passed to every hook call.

    Requests are never modified in place. Chained hooks each receive a new
    request whose ``input`` is the previous hook's output; ``project_id``
    and ``context`` are carried through unchanged. ``config`` holds the
    configuration bound to the extension being called.
    """

    input: str
    project_id: str = ""
    context: Mapping[str, Any] = field(default_factory=dict)
    config: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.input, str):
            raise TypeError(f"input must be str, got {type(self.input).__name__}")
        object.__setattr__(self, "context", _frozen(self.context))
        object.__setattr__(self, "config", _frozen(self.config))

    def with_input(self, text: str) -> ExecutionRequest:
        return replace(self, input=text)

    def for_extension(self, config: Mapping[str, Any]) -> ExecutionRequest:
        return replace(self, config=config)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validation.

    ``valid`` is derived from ``errors`` so the two can never disagree.
    """

    errors: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls()

    @classmethod
    def invalid(cls, errors: Iterable[str]) -> ValidationResult:
        errors = tuple(errors)
        if not errors:
            raise ValueError("An invalid result needs at least one error")
        return cls(errors)

    @classmethod
    def merge(cls, results: Iterable[ValidationResult]) -> ValidationResult:
        """Concatenate errors in the order the results are given."""
        return cls(tuple(error for result in results for error in result.errors))

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}

    @classmethod
    def from_hook_output(cls, value: Any, extension: str = "extension") -> ValidationResult:
        """Decode whatever a ``validate`` hook returned.

        Accepts a ValidationResult, a ``{valid, errors}`` mapping, its JSON
        encoding, or the ``{"output": "<json>"}`` envelope. A result that
        says invalid without giving a reason gets one naming the extension;
        a result that says valid but lists errors counts as invalid.

        Raises ValueError when the value has none of those shapes.
        """
        if isinstance(value, ValidationResult):
            return value

        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                raise ValueError(f"validation output is not valid JSON: {e}") from e

        if not isinstance(value, Mapping):
            raise ValueError(
                f"expected a validation result, got {type(value).__name__}"
            )

        if "valid" not in value and "output" in value:
            return cls.from_hook_output(value["output"], extension)

        valid = value.get("valid")
        if not isinstance(valid, bool):
            raise ValueError("'valid' must be a boolean")

        errors = value.get("errors") or []
        if not isinstance(errors, (list, tuple)) or not all(
            isinstance(e, str) for e in errors
        ):
            raise ValueError("'errors' must be a list of strings")

        if not valid and not errors:
            errors = [f"Extension '{extension}' rejected the input"]
        return cls(tuple(errors))


@dataclass(frozen=True)
class Capabilities:
    """Which hooks an extension implements, computed once at load time."""

    has_validate: bool = False
    has_pre_generate: bool = False
    has_post_generate: bool = False

    @classmethod
    def from_hooks(cls, hooks: Mapping[HookKind, Any]) -> Capabilities:
        return cls(
            has_validate=HookKind.VALIDATE in hooks,
            has_pre_generate=HookKind.PRE_GENERATE in hooks,
            has_post_generate=HookKind.POST_GENERATE in hooks,
        )

    def supports(self, kind: HookKind) -> bool:
        return {
            HookKind.VALIDATE: self.has_validate,
            HookKind.PRE_GENERATE: self.has_pre_generate,
            HookKind.POST_GENERATE: self.has_post_generate,
        }[kind]

    def names(self) -> list[str]:
        return [kind.value for kind in HookKind if self.supports(kind)]


# Hooks as stored in the registry: always awaitable
HookFn = Callable[[ExecutionRequest], Awaitable[Any]]


@dataclass(frozen=True)
class RegisteredExtension:
    """A loaded extension and its position in load order."""

    name: str
    index: int
    source: str
    hooks: Mapping[HookKind, HookFn] = field(default_factory=dict)
    config: Mapping[str, Any] = field(default_factory=dict)
    capabilities: Capabilities = field(default_factory=Capabilities)

    def __post_init__(self) -> None:
        object.__setattr__(self, "hooks", MappingProxyType(dict(self.hooks)))
        object.__setattr__(self, "config", _frozen(self.config))

    def hook(self, kind: HookKind) -> HookFn | None:
        if not self.capabilities.supports(kind):
            return None
        return self.hooks.get(kind)
