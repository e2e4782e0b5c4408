"""Exceptions raised by the extension pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .hooks import HookKind


class PipelineError(Exception):
    """Base class for all prompt-hooks errors."""


class ExtensionLoadError(PipelineError):
    """An extension source could not be resolved into a conforming module.

    Collected by the registry rather than raised to the caller; the
    offending source is left out of the loaded list.
    """

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"Failed to load extension {source}: {reason}")
        self.source = source
        self.reason = reason


class HookExecutionError(PipelineError):
    """A hook raised, timed out, or returned output of the wrong shape."""

    ERROR = "error"
    TIMEOUT = "timeout"
    INVALID_OUTPUT = "invalid_output"

    def __init__(
        self,
        extension: str,
        hook: HookKind,
        reason: str = ERROR,
        detail: str = "",
    ) -> None:
        message = f"{hook.value} hook of extension '{extension}' failed ({reason})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.extension = extension
        self.hook = hook
        self.reason = reason
        self.detail = detail


class GenerationError(PipelineError):
    """The LLM call failed. No post-processing happens after this."""


class RequestRejectedError(PipelineError):
    """Validation rejected the request.

    Rejection is a normal outcome of :class:`~prompt_hooks.pipeline.RequestPipeline`;
    this exception only exists for hosts that want it raised.
    """

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Request rejected")
