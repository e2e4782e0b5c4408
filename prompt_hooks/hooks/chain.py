"""Hook invoker: runs one hook kind across the loaded extensions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

from ..errors import HookExecutionError
from . import ExecutionRequest, HookFn, HookKind, RegisteredExtension, ValidationResult

logger = logging.getLogger("prompt-hooks.hooks")

DEFAULT_HOOK_TIMEOUT = 5.0


class HookInvoker:
    """Execute extension hooks sequentially, in registry order.

    Validation hooks all see the same request and their errors are
    concatenated. Transform hooks are chained: each extension receives the
    previous extension's output as its ``input``. A hook that raises, times
    out or returns the wrong shape fails the whole call with
    :class:`HookExecutionError`; the chain is never continued past it.

    Args:
        timeout: Seconds allowed per hook call. ``None`` disables the limit.
        fail_fast: Stop validation at the first extension that rejects.
            Off by default so callers see every problem at once.
    """

    def __init__(
        self,
        timeout: float | None = DEFAULT_HOOK_TIMEOUT,
        fail_fast: bool = False,
    ) -> None:
        self.timeout = timeout
        self.fail_fast = fail_fast

    async def run_validate(
        self,
        extensions: Sequence[RegisteredExtension],
        request: ExecutionRequest,
    ) -> ValidationResult:
        """Run every ``validate`` hook against the same input."""
        results = []
        for ext in extensions:
            fn = ext.hook(HookKind.VALIDATE)
            if fn is None:
                continue

            output = await self._call(ext, HookKind.VALIDATE, fn, request.for_extension(ext.config))
            try:
                result = ValidationResult.from_hook_output(output, extension=ext.name)
            except ValueError as e:
                raise HookExecutionError(
                    ext.name, HookKind.VALIDATE, HookExecutionError.INVALID_OUTPUT, str(e)
                ) from e

            results.append(result)
            if not result.valid:
                logger.debug("Extension %s rejected input: %s", ext.name, result.errors)
                if self.fail_fast:
                    break

        return ValidationResult.merge(results)

    async def run_pre_generate(
        self,
        extensions: Sequence[RegisteredExtension],
        request: ExecutionRequest,
    ) -> str:
        """Chain ``preGenerate`` hooks; the result is the prompt for the LLM."""
        return await self._run_chain(HookKind.PRE_GENERATE, extensions, request)

    async def run_post_generate(
        self,
        extensions: Sequence[RegisteredExtension],
        request: ExecutionRequest,
    ) -> str:
        """Chain ``postGenerate`` hooks, seeded with the raw model output."""
        return await self._run_chain(HookKind.POST_GENERATE, extensions, request)

    async def _run_chain(
        self,
        kind: HookKind,
        extensions: Sequence[RegisteredExtension],
        request: ExecutionRequest,
    ) -> str:
        text = request.input
        for ext in extensions:
            fn = ext.hook(kind)
            if fn is None:
                continue
            stage = request.with_input(text).for_extension(ext.config)
            output = await self._call(ext, kind, fn, stage)
            text = _as_text(ext, kind, output)
            logger.debug("Applied %s of %s", kind.value, ext.name)
        return text

    async def _call(
        self,
        ext: RegisteredExtension,
        kind: HookKind,
        fn: HookFn,
        request: ExecutionRequest,
    ) -> Any:
        # A TimeoutError raised by the hook itself is an ordinary failure;
        # only the deadline expiring counts as a timeout.
        task = asyncio.ensure_future(fn(request))
        try:
            done, _ = await asyncio.wait({task}, timeout=self.timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.error("Hook %s of %s timed out after %ss", kind.value, ext.name, self.timeout)
            raise HookExecutionError(
                ext.name, kind, HookExecutionError.TIMEOUT, f"no result after {self.timeout}s"
            )

        try:
            return task.result()
        except Exception as e:
            logger.error("Hook %s of %s failed", kind.value, ext.name, exc_info=True)
            raise HookExecutionError(ext.name, kind, HookExecutionError.ERROR, str(e)) from e


def _as_text(ext: RegisteredExtension, kind: HookKind, output: Any) -> str:
    """Unwrap transform hook output, accepting the ``{"output": ...}`` envelope."""
    if isinstance(output, Mapping) and "output" in output:
        output = output["output"]
    if not isinstance(output, str):
        raise HookExecutionError(
            ext.name,
            kind,
            HookExecutionError.INVALID_OUTPUT,
            f"expected text, got {type(output).__name__}",
        )
    return output
