"""Request pipeline: extension hooks around a single LLM call.

    VALIDATING -> REJECTED
               -> PRE_PROCESSING -> GENERATING -> POST_PROCESSING -> DONE

Only validation branches. Hook failures raise
:class:`~prompt_hooks.errors.HookExecutionError` and LLM failures raise
:class:`~prompt_hooks.errors.GenerationError`; nothing is retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence

from .errors import GenerationError, RequestRejectedError
from .hooks import ExecutionRequest, RegisteredExtension
from .hooks.chain import HookInvoker
from .llm import Generator

logger = logging.getLogger("prompt-hooks.pipeline")


class PipelineState(Enum):
    VALIDATING = "validating"
    REJECTED = "rejected"
    PRE_PROCESSING = "pre_processing"
    GENERATING = "generating"
    POST_PROCESSING = "post_processing"
    DONE = "done"


@dataclass(frozen=True)
class PipelineResult:
    """Where a request ended up and what it produced.

    A rejected result carries ``errors``; a finished one carries the
    ``prompt`` sent to the model, the model's ``raw_output`` and the
    post-processed ``output``.
    """

    state: PipelineState
    errors: tuple[str, ...] = ()
    prompt: str | None = None
    raw_output: str | None = None
    output: str | None = None

    @property
    def rejected(self) -> bool:
        return self.state is PipelineState.REJECTED

    def raise_for_rejection(self) -> PipelineResult:
        if self.rejected:
            raise RequestRejectedError(self.errors)
        return self


class RequestPipeline:
    """Run one request through validation, generation and post-processing.

    The extension list and invoker are never modified, so one pipeline can
    serve concurrent requests.
    """

    def __init__(
        self,
        extensions: Sequence[RegisteredExtension],
        generate: Generator,
        invoker: HookInvoker | None = None,
    ) -> None:
        self.extensions = tuple(extensions)
        self.generate = generate
        self.invoker = invoker or HookInvoker()

    async def run(
        self,
        project_id: str,
        input: str,
        context: Mapping[str, Any] | None = None,
    ) -> PipelineResult:
        request = ExecutionRequest(input=input, project_id=project_id, context=context or {})

        result = await self._prepare(request)
        if result.rejected:
            return result
        prompt = result.prompt

        self._enter(PipelineState.GENERATING, project_id)
        try:
            raw_output = await self.generate(prompt, request.context)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Generation failed: {e}") from e
        if not isinstance(raw_output, str):
            raise GenerationError(
                f"Generator returned {type(raw_output).__name__}, not text"
            )

        self._enter(PipelineState.POST_PROCESSING, project_id)
        output = await self.invoker.run_post_generate(
            self.extensions, request.with_input(raw_output)
        )

        self._enter(PipelineState.DONE, project_id)
        return PipelineResult(
            state=PipelineState.DONE,
            prompt=prompt,
            raw_output=raw_output,
            output=output,
        )

    async def preview(
        self,
        project_id: str,
        input: str,
        context: Mapping[str, Any] | None = None,
    ) -> PipelineResult:
        """Validate and pre-process without calling the model."""
        request = ExecutionRequest(input=input, project_id=project_id, context=context or {})
        return await self._prepare(request)

    async def _prepare(self, request: ExecutionRequest) -> PipelineResult:
        self._enter(PipelineState.VALIDATING, request.project_id)
        verdict = await self.invoker.run_validate(self.extensions, request)
        if not verdict.valid:
            self._enter(PipelineState.REJECTED, request.project_id)
            return PipelineResult(state=PipelineState.REJECTED, errors=verdict.errors)

        self._enter(PipelineState.PRE_PROCESSING, request.project_id)
        prompt = await self.invoker.run_pre_generate(self.extensions, request)
        return PipelineResult(state=PipelineState.PRE_PROCESSING, prompt=prompt)

    @staticmethod
    def _enter(state: PipelineState, project_id: str) -> None:
        logger.debug("project=%s state=%s", project_id, state.value)


async def run_pipeline(
    extensions: Sequence[RegisteredExtension],
    generate: Generator,
    project_id: str,
    input: str,
    context: Mapping[str, Any] | None = None,
    invoker: HookInvoker | None = None,
) -> PipelineResult:
    """One-shot helper for hosts that don't keep a pipeline around."""
    pipeline = RequestPipeline(extensions, generate, invoker=invoker)
    return await pipeline.run(project_id, input, context)
