"""Tests for the request pipeline state machine."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from prompt_hooks.errors import GenerationError, HookExecutionError, RequestRejectedError
from prompt_hooks.hooks import HookKind
from prompt_hooks.hooks.chain import HookInvoker
from prompt_hooks.hooks.loader import ExtensionSource, load_extensions
from prompt_hooks.pipeline import PipelineState, RequestPipeline, run_pipeline


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


class FakeGenerator:
    """Records the prompts it was given and answers with a fixed reply."""

    def __init__(self, reply="model output"):
        self.reply = reply
        self.calls = []

    async def __call__(self, prompt, context):
        self.calls.append((prompt, dict(context)))
        if isinstance(self.reply, BaseException):
            raise self.reply
        return self.reply


def _builtin(*names):
    return load_extensions([ExtensionSource(name=name, builtin=name) for name in names]).extensions


def _custom(name, **hooks):
    registry = load_extensions([ExtensionSource(name=name, target=SimpleNamespace(**hooks))])
    assert not registry.errors
    return registry.extensions[0]


class TestRejection:
    def test_rejected_request_never_reaches_model(self):
        generate = FakeGenerator()
        pipeline = RequestPipeline(_builtin("content-filter"), generate)

        result = _run(pipeline.run("proj", "this is spam"))

        assert result.state is PipelineState.REJECTED
        assert result.rejected
        assert result.errors == ("Prohibited word detected: spam",)
        assert result.output is None
        assert generate.calls == []

    def test_pre_generate_not_run_when_rejected(self):
        seen = []

        def record(request):
            seen.append(request.input)
            return request.input

        extensions = load_extensions([
            ExtensionSource(
                name="gate",
                target=SimpleNamespace(validate=lambda r: {"valid": False, "errors": ["no"]}),
            ),
            ExtensionSource(name="recorder", target=SimpleNamespace(preGenerate=record)),
        ]).extensions
        result = _run(RequestPipeline(extensions, FakeGenerator()).run("proj", "hi"))
        assert result.rejected
        assert seen == []

    def test_raise_for_rejection(self):
        result = _run(RequestPipeline(_builtin("content-filter"), FakeGenerator()).run("p", "hack"))
        with pytest.raises(RequestRejectedError) as exc_info:
            result.raise_for_rejection()
        assert exc_info.value.errors == ["Prohibited word detected: hack"]


class TestHappyPath:
    def test_full_run(self):
        generate = FakeGenerator(reply="the answer mentions spam")
        pipeline = RequestPipeline(_builtin("content-filter", "uppercase"), generate)

        result = _run(pipeline.run("proj", "  tell   me a joke "))

        assert result.state is PipelineState.DONE
        assert result.prompt == "TELL ME A JOKE"
        assert generate.calls == [("TELL ME A JOKE", {})]
        assert result.raw_output == "the answer mentions spam"
        assert result.output == "the answer mentions [FILTERED]"
        result.raise_for_rejection()

    def test_no_extensions_passes_through(self):
        generate = FakeGenerator(reply="out")
        result = _run(RequestPipeline([], generate).run("proj", "in"))
        assert result.prompt == "in"
        assert result.output == "out"

    def test_post_generate_sees_original_context(self):
        seen = {}

        def post(request):
            seen["project_id"] = request.project_id
            seen["context"] = dict(request.context)
            return request.input + "!"

        ext = _custom("post", postGenerate=post)
        generate = FakeGenerator(reply="done")
        result = _run(
            RequestPipeline([ext], generate).run("proj-9", "q", context={"system_prompt": "be brief"})
        )
        assert result.output == "done!"
        assert seen == {"project_id": "proj-9", "context": {"system_prompt": "be brief"}}
        assert generate.calls[0][1] == {"system_prompt": "be brief"}

    def test_run_pipeline_helper(self):
        result = _run(run_pipeline(_builtin("uppercase"), FakeGenerator("x"), "proj", "hi"))
        assert result.prompt == "HI"
        assert result.output == "x"

    def test_concurrent_requests_are_independent(self):
        async def echo(prompt, context):
            await asyncio.sleep(0)
            return prompt.lower()

        pipeline = RequestPipeline(_builtin("uppercase"), echo)

        async def both():
            return await asyncio.gather(
                pipeline.run("a", "first"),
                pipeline.run("b", "second"),
            )

        first, second = _run(both())
        assert first.output == "first"
        assert second.output == "second"


class TestPreview:
    def test_preview_stops_before_generation(self):
        generate = FakeGenerator()
        result = _run(RequestPipeline(_builtin("uppercase"), generate).preview("proj", "hi"))
        assert result.state is PipelineState.PRE_PROCESSING
        assert result.prompt == "HI"
        assert generate.calls == []

    def test_preview_reports_rejection(self):
        result = _run(RequestPipeline(_builtin("content-filter"), FakeGenerator()).preview("p", "spam"))
        assert result.rejected


class TestFailures:
    def test_pre_generate_failure_skips_generation(self):
        def boom(request):
            raise RuntimeError("boom")

        generate = FakeGenerator()
        pipeline = RequestPipeline([_custom("bad", preGenerate=boom)], generate)
        with pytest.raises(HookExecutionError) as exc_info:
            _run(pipeline.run("proj", "hi"))
        assert exc_info.value.hook is HookKind.PRE_GENERATE
        assert generate.calls == []

    def test_post_generate_failure_discards_output(self):
        def boom(request):
            raise RuntimeError("boom")

        pipeline = RequestPipeline([_custom("bad", postGenerate=boom)], FakeGenerator())
        with pytest.raises(HookExecutionError) as exc_info:
            _run(pipeline.run("proj", "hi"))
        assert exc_info.value.extension == "bad"
        assert exc_info.value.hook is HookKind.POST_GENERATE

    def test_generation_error_propagates(self):
        generate = FakeGenerator(reply=GenerationError("upstream down"))
        with pytest.raises(GenerationError, match="upstream down"):
            _run(RequestPipeline([], generate).run("proj", "hi"))

    def test_other_generator_exceptions_wrapped(self):
        generate = FakeGenerator(reply=ConnectionError("reset"))
        with pytest.raises(GenerationError, match="reset"):
            _run(RequestPipeline([], generate).run("proj", "hi"))

    def test_post_generate_not_run_after_generation_failure(self):
        seen = []
        ext = _custom("post", postGenerate=lambda r: seen.append(r.input) or r.input)
        generate = FakeGenerator(reply=GenerationError("nope"))
        with pytest.raises(GenerationError):
            _run(RequestPipeline([ext], generate).run("proj", "hi"))
        assert seen == []

    def test_non_text_generation_result(self):
        generate = FakeGenerator(reply={"content": "x"})
        with pytest.raises(GenerationError):
            _run(RequestPipeline([], generate).run("proj", "hi"))

    def test_hook_timeout_from_invoker(self):
        async def slow(request):
            await asyncio.sleep(1)
            return request.input

        pipeline = RequestPipeline(
            [_custom("slow", preGenerate=slow)],
            FakeGenerator(),
            invoker=HookInvoker(timeout=0.01),
        )
        with pytest.raises(HookExecutionError) as exc_info:
            _run(pipeline.run("proj", "hi"))
        assert exc_info.value.reason == HookExecutionError.TIMEOUT
