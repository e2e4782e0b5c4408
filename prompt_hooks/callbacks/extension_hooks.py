"""
Extension pipeline callback for LiteLLM proxy.

Runs the configured extensions around proxied chat completions: the last
user message is validated and pre-processed before the call, and the first
choice of the response is post-processed afterwards.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncGenerator, Sequence

from litellm.integrations.custom_logger import CustomLogger

from ..config import get_config_file, load_settings
from ..errors import RequestRejectedError
from ..hooks import ExecutionRequest, RegisteredExtension
from ..hooks.chain import HookInvoker
from ..hooks.loader import reload_registry

if TYPE_CHECKING:
    from litellm.proxy._types import UserAPIKeyAuth

logger = logging.getLogger("prompt-hooks.callbacks")


def _last_user_message(messages: Any) -> int | None:
    """Index of the last user message with plain-text content."""
    if not isinstance(messages, list):
        return None
    for index in range(len(messages) - 1, -1, -1):
        msg = messages[index]
        if isinstance(msg, dict) and msg.get("role") == "user":
            return index if isinstance(msg.get("content"), str) else None
    return None


def _project_id(data: dict[str, Any], user_api_key_dict: Any) -> str:
    metadata = data.get("metadata") or {}
    project_id = metadata.get("project_id") if isinstance(metadata, dict) else None
    if not project_id:
        project_id = getattr(user_api_key_dict, "team_id", None)
    return str(project_id or "")


def _request_context(data: dict[str, Any]) -> dict[str, Any]:
    metadata = data.get("metadata")
    return {
        "model": data.get("model", ""),
        "metadata": dict(metadata) if isinstance(metadata, dict) else {},
    }


def _first_delta(chunk: Any) -> Any:
    choices = getattr(chunk, "choices", None)
    if not choices:
        return None
    return getattr(choices[0], "delta", None)


class ExtensionPipelineCallback(CustomLogger):
    """
    LiteLLM custom callback that applies extension hooks to chat requests.

    Without explicit ``extensions`` the callback loads the extension config
    file (see :func:`prompt_hooks.config.get_config_file`) once, at
    construction.

    Usage in a module referenced from litellm config.yaml:
        proxy_handler_instance = ExtensionPipelineCallback()

        litellm_settings:
          callbacks: custom_callbacks.proxy_handler_instance
    """

    def __init__(
        self,
        extensions: Sequence[RegisteredExtension] | None = None,
        invoker: HookInvoker | None = None,
        config_path: Path | None = None,
    ) -> None:
        super().__init__()
        if extensions is None:
            path = config_path or get_config_file()
            registry = reload_registry(path)
            for error in registry.errors:
                logger.warning("Extension not loaded: %s", error)
            extensions = registry.extensions
            if invoker is None:
                invoker = load_settings(path).make_invoker()
        self.extensions = tuple(extensions)
        self.invoker = invoker or HookInvoker()

    async def async_pre_call_hook(
        self,
        user_api_key_dict: UserAPIKeyAuth,
        cache: Any,
        data: dict[str, Any],
        call_type: str,
    ) -> dict[str, Any]:
        """
        Validate and pre-process the prompt before it reaches the provider.

        Raises RequestRejectedError when validation fails, which makes the
        proxy refuse the request.
        """
        index = _last_user_message(data.get("messages"))
        if index is None:
            return data

        messages = list(data["messages"])
        request = ExecutionRequest(
            input=messages[index]["content"],
            project_id=_project_id(data, user_api_key_dict),
            context=_request_context(data),
        )

        verdict = await self.invoker.run_validate(self.extensions, request)
        if not verdict.valid:
            logger.info("Rejected request for project %s: %s", request.project_id, verdict.errors)
            raise RequestRejectedError(verdict.errors)

        prompt = await self.invoker.run_pre_generate(self.extensions, request)
        messages[index] = {**messages[index], "content": prompt}
        data["messages"] = messages
        return data

    async def async_post_call_success_hook(
        self,
        data: dict[str, Any],
        user_api_key_dict: UserAPIKeyAuth,
        response: Any,
    ) -> Any:
        """Post-process the first choice's message content in place."""
        choices = getattr(response, "choices", None)
        if not choices:
            return response

        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if not isinstance(content, str):
            return response

        request = ExecutionRequest(
            input=content,
            project_id=_project_id(data, user_api_key_dict),
            context=_request_context(data),
        )
        message.content = await self.invoker.run_post_generate(self.extensions, request)
        return response

    async def async_post_call_streaming_iterator_hook(
        self,
        user_api_key_dict: UserAPIKeyAuth,
        response: Any,
        request_data: dict[str, Any],
    ) -> AsyncGenerator[Any, None]:
        """
        Post-process streamed completions.

        postGenerate hooks need the whole text, so the stream is buffered.
        The processed text is carried by the first content chunk; later
        chunks keep their metadata and finish_reason with empty content.
        """
        if not any(ext.capabilities.has_post_generate for ext in self.extensions):
            async for chunk in response:
                yield chunk
            return

        chunks = []
        parts = []
        async for chunk in response:
            chunks.append(chunk)
            delta = _first_delta(chunk)
            content = getattr(delta, "content", None)
            if isinstance(content, str):
                parts.append(content)

        request = ExecutionRequest(
            input="".join(parts),
            project_id=_project_id(request_data, user_api_key_dict),
            context=_request_context(request_data),
        )
        text = await self.invoker.run_post_generate(self.extensions, request)

        placed = False
        for chunk in chunks:
            delta = _first_delta(chunk)
            if isinstance(getattr(delta, "content", None), str):
                delta.content = "" if placed else text
                placed = True
            yield chunk
