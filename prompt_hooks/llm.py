"""
LLM-call collaborator backed by a LiteLLM proxy.

The pipeline only needs an async ``(prompt, context) -> text`` callable;
:class:`LiteLLMGenerator` provides one that talks to the proxy's
OpenAI-compatible ``/chat/completions`` endpoint.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Awaitable, Callable, Mapping

import httpx

from .errors import GenerationError

logger = logging.getLogger("prompt-hooks.llm")

DEFAULT_PROXY_HOST = "127.0.0.1"
DEFAULT_PROXY_PORT = 4444
DEFAULT_PROXY_URL = f"http://{DEFAULT_PROXY_HOST}:{DEFAULT_PROXY_PORT}"
DEFAULT_API_KEY = "sk-litellm-proxy"
DEFAULT_TIMEOUT = 120.0

# (prompt, context) -> model output
Generator = Callable[[str, Mapping[str, Any]], Awaitable[str]]


def get_proxy_url() -> str:
    """Get proxy URL from environment or default."""
    return os.environ.get("LITELLM_PROXY_URL", DEFAULT_PROXY_URL)


def get_api_key() -> str:
    """Get proxy API key from environment or default."""
    return os.environ.get("LITELLM_API_KEY", DEFAULT_API_KEY)


class LiteLLMGenerator:
    """Send a single-turn chat completion through the LiteLLM proxy.

    ``context["system_prompt"]``, when present, is sent as a system message
    ahead of the prompt. No retries are made here; failures surface as
    :class:`GenerationError`.
    """

    def __init__(
        self,
        model: str,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.model = model
        self.base_url = (base_url or get_proxy_url()).rstrip("/")
        self.api_key = api_key or get_api_key()
        self.timeout = timeout
        self._transport = transport

    async def __call__(self, prompt: str, context: Mapping[str, Any]) -> str:
        messages = []
        system_prompt = context.get("system_prompt")
        if system_prompt:
            messages.append({"role": "system", "content": str(system_prompt)})
        messages.append({"role": "user", "content": prompt})

        logger.debug("[POST] %s/chat/completions model=%s", self.base_url, self.model)
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    "/chat/completions",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"model": self.model, "messages": messages},
                )
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise GenerationError(f"LLM request to {self.base_url} failed: {e}") from e

        try:
            return _extract_content(resp.json())
        except ValueError as e:
            raise GenerationError(f"Unexpected LLM response: {e}") from e


def _extract_content(body: Any) -> str:
    """Pull ``choices[0].message.content`` out of a completion response."""
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise ValueError("no choices[0].message.content in response") from e
    if not isinstance(content, str):
        raise ValueError(f"message content is {type(content).__name__}, not text")
    return content
