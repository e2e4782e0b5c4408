"""Extensions executed by an external extension runtime over HTTP.

The runtime exposes ``POST /extension/execute`` and ``GET /health``. Each
hook call is one request carrying the extension id, the hook's wire name
(``validate``, ``pre-generate``, ``post-generate``) and the execution
request; the runtime answers with ``{"output": str, "error": str}``.
"""

from __future__ import annotations

import logging
import os
from functools import partial
from typing import Any, Iterable

import httpx

from . import ExecutionRequest, HookFn, HookKind

logger = logging.getLogger("prompt-hooks.hooks")

DEFAULT_RUNTIME_URL = "http://localhost:3001"
REQUEST_TIMEOUT = 30.0


def get_runtime_url() -> str:
    """Get extension runtime URL from environment or default."""
    return os.environ.get("EXTENSION_SERVER_URL", DEFAULT_RUNTIME_URL)


class RemoteExtension:
    """Forward hook calls for one extension to a runtime.

    Errors reported by the runtime are raised as ``RuntimeError``; the
    invoker turns them into hook failures like any other exception.
    """

    def __init__(
        self,
        extension_id: str,
        base_url: str | None = None,
        hooks: Iterable[HookKind] = (),
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.extension_id = extension_id
        self.base_url = (base_url or get_runtime_url()).rstrip("/")
        self.hooks = tuple(hooks)
        self.timeout = timeout
        self._transport = transport

    def hook(self, kind: HookKind) -> HookFn:
        return partial(self.execute, kind)

    def bound_hooks(self) -> dict[HookKind, HookFn]:
        return {kind: self.hook(kind) for kind in self.hooks}

    async def execute(self, kind: HookKind, request: ExecutionRequest) -> str:
        payload = {
            "extension_id": self.extension_id,
            "hook": kind.wire_name,
            "input": request.input,
            "project_id": request.project_id,
            "context": dict(request.context),
            "config": dict(request.config),
        }

        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            resp = await client.post("/extension/execute", json=payload)

        if resp.status_code != 200:
            raise RuntimeError(f"extension runtime error: {resp.text}")

        try:
            body: Any = resp.json()
        except ValueError as e:
            raise RuntimeError(f"unreadable runtime response: {e}") from e

        if not isinstance(body, dict):
            raise RuntimeError("runtime response is not an object")
        if body.get("error"):
            raise RuntimeError(f"extension error: {body['error']}")
        output = body.get("output")
        if not isinstance(output, str):
            raise RuntimeError("runtime response has no output")
        return output


def check_runtime_health(
    base_url: str | None = None,
    timeout: float = 5.0,
    transport: httpx.BaseTransport | None = None,
) -> bool:
    """Return True if the runtime answers ``/health`` with 200."""
    url = (base_url or get_runtime_url()).rstrip("/")
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            resp = client.get(f"{url}/health")
    except httpx.HTTPError as e:
        logger.warning("Extension runtime health check failed: %s", e)
        return False
    return resp.status_code == 200
