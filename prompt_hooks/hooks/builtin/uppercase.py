"""Uppercase extension: shouts the prompt, leaves the response alone."""

from __future__ import annotations

import logging

from .. import ExecutionRequest

logger = logging.getLogger("prompt-hooks.extensions")


def preGenerate(request: ExecutionRequest) -> str:
    logger.debug("Running uppercase transformation on prompt")
    return request.input.upper()


def postGenerate(request: ExecutionRequest) -> str:
    return request.input
