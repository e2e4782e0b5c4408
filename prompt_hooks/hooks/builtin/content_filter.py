"""Content filter extension.

Rejects input that is too long or mentions a prohibited word, and masks
prohibited words in both the prompt and the model's response.

Config keys (all optional):
    prohibited_words: word or list of words to reject and mask (case-insensitive)
    max_length: maximum input length in characters
    replacement: text substituted for each prohibited word
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping

from .. import ExecutionRequest, ValidationResult

logger = logging.getLogger("prompt-hooks.extensions")

DEFAULT_PROHIBITED_WORDS = ("spam", "hack", "exploit")
DEFAULT_MAX_LENGTH = 10000
DEFAULT_REPLACEMENT = "[FILTERED]"


@dataclass(frozen=True)
class FilterSettings:
    prohibited_words: tuple[str, ...] = DEFAULT_PROHIBITED_WORDS
    max_length: int = DEFAULT_MAX_LENGTH
    replacement: str = DEFAULT_REPLACEMENT

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> FilterSettings:
        """Build settings from extension config. Raises ValueError if malformed."""
        words = config.get("prohibited_words", DEFAULT_PROHIBITED_WORDS)
        if isinstance(words, str):
            words = [words]
        if not isinstance(words, (list, tuple)) or not all(isinstance(w, str) for w in words):
            raise ValueError("prohibited_words must be a word or a list of words")

        max_length = config.get("max_length", DEFAULT_MAX_LENGTH)
        if isinstance(max_length, bool) or not isinstance(max_length, int) or max_length <= 0:
            raise ValueError(f"max_length must be a positive integer, got {max_length!r}")

        replacement = config.get("replacement", DEFAULT_REPLACEMENT)
        if not isinstance(replacement, str):
            raise ValueError(f"replacement must be text, got {replacement!r}")

        return cls(
            prohibited_words=tuple(w for w in words if w),
            max_length=max_length,
            replacement=replacement,
        )


def configure(config: Mapping[str, Any]) -> None:
    """Reject a malformed config when the extension is loaded."""
    FilterSettings.from_config(config)


def _mask(text: str, settings: FilterSettings) -> str:
    for word in settings.prohibited_words:
        text = re.sub(re.escape(word), settings.replacement, text, flags=re.IGNORECASE)
    return text


def validate(request: ExecutionRequest) -> ValidationResult:
    """Check length and prohibited words."""
    settings = FilterSettings.from_config(request.config)
    text = request.input
    errors = []

    if len(text) > settings.max_length:
        errors.append(f"Input too long: {len(text)} chars (max: {settings.max_length})")

    lowered = text.lower()
    for word in settings.prohibited_words:
        if word.lower() in lowered:
            errors.append(f"Prohibited word detected: {word}")

    return ValidationResult(tuple(errors))


def preGenerate(request: ExecutionRequest) -> str:
    """Mask prohibited words and collapse whitespace before generation."""
    logger.debug("Filtering content before generation")
    settings = FilterSettings.from_config(request.config)
    sanitized = _mask(request.input, settings)
    return re.sub(r"\s+", " ", sanitized).strip()


def postGenerate(request: ExecutionRequest) -> str:
    """Mask prohibited words in the model response."""
    logger.debug("Filtering LLM response")
    return _mask(request.input, FilterSettings.from_config(request.config))
