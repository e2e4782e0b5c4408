"""prompt-hooks: extension hooks around LLM calls."""

__version__ = "0.1.0"
