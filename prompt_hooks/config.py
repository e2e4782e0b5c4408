"""
Configuration management for prompt-hooks.

Loads pipeline settings and the extension list from
~/.config/prompt-hooks/extensions.yaml (YAML format).
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .errors import PipelineError
from .hooks.chain import DEFAULT_HOOK_TIMEOUT, HookInvoker


class ConfigError(PipelineError):
    """The configuration file is missing or malformed."""


def get_config_dir() -> Path:
    """Get configuration directory.

    Priority order:
    1. $PROMPT_HOOKS_HOME (if set)
    2. $XDG_CONFIG_HOME/prompt-hooks (if set)
    3. ~/.config/prompt-hooks (default)
    """
    home = os.environ.get("PROMPT_HOOKS_HOME")
    if home:
        return Path(home)

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / "prompt-hooks"


def get_config_file() -> Path:
    """Get path to the extensions configuration file."""
    return get_config_dir() / "extensions.yaml"


def read_config(config_path: Path) -> dict[str, Any]:
    """Parse a configuration file into a dict.

    A broken config raises instead of yielding an empty extension list,
    so a host never runs with its filters silently missing.
    """
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to parse config {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config must contain a YAML dictionary, got {type(data).__name__}")
    return data


@dataclass
class PipelineSettings:
    """Settings from the ``settings:`` section of the config file."""

    hook_timeout: float | None = DEFAULT_HOOK_TIMEOUT
    fail_fast: bool = False
    model: str | None = None
    proxy_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineSettings:
        timeout = data.get("hook_timeout", DEFAULT_HOOK_TIMEOUT)
        try:
            timeout = float(timeout) if timeout is not None else None
        except (TypeError, ValueError) as e:
            raise ConfigError(f"hook_timeout must be a number, got {timeout!r}") from e
        if timeout is not None and timeout <= 0:
            raise ConfigError("hook_timeout must be positive")

        return cls(
            hook_timeout=timeout,
            fail_fast=bool(data.get("fail_fast", False)),
            model=data.get("model"),
            proxy_url=data.get("proxy_url"),
        )

    def make_invoker(self) -> HookInvoker:
        return HookInvoker(timeout=self.hook_timeout, fail_fast=self.fail_fast)


def load_settings(config_path: Path | None = None) -> PipelineSettings:
    """Load pipeline settings from the config file."""
    data = read_config(config_path or get_config_file())
    section = data.get("settings") or {}
    if not isinstance(section, dict):
        raise ConfigError("'settings' must be a mapping")
    return PipelineSettings.from_dict(section)


def create_config_template() -> str:
    """Return a starter extensions.yaml with documentation."""
    return f"""# prompt-hooks configuration
# Location: ~/.config/prompt-hooks/extensions.yaml
#
# Extensions run in the order listed here. Order matters: each
# preGenerate/postGenerate hook receives the previous extension's output.

settings:
  # Seconds allowed for each hook call
  hook_timeout: {DEFAULT_HOOK_TIMEOUT}
  # Stop validation at the first rejecting extension
  fail_fast: false
  # Model name passed to the LiteLLM proxy by `prompt-hooks run`
  model: gpt-4o-mini
  # proxy_url: http://127.0.0.1:4444

# Extra directories added to the import path for `module:` sources
python_path: []

# Optional directory of extensions (<name>.py or <name>/extension.py),
# loaded in name order after the list below
# extensions_dir: ~/.config/prompt-hooks/extensions

extensions:
  - name: content-filter
    builtin: content-filter
    config:
      prohibited_words: [spam, hack, exploit]
      max_length: 10000

  - name: uppercase
    builtin: uppercase
    enabled: false

  # Python module exposing validate / preGenerate / postGenerate
  # - name: my-extension
  #   module: my_package.my_extension

  # Extension served by an external runtime
  # - name: remote-example
  #   url: http://localhost:3001
  #   hooks: [validate, pre-generate]
"""


def ensure_config_template(force: bool = False, config_file: Path | None = None) -> Path:
    """Create the config template if it doesn't exist. Returns its path."""
    config_file = config_file or get_config_file()

    if config_file.exists() and not force:
        return config_file

    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(create_config_template(), encoding="utf-8")
    print(f"Created config template: {config_file}", file=sys.stderr)
    return config_file
