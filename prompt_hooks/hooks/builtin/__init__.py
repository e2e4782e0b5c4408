"""Built-in extensions shipped with prompt-hooks.

Each module here is an ordinary extension: it exposes some of the
``validate``, ``preGenerate`` and ``postGenerate`` hooks at top level.
"""

from __future__ import annotations

# Name used in config (``builtin: content-filter``) -> importable module
BUILTIN_EXTENSIONS = {
    "content-filter": "prompt_hooks.hooks.builtin.content_filter",
    "uppercase": "prompt_hooks.hooks.builtin.uppercase",
}
