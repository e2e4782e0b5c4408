"""Load extensions from sources and YAML configuration."""

from __future__ import annotations

import asyncio
import importlib
import importlib.util
import inspect
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Iterable, Iterator, Mapping

from ..config import ConfigError, read_config
from ..errors import ExtensionLoadError
from . import Capabilities, HookFn, HookKind, RegisteredExtension
from .builtin import BUILTIN_EXTENSIONS
from .remote import RemoteExtension

logger = logging.getLogger("prompt-hooks.hooks")

_SOURCE_KINDS = ("module", "path", "builtin", "url", "target")


@dataclass
class ExtensionSource:
    """Where an extension comes from and how it is configured.

    Exactly one of ``module``, ``path``, ``builtin``, ``url`` or ``target``
    is set. ``target`` is an already-imported module or object, for hosts
    that assemble extensions in code. ``hooks`` lists the hooks a remote
    (``url``) extension implements.
    """

    name: str
    module: str | None = None
    path: str | None = None
    builtin: str | None = None
    url: str | None = None
    target: Any = None
    config: dict[str, Any] = field(default_factory=dict)
    hooks: list[str] = field(default_factory=list)
    enabled: bool = True

    @property
    def identifier(self) -> str:
        for kind in _SOURCE_KINDS:
            value = getattr(self, kind)
            if value is not None:
                if kind == "target":
                    value = getattr(value, "__name__", type(value).__name__)
                return f"{self.name} ({kind}={value})"
        return self.name

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExtensionSource:
        """Build a source from a config entry. Raises ValueError if malformed."""
        if not isinstance(data, Mapping):
            raise ValueError(f"extension entry must be a mapping, got {type(data).__name__}")

        name = data.get("name")
        if not name or not isinstance(name, str):
            raise ValueError("extension entry needs a 'name'")

        kinds = [k for k in _SOURCE_KINDS if k != "target" and data.get(k)]
        if len(kinds) != 1:
            raise ValueError(
                f"extension '{name}' must set exactly one of module, path, builtin, url"
            )

        config = data.get("config") or {}
        if not isinstance(config, Mapping):
            raise ValueError(f"config for extension '{name}' must be a mapping")

        hooks = data.get("hooks") or []
        if not isinstance(hooks, list):
            raise ValueError(f"hooks for extension '{name}' must be a list")

        enabled = data.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ValueError(f"enabled for extension '{name}' must be true or false")

        return cls(
            name=name,
            config=dict(config),
            hooks=[str(h) for h in hooks],
            enabled=enabled,
            **{kinds[0]: str(data[kinds[0]])},
        )


@dataclass(frozen=True)
class ExtensionRegistry:
    """Loaded extensions in load order, plus the sources that failed."""

    extensions: tuple[RegisteredExtension, ...] = ()
    errors: tuple[ExtensionLoadError, ...] = ()

    def __iter__(self) -> Iterator[RegisteredExtension]:
        return iter(self.extensions)

    def __len__(self) -> int:
        return len(self.extensions)

    def names(self) -> list[str]:
        return [ext.name for ext in self.extensions]

    def get(self, name: str) -> RegisteredExtension | None:
        for ext in self.extensions:
            if ext.name == name:
                return ext
        return None


def load_extensions(
    sources: Iterable[ExtensionSource],
    errors: Iterable[ExtensionLoadError] = (),
) -> ExtensionRegistry:
    """Resolve sources into an ordered registry.

    A source that cannot be resolved is left out and reported in
    ``registry.errors``; the others still load. The same sources in the
    same order always give the same registry.
    """
    loaded: list[RegisteredExtension] = []
    failed = list(errors)

    for source in sources:
        if not source.enabled:
            logger.debug("Skipping disabled extension: %s", source.name)
            continue

        try:
            if any(ext.name == source.name for ext in loaded):
                raise ExtensionLoadError(
                    source.identifier, f"duplicate extension name '{source.name}'"
                )
            ext = _resolve(source, index=len(loaded))
        except ExtensionLoadError as e:
            logger.warning("%s", e)
            failed.append(e)
            continue

        if not ext.capabilities.names():
            logger.debug("Extension %s implements no hooks", ext.name)
        logger.debug(
            "Registered extension: %s [%s]", ext.name, ", ".join(ext.capabilities.names())
        )
        loaded.append(ext)

    return ExtensionRegistry(tuple(loaded), tuple(failed))


def _resolve(source: ExtensionSource, index: int) -> RegisteredExtension:
    try:
        if source.url is not None:
            hooks = _remote_hooks(source)
        else:
            target = _resolve_target(source)
            hooks = _collect_hooks(target, source.identifier)
            _check_config(target, source)
    except ExtensionLoadError:
        raise
    except Exception as e:
        raise ExtensionLoadError(source.identifier, f"{type(e).__name__}: {e}") from e

    return RegisteredExtension(
        name=source.name,
        index=index,
        source=source.identifier,
        hooks=hooks,
        config=source.config,
        capabilities=Capabilities.from_hooks(hooks),
    )


def _resolve_target(source: ExtensionSource) -> Any:
    if source.target is not None:
        return source.target

    if source.builtin is not None:
        module_name = BUILTIN_EXTENSIONS.get(source.builtin)
        if module_name is None:
            raise ExtensionLoadError(source.identifier, f"unknown builtin '{source.builtin}'")
        return importlib.import_module(module_name)

    if source.module is not None:
        return importlib.import_module(source.module)

    if source.path is not None:
        return _load_module_from_path(source.name, Path(os.path.expanduser(source.path)))

    raise ExtensionLoadError(
        source.identifier, "no module, path, builtin, url or target given"
    )


def _load_module_from_path(name: str, path: Path) -> ModuleType:
    """Import a standalone ``.py`` file as a module."""
    if not path.is_file():
        raise ExtensionLoadError(f"{name} (path={path})", "extension file not found")

    module_name = "prompt_hooks_ext_" + re.sub(r"\W", "_", name)
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ExtensionLoadError(f"{name} (path={path})", "not an importable Python file")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


def _collect_hooks(target: Any, identifier: str) -> dict[HookKind, HookFn]:
    """Find the hooks a target exposes, by exact attribute name."""
    hooks: dict[HookKind, HookFn] = {}
    for kind in HookKind:
        fn = getattr(target, kind.value, None)
        if fn is None:
            continue
        if not callable(fn):
            raise ExtensionLoadError(identifier, f"{kind.value} is not callable")
        hooks[kind] = _as_async(fn)
    return hooks


def _check_config(target: Any, source: ExtensionSource) -> None:
    """Call the target's optional ``configure(config)`` once, at load time.

    ``configure`` only checks the config; it must not keep state, since
    one module can back several differently configured extensions. Any
    exception it raises rejects the source.
    """
    configure = getattr(target, "configure", None)
    if configure is None:
        return
    if not callable(configure):
        raise ExtensionLoadError(source.identifier, "configure is not callable")
    configure(dict(source.config))


def _as_async(fn: Callable[..., Any]) -> HookFn:
    """Wrap sync hooks so they run in a worker thread."""
    if inspect.iscoroutinefunction(fn):
        return fn

    async def async_wrapper(request, _fn=fn):
        result = await asyncio.to_thread(_fn, request)
        if inspect.isawaitable(result):
            result = await result
        return result

    return async_wrapper


def _remote_hooks(source: ExtensionSource) -> dict[HookKind, HookFn]:
    if not source.hooks:
        raise ExtensionLoadError(source.identifier, "remote extension declares no hooks")
    if not source.url.startswith(("http://", "https://")):
        raise ExtensionLoadError(source.identifier, "url must be http:// or https://")

    kinds = [HookKind.parse(h) for h in source.hooks]
    return RemoteExtension(source.name, source.url, kinds).bound_hooks()


def discover_sources(
    directory: Path,
    configs: Mapping[str, Mapping[str, Any]] | None = None,
) -> list[ExtensionSource]:
    """List extensions in a directory, sorted by name.

    Recognizes ``<name>.py`` files and ``<name>/extension.py`` packages.
    Names starting with ``_`` or ``.`` are ignored.
    """
    configs = configs or {}
    sources = []
    for entry in sorted(directory.iterdir(), key=lambda p: p.name):
        if entry.name.startswith(("_", ".")):
            continue
        if entry.is_file() and entry.suffix == ".py":
            name, path = entry.stem, entry
        elif entry.is_dir() and (entry / "extension.py").is_file():
            name, path = entry.name, entry / "extension.py"
        else:
            continue
        sources.append(
            ExtensionSource(name=name, path=str(path), config=dict(configs.get(name, {})))
        )
    return sources


def load_from_config(config_path: Path) -> ExtensionRegistry:
    """Load the extensions listed in a YAML config file.

    Malformed entries are reported as load errors alongside sources that
    fail to import.
    """
    config = read_config(config_path)

    # Add custom python paths
    for p in config.get("python_path") or []:
        expanded = os.path.expanduser(os.path.expandvars(str(p)))
        if expanded not in sys.path:
            sys.path.insert(0, expanded)

    entries = config.get("extensions") or []
    if not isinstance(entries, list):
        raise ConfigError("'extensions' must be a list")

    sources: list[ExtensionSource] = []
    errors: list[ExtensionLoadError] = []
    for position, entry in enumerate(entries):
        try:
            sources.append(ExtensionSource.from_dict(entry))
        except ValueError as e:
            name = entry.get("name") if isinstance(entry, Mapping) else None
            error = ExtensionLoadError(name or f"entry #{position}", str(e))
            logger.warning("%s", error)
            errors.append(error)

    extensions_dir = config.get("extensions_dir")
    if extensions_dir:
        directory = Path(os.path.expanduser(os.path.expandvars(str(extensions_dir))))
        if not directory.is_dir():
            raise ConfigError(f"extensions_dir is not a directory: {directory}")
        sources.extend(discover_sources(directory))

    return load_extensions(sources, errors=errors)


# Module-level registry, replaced wholesale on reload
_registry = ExtensionRegistry()


def get_registry() -> ExtensionRegistry:
    """Return the process-wide registry."""
    return _registry


def reload_registry(config_path: Path) -> ExtensionRegistry:
    """Load a config file and make it the process-wide registry.

    The previous registry stays in place if the config cannot be read.
    """
    global _registry
    _registry = load_from_config(config_path)
    return _registry


def reset_registry() -> ExtensionRegistry:
    """Reset the process-wide registry (for testing). Returns the new one."""
    global _registry
    _registry = ExtensionRegistry()
    return _registry
