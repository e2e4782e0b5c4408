"""Tests for the extension registry and config loading."""

from __future__ import annotations

import inspect
import sys
from types import SimpleNamespace

import pytest
import yaml

from prompt_hooks.config import ConfigError
from prompt_hooks.errors import ExtensionLoadError
from prompt_hooks.hooks import HookKind
from prompt_hooks.hooks.loader import (
    ExtensionSource,
    discover_sources,
    get_registry,
    load_extensions,
    load_from_config,
    reload_registry,
    reset_registry,
)


@pytest.fixture(autouse=True)
def fresh_registry():
    """Reset global registry before each test."""
    reset_registry()


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


# =============================================================================
# load_extensions
# =============================================================================


class TestLoadExtensions:
    def test_builtin_capabilities(self):
        registry = load_extensions([
            ExtensionSource(name="content-filter", builtin="content-filter"),
            ExtensionSource(name="uppercase", builtin="uppercase"),
        ])
        cf, up = registry.extensions
        assert cf.capabilities.names() == ["validate", "preGenerate", "postGenerate"]
        assert up.capabilities.names() == ["preGenerate", "postGenerate"]
        assert (cf.index, up.index) == (0, 1)

    def test_module_source(self):
        registry = load_extensions([
            ExtensionSource(name="up", module="prompt_hooks.hooks.builtin.uppercase"),
        ])
        assert registry.names() == ["up"]
        assert "module=prompt_hooks.hooks.builtin.uppercase" in registry.extensions[0].source

    def test_path_source(self, tmp_path):
        path = _write(
            tmp_path / "shout.py",
            "def preGenerate(request):\n    return request.input + '!'\n",
        )
        registry = load_extensions([ExtensionSource(name="shout", path=str(path))])
        assert registry.extensions[0].capabilities.has_pre_generate

    def test_failed_source_excluded_and_reported(self):
        registry = load_extensions([
            ExtensionSource(name="first", builtin="uppercase"),
            ExtensionSource(name="broken", module="nonexistent.module"),
            ExtensionSource(name="second", builtin="content-filter"),
        ])
        assert registry.names() == ["first", "second"]
        assert [ext.index for ext in registry] == [0, 1]
        assert len(registry.errors) == 1
        error = registry.errors[0]
        assert isinstance(error, ExtensionLoadError)
        assert "broken" in error.source
        assert "ModuleNotFoundError" in error.reason

    def test_syntax_error_is_load_error(self, tmp_path):
        path = _write(tmp_path / "bad.py", "def validate(request:\n")
        registry = load_extensions([ExtensionSource(name="bad", path=str(path))])
        assert len(registry) == 0
        assert "SyntaxError" in registry.errors[0].reason

    def test_missing_file(self, tmp_path):
        registry = load_extensions([ExtensionSource(name="gone", path=str(tmp_path / "gone.py"))])
        assert registry.errors[0].reason == "extension file not found"

    def test_non_callable_hook(self):
        registry = load_extensions([
            ExtensionSource(name="odd", target=SimpleNamespace(validate="not a function")),
        ])
        assert len(registry) == 0
        assert "validate is not callable" in registry.errors[0].reason

    def test_hook_names_are_case_sensitive(self):
        registry = load_extensions([
            ExtensionSource(name="snake", target=SimpleNamespace(pre_generate=lambda r: r.input)),
        ])
        assert registry.extensions[0].capabilities.names() == []

    def test_module_without_hooks_is_inert(self):
        registry = load_extensions([ExtensionSource(name="empty", target=SimpleNamespace())])
        assert registry.names() == ["empty"]
        assert registry.errors == ()

    def test_disabled_skipped_silently(self):
        registry = load_extensions([
            ExtensionSource(name="off", module="nonexistent.module", enabled=False),
        ])
        assert len(registry) == 0
        assert registry.errors == ()

    def test_duplicate_name_rejected(self):
        registry = load_extensions([
            ExtensionSource(name="dup", builtin="uppercase"),
            ExtensionSource(name="dup", builtin="content-filter"),
        ])
        assert registry.names() == ["dup"]
        assert registry.get("dup").capabilities.has_validate is False
        assert "duplicate" in registry.errors[0].reason

    def test_unknown_builtin(self):
        registry = load_extensions([ExtensionSource(name="x", builtin="nope")])
        assert "unknown builtin" in registry.errors[0].reason

    def test_no_source_given(self):
        registry = load_extensions([ExtensionSource(name="nothing")])
        assert len(registry.errors) == 1

    def test_deterministic(self):
        sources = [
            ExtensionSource(name="b", builtin="uppercase"),
            ExtensionSource(name="a", builtin="content-filter"),
        ]
        first = load_extensions(sources)
        second = load_extensions(sources)
        assert first.names() == second.names() == ["b", "a"]
        assert [e.capabilities for e in first] == [e.capabilities for e in second]

    def test_sync_hooks_wrapped_as_async(self):
        registry = load_extensions([ExtensionSource(name="up", builtin="uppercase")])
        hook = registry.extensions[0].hook(HookKind.PRE_GENERATE)
        assert inspect.iscoroutinefunction(hook)

    def test_configure_called_at_load_with_config(self):
        seen = []
        target = SimpleNamespace(configure=seen.append, preGenerate=lambda r: r.input)
        registry = load_extensions([ExtensionSource(name="c", target=target, config={"level": 2})])
        assert registry.names() == ["c"]
        assert seen == [{"level": 2}]

    def test_configure_rejection_is_load_error(self):
        def configure(config):
            raise ValueError("level must be positive")

        registry = load_extensions([
            ExtensionSource(name="c", target=SimpleNamespace(configure=configure)),
        ])
        assert len(registry) == 0
        assert registry.errors[0].reason == "ValueError: level must be positive"

    def test_config_bound_to_extension(self):
        registry = load_extensions([
            ExtensionSource(name="cf", builtin="content-filter", config={"max_length": 5}),
        ])
        assert registry.extensions[0].config["max_length"] == 5


class TestRemoteSources:
    def test_remote_capabilities_from_declared_hooks(self):
        registry = load_extensions([
            ExtensionSource(name="remote", url="http://localhost:3001", hooks=["validate", "pre-generate"]),
        ])
        caps = registry.extensions[0].capabilities
        assert caps.has_validate and caps.has_pre_generate
        assert not caps.has_post_generate

    def test_remote_without_hooks(self):
        registry = load_extensions([ExtensionSource(name="remote", url="http://localhost:3001")])
        assert "declares no hooks" in registry.errors[0].reason

    def test_remote_bad_scheme(self):
        registry = load_extensions([
            ExtensionSource(name="remote", url="ftp://host", hooks=["validate"]),
        ])
        assert "http" in registry.errors[0].reason

    def test_remote_unknown_hook(self):
        registry = load_extensions([
            ExtensionSource(name="remote", url="http://host", hooks=["teardown"]),
        ])
        assert "Unknown hook" in registry.errors[0].reason


# =============================================================================
# ExtensionSource.from_dict & discovery
# =============================================================================


class TestExtensionSourceFromDict:
    def test_builtin_entry(self):
        source = ExtensionSource.from_dict({
            "name": "cf",
            "builtin": "content-filter",
            "config": {"max_length": 10},
            "enabled": False,
        })
        assert source.builtin == "content-filter"
        assert source.config == {"max_length": 10}
        assert source.enabled is False

    @pytest.mark.parametrize(
        "entry",
        [
            "just-a-string",
            {"builtin": "uppercase"},
            {"name": "x"},
            {"name": "x", "builtin": "uppercase", "module": "a.b"},
            {"name": "x", "builtin": "uppercase", "config": ["not", "a", "map"]},
            {"name": "x", "url": "http://h", "hooks": "validate"},
            {"name": "x", "builtin": "uppercase", "enabled": "false"},
            {"name": "x", "builtin": "uppercase", "enabled": 0},
        ],
    )
    def test_malformed(self, entry):
        with pytest.raises(ValueError):
            ExtensionSource.from_dict(entry)


class TestDiscoverSources:
    def test_sorted_by_name(self, tmp_path):
        _write(tmp_path / "b.py", "")
        _write(tmp_path / "a" / "extension.py", "")
        _write(tmp_path / "_private.py", "")
        _write(tmp_path / "notes.txt", "")
        _write(tmp_path / "c" / "readme.md", "")

        sources = discover_sources(tmp_path, configs={"b": {"k": 1}})
        assert [s.name for s in sources] == ["a", "b"]
        assert sources[0].path == str(tmp_path / "a" / "extension.py")
        assert sources[1].config == {"k": 1}


# =============================================================================
# Config files
# =============================================================================


class TestLoadFromConfig:
    def test_loads_in_listed_order(self, tmp_path):
        config = _write(
            tmp_path / "extensions.yaml",
            """\
extensions:
  - name: uppercase
    builtin: uppercase
  - name: disabled
    builtin: content-filter
    enabled: false
  - name: content-filter
    builtin: content-filter
    config:
      max_length: 100
""",
        )
        registry = load_from_config(config)
        assert registry.names() == ["uppercase", "content-filter"]
        assert registry.get("content-filter").config["max_length"] == 100

    def test_bad_entries_reported(self, tmp_path):
        config = _write(
            tmp_path / "extensions.yaml",
            """\
extensions:
  - name: no-source
  - name: bad-module
    module: nonexistent.module
  - name: uppercase
    builtin: uppercase
""",
        )
        registry = load_from_config(config)
        assert registry.names() == ["uppercase"]
        assert [e.source.split(" ")[0] for e in registry.errors] == ["no-source", "bad-module"]

    def test_quoted_enabled_is_malformed(self, tmp_path):
        config = _write(
            tmp_path / "extensions.yaml",
            """\
extensions:
  - name: content-filter
    builtin: content-filter
    enabled: "false"
""",
        )
        registry = load_from_config(config)
        assert len(registry) == 0
        assert "enabled" in registry.errors[0].reason

    def test_python_path(self, tmp_path, monkeypatch):
        monkeypatch.setattr(sys, "path", list(sys.path))
        ext_dir = tmp_path / "ext"
        _write(ext_dir / "my_ext_for_test.py", "def validate(request):\n    return {'valid': True}\n")
        config = _write(
            tmp_path / "extensions.yaml",
            yaml.safe_dump({
                "python_path": [str(ext_dir)],
                "extensions": [{"name": "mine", "module": "my_ext_for_test"}],
            }),
        )
        registry = load_from_config(config)
        assert registry.names() == ["mine"]
        assert str(ext_dir) in sys.path

    def test_extensions_dir_appended(self, tmp_path):
        _write(tmp_path / "exts" / "zeta.py", "def postGenerate(request):\n    return request.input\n")
        config = _write(
            tmp_path / "extensions.yaml",
            yaml.safe_dump({
                "extensions_dir": str(tmp_path / "exts"),
                "extensions": [{"name": "uppercase", "builtin": "uppercase"}],
            }),
        )
        assert load_from_config(config).names() == ["uppercase", "zeta"]

    def test_invalid_yaml_raises(self, tmp_path):
        config = _write(tmp_path / "extensions.yaml", "{{invalid yaml")
        with pytest.raises(ConfigError):
            load_from_config(config)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            load_from_config(tmp_path / "nope.yaml")

    def test_extensions_not_a_list(self, tmp_path):
        config = _write(tmp_path / "extensions.yaml", "extensions: {a: 1}\n")
        with pytest.raises(ConfigError):
            load_from_config(config)


class TestGlobalRegistry:
    def test_reload_and_reset(self, tmp_path):
        config = _write(
            tmp_path / "extensions.yaml",
            "extensions:\n  - name: uppercase\n    builtin: uppercase\n",
        )
        assert len(get_registry()) == 0
        registry = reload_registry(config)
        assert get_registry() is registry
        assert registry.names() == ["uppercase"]
        assert len(reset_registry()) == 0

    def test_failed_reload_keeps_previous(self, tmp_path):
        config = _write(
            tmp_path / "extensions.yaml",
            "extensions:\n  - name: uppercase\n    builtin: uppercase\n",
        )
        registry = reload_registry(config)
        with pytest.raises(ConfigError):
            reload_registry(tmp_path / "missing.yaml")
        assert get_registry() is registry
