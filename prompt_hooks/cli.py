#!/usr/bin/env python3
"""
prompt-hooks - run extension hooks around LLM calls.

Inspect configured extensions and push text through the pipeline.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

EXIT_REJECTED = 1
EXIT_HOOK_FAILED = 2
EXIT_GENERATION_FAILED = 3


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="prompt-hooks",
        description="Run extension hooks (validate, preGenerate, postGenerate) around LLM calls",
    )
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug output")
    parser.add_argument("--config", "-c", help="Config file (default: ~/.config/prompt-hooks/extensions.yaml)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init
    init_p = subparsers.add_parser("init", help="Write a starter config file")
    init_p.add_argument("--force", "-f", action="store_true", help="Overwrite existing file")

    # extensions subcommands
    ext_p = subparsers.add_parser("extensions", help="Extension management")
    ext_sub = ext_p.add_subparsers(dest="extensions_command")
    ext_sub.add_parser("list", help="List loaded extensions and load errors")

    # validate / preview / run
    for name, help_text in (
        ("validate", "Run validate hooks only"),
        ("preview", "Validate and pre-process; print the prompt"),
        ("run", "Run the full pipeline through the LiteLLM proxy"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("text", help="Input text ('-' reads stdin)")
        p.add_argument("--project", "-p", default="", help="Project id passed to hooks")
        if name == "run":
            p.add_argument("--model", "-m", help="Model name (default: settings.model)")

    # runtime subcommands
    runtime_p = subparsers.add_parser("runtime", help="Remote extension runtime")
    runtime_sub = runtime_p.add_subparsers(dest="runtime_command")
    health_p = runtime_sub.add_parser("health", help="Health check")
    health_p.add_argument("url", nargs="?", help="Runtime URL (default: $EXTENSION_SERVER_URL)")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    # Dispatch
    if args.command == "init":
        return cmd_init(args)
    elif args.command == "extensions":
        return cmd_extensions(args)
    elif args.command == "validate":
        return cmd_validate(args)
    elif args.command == "preview":
        return cmd_preview(args)
    elif args.command == "run":
        return cmd_run(args)
    elif args.command == "runtime":
        return cmd_runtime(args)
    else:
        parser.print_help()
        return 1


def _config_path(args: argparse.Namespace) -> Path:
    from . import config

    return Path(args.config) if args.config else config.get_config_file()


def _load(args: argparse.Namespace):
    """Load settings and extensions, printing load errors as warnings.

    Returns (settings, registry), or None after printing the problem.
    """
    from . import config
    from .hooks import loader

    path = _config_path(args)
    try:
        settings = config.load_settings(path)
        registry = loader.reload_registry(path)
    except config.ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        if not path.exists():
            print("Run 'prompt-hooks init' to create one", file=sys.stderr)
        return None

    for error in registry.errors:
        print(f"Warning: {error}", file=sys.stderr)
    return settings, registry


def _read_text(args: argparse.Namespace) -> str:
    return sys.stdin.read() if args.text == "-" else args.text


def _print_rejection(errors) -> None:
    print("Rejected:", file=sys.stderr)
    for error in errors:
        print(f"  - {error}", file=sys.stderr)


def cmd_init(args: argparse.Namespace) -> int:
    """Handle init command."""
    from . import config

    path = _config_path(args)
    if path.exists() and not args.force:
        print(f"Config already exists: {path}")
        print("Use 'prompt-hooks init --force' to overwrite")
        return 0

    config.ensure_config_template(force=True, config_file=path)
    return 0


def cmd_extensions(args: argparse.Namespace) -> int:
    """Handle extensions commands."""
    if args.extensions_command != "list":
        print("Usage: prompt-hooks extensions {list}")
        return 1

    loaded = _load(args)
    if loaded is None:
        return 1
    _, registry = loaded

    if registry.extensions:
        print("Extensions (in run order):")
        for ext in registry:
            hooks = ", ".join(ext.capabilities.names()) or "(no hooks)"
            print(f"  {ext.index}. {ext.name}: {hooks}")
            print(f"     source: {ext.source}")
    else:
        print("No extensions loaded")

    if registry.errors:
        print()
        print("Failed to load:")
        for error in registry.errors:
            print(f"  {error.source}: {error.reason}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Handle validate command."""
    from .errors import HookExecutionError
    from .hooks import ExecutionRequest

    loaded = _load(args)
    if loaded is None:
        return 1
    settings, registry = loaded

    request = ExecutionRequest(input=_read_text(args), project_id=args.project)
    invoker = settings.make_invoker()
    try:
        verdict = asyncio.run(invoker.run_validate(registry.extensions, request))
    except HookExecutionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_HOOK_FAILED

    if not verdict.valid:
        _print_rejection(verdict.errors)
        return EXIT_REJECTED
    print("Valid")
    return 0


def cmd_preview(args: argparse.Namespace) -> int:
    """Handle preview command - show the prompt the model would receive."""
    from .errors import HookExecutionError
    from .pipeline import RequestPipeline

    loaded = _load(args)
    if loaded is None:
        return 1
    settings, registry = loaded

    async def never_called(prompt, context):
        raise AssertionError("preview must not call the model")

    pipeline = RequestPipeline(registry.extensions, never_called, invoker=settings.make_invoker())
    try:
        result = asyncio.run(pipeline.preview(args.project, _read_text(args)))
    except HookExecutionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_HOOK_FAILED

    if result.rejected:
        _print_rejection(result.errors)
        return EXIT_REJECTED
    print(result.prompt)
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Handle run command - full pipeline through the LiteLLM proxy."""
    from .errors import GenerationError, HookExecutionError
    from .llm import LiteLLMGenerator
    from .pipeline import RequestPipeline

    loaded = _load(args)
    if loaded is None:
        return 1
    settings, registry = loaded

    model = args.model or settings.model
    if not model:
        print("Error: No model given (use --model or settings.model)", file=sys.stderr)
        return 1

    generator = LiteLLMGenerator(model, base_url=settings.proxy_url)
    pipeline = RequestPipeline(registry.extensions, generator, invoker=settings.make_invoker())
    try:
        result = asyncio.run(pipeline.run(args.project, _read_text(args)))
    except HookExecutionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_HOOK_FAILED
    except GenerationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_GENERATION_FAILED
    except KeyboardInterrupt:
        return 130

    if result.rejected:
        _print_rejection(result.errors)
        return EXIT_REJECTED
    print(result.output)
    return 0


def cmd_runtime(args: argparse.Namespace) -> int:
    """Handle runtime commands."""
    from .hooks.remote import check_runtime_health

    if args.runtime_command == "health":
        if check_runtime_health(args.url):
            print("Healthy")
            return 0
        else:
            print("Unhealthy")
            return 1

    else:
        print("Usage: prompt-hooks runtime {health}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
