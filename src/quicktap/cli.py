"""CLI entry point for quicktap.

Loads the given test files, which declare their tests with the
module-level ``quicktap.describe``/``it``/``test`` API, runs them and
writes TAP to stdout. Logs go to stderr so the TAP stream stays clean.

Usage::

    quicktap run tests/test_math.py tests/test_io.py --timeout 5
    quicktap run suite.py --report-errors --verbose
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from quicktap.harness import Harness, set_default_harness
from quicktap.models import HarnessConfig
from quicktap.reporters import ConsoleReporter

err_console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
    )


def _load_test_file(path: Path) -> None:
    module_name = f"quicktap_suite_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise click.ClickException(f"Cannot import test file: {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)


@click.group()
@click.version_option(package_name="quicktap")
def main() -> None:
    """quicktap: nested tests reported as TAP version 14."""


@main.command()
@click.argument(
    "files",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Default per-test timeout in seconds.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum number of sibling tests running at once.",
)
@click.option(
    "--report-errors/--no-report-errors",
    default=False,
    help="Emit a YAML diagnostic block after failing tests.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def run(
    files: tuple[Path, ...],
    timeout: float | None,
    concurrency: int | None,
    report_errors: bool,
    verbose: bool,
) -> None:
    """Run the tests declared in FILES."""
    _setup_logging(verbose)

    config = HarnessConfig(
        default_timeout=timeout,
        concurrency=concurrency,
        report_errors=report_errors,
    )
    harness = Harness(config=config, reporter=ConsoleReporter())
    previous = set_default_harness(harness)
    try:
        for path in files:
            try:
                _load_test_file(path)
            except click.ClickException:
                raise
            except Exception as exc:
                err_console.print(f"[red]Failed to load {path}:[/red] {escape(str(exc))}")
                raise SystemExit(1) from exc

        summary = asyncio.run(harness.run())
    finally:
        set_default_harness(previous)

    if not summary.ok:
        for failure in summary.failures:
            err_console.print(f"[red]failed:[/red] {escape(failure)}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
