"""
Tenantscope - Command Line Interface

Diagnostics for tenant scoping. Built with Typer for the command-line
experience and Rich for output.

Usage:
    $ tenantscope --help
    $ tenantscope summary myapp.models
    $ tenantscope summary myapp.models --json
    $ tenantscope check myapp.models myapp.billing.models
    $ tenantscope config

Models register themselves when their module is imported, so every command
that reports on models takes the modules that declare them.
"""

from __future__ import annotations

import importlib
from typing import List, Optional

import typer

from tenantscope import __version__
from tenantscope.cli.output import (
    console,
    print_error,
    print_json,
    print_key_value,
    print_status,
    print_success,
)
from tenantscope.config.settings import settings
from tenantscope.logging_setup import configure_logging
from tenantscope.multitenancy.errors import TenantScopingError
from tenantscope.multitenancy.registry import get_registry

# Create main application
app = typer.Typer(
    name="tenantscope",
    help="Tenantscope - tenant scoping diagnostics",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Tenantscope version {__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    if value:
        configure_logging("DEBUG")


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        help="Enable debug logging.",
    ),
) -> None:
    """
    Tenantscope - row-level multi-tenancy for SQLAlchemy

    Use --help on any subcommand for detailed information.
    """


def _import_modules(modules: list[str]) -> list[tuple[str, bool, str]]:
    """Import each module, returning (module, ok, message) per module."""
    results = []
    for module in modules:
        try:
            importlib.import_module(module)
        except TenantScopingError as e:
            results.append((module, False, str(e)))
        except ImportError as e:
            results.append((module, False, f"cannot import: {e}"))
        else:
            results.append((module, True, "ok"))
    return results


@app.command()
def summary(
    modules: Optional[List[str]] = typer.Argument(
        None,
        help="Modules that declare models.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print the summary as JSON.",
    ),
) -> None:
    """
    Show which models are tenant-scoped, system-scoped or excluded.
    """
    failures = [r for r in _import_modules(modules or []) if not r[1]]
    for module, _, message in failures:
        print_error(f"Failed to load {module}", details=message)
    if failures:
        raise typer.Exit(code=1)

    registry = get_registry()
    if json_output:
        print_json(registry.scoping_summary(), highlight=False)
    else:
        registry.print_summary(console)


@app.command()
def check(
    modules: List[str] = typer.Argument(
        ...,
        help="Modules that declare models.",
    ),
) -> None:
    """
    Import modules and report tenant scoping errors.

    Exits with status 1 if any module fails to load.
    """
    results = _import_modules(modules)
    print_status(results, title="Tenant scoping check")
    if not all(ok for _, ok, _ in results):
        raise typer.Exit(code=1)
    print_success(f"{len(get_registry().tenant_scoped_models())} tenant-scoped models OK")


@app.command("config")
def show_config() -> None:
    """
    Print the effective tenancy settings.
    """
    print_key_value(
        [
            ("environment", settings.TENANT_ENVIRONMENT),
            ("tenant column", settings.TENANT_COLUMN),
            ("production", settings.is_production),
            ("bypasses enabled", settings.bypass_enabled),
            ("bypasses disabled flag", settings.TENANT_BYPASSES_DISABLED),
            ("bypass environments", ", ".join(settings.TENANT_BYPASS_ENABLED_ENVIRONMENTS)),
            ("excluded models", ", ".join(settings.TENANT_EXCLUDED_MODELS) or "-"),
            ("audit log level", settings.TENANT_BYPASS_AUDIT_LOG_LEVEL),
        ],
        title="Tenant scoping configuration",
    )


__all__ = ["app", "cli", "__version__"]


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
