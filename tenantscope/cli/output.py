"""
Tenantscope CLI - Rich Output Helpers

Functions:
    print_status    - Print checks with pass/fail indicators
    print_json      - Print formatted JSON
    print_error     - Print error message
    print_success   - Print success message
    print_key_value - Print aligned key/value pairs
"""

from __future__ import annotations

import json
from typing import Any, Optional

from rich.console import Console
from rich.json import JSON

# Create console instances
console = Console()
err_console = Console(stderr=True)

STATUS_PASS = "[green]PASS[/green]"
STATUS_FAIL = "[red]FAIL[/red]"


def print_status(
    checks: list[tuple[str, bool, str]],
    title: Optional[str] = None,
) -> None:
    """
    Print status checks with pass/fail indicators.

    Args:
        checks: List of (name, passed, message) tuples
        title: Optional title for the status list
    """
    if title:
        console.print(f"[bold]{title}[/bold]")

    for name, passed, message in checks:
        icon = STATUS_PASS if passed else STATUS_FAIL
        color = "green" if passed else "red"
        console.print(f"  {icon} [cyan]{name}[/cyan]: ", end="")
        console.print(message, markup=False, highlight=False, style=color)


def print_json(data: dict | list, indent: int = 2, highlight: bool = True) -> None:
    """
    Print formatted JSON.

    With ``highlight=False`` the output is plain text suitable for piping.
    """
    json_str = json.dumps(data, indent=indent, default=str)
    if highlight:
        console.print(JSON(json_str))
    else:
        console.print(json_str, markup=False, highlight=False, soft_wrap=True)


def print_error(message: str, details: Optional[str] = None) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {message}")
    if details:
        err_console.print(details, markup=False, style="dim")


def print_success(message: str) -> None:
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_key_value(
    items: list[tuple[str, Any]],
    title: Optional[str] = None,
    key_style: str = "cyan",
) -> None:
    """
    Print key-value pairs in a formatted list.

    Args:
        items: List of (key, value) tuples
        title: Optional title
        key_style: Style for keys
    """
    if title:
        console.print(f"[bold]{title}[/bold]")

    max_key_len = max(len(str(k)) for k, _ in items) if items else 0

    for key, value in items:
        padded_key = str(key).ljust(max_key_len)
        console.print(f"  [{key_style}]{padded_key}[/{key_style}]: ", end="")
        console.print(str(value), markup=False, highlight=False)
