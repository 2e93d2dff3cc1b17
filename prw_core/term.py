"""Colored operator status lines.

Human-facing progress goes to stderr so stdout stays reserved for the status
keyword and JSON payload that calling scripts parse.
"""

from rich.console import Console
from rich.markup import escape

_console = Console(stderr=True, highlight=False)


def _print(style: str, message: str) -> None:
    _console.print(f"[{style}]{escape(message)}[/{style}]")


def info(message: str) -> None:
    _print("green", message)


def status(message: str) -> None:
    _print("blue", message)


def warn(message: str) -> None:
    _print("yellow", f"Warning: {message}")


def error(message: str) -> None:
    _print("red", f"Error: {message}")
