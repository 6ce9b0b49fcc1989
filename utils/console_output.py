# ABOUTME: Rich-backed console status output and logging setup for the forum archive API
# ABOUTME: Shared print_* helpers used by the server entry point and database layer

import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console(stderr=True)


def print_info(msg: str, indent: int = 0):
    """Print info message"""
    console.print(f"{'  ' * indent}[cyan][INFO][/cyan] {msg}", highlight=False)


def print_success(msg: str, indent: int = 0):
    """Print success message"""
    console.print(f"{'  ' * indent}[green][SUCCESS][/green] {msg}", highlight=False)


def print_warning(msg: str, indent: int = 0):
    """Print warning message"""
    console.print(f"{'  ' * indent}[yellow][WARNING][/yellow] {msg}", highlight=False)


def print_error(msg: str, indent: int = 0):
    """Print error message"""
    console.print(f"{'  ' * indent}[bold red][ERROR][/bold red] {msg}", highlight=False)


def print_section(title: str):
    """Print a section rule with a title."""
    console.rule(f"[bold]{title}")


def configure_logging(level: str = "INFO") -> None:
    """
    Route stdlib logging through rich.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
    """
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        print_warning(f"Unknown log level '{level}', using INFO")
        numeric_level = logging.INFO

    logging.basicConfig(
        level=numeric_level,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
