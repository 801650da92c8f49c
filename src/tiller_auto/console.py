"""Rich console utilities for styled terminal output.

This module provides a consistent, visually appealing interface for all
terminal output using the Rich library, including the transient wait
indicator shown while polling the cluster.
"""

from collections.abc import Generator
from contextlib import contextmanager

from icecream import ic
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
)
from rich.table import Table
from rich.theme import Theme

# Custom theme with consistent colors
_THEME = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "highlight": "cyan bold",
        "muted": "dim",
    }
)

# Shared console instance
console = Console(theme=_THEME)


def configure_debug(enabled: bool) -> None:
    """Enable or disable icecream debug traces.

    Args:
        enabled: Whether debug traces should be printed.

    """
    if enabled:
        ic.enable()
    else:
        ic.disable()


def info(message: str) -> None:
    """Print an informational message.

    Args:
        message: The message to display.

    """
    console.print(f"[info]ℹ[/info] {message}")


def success(message: str) -> None:
    """Print a success message.

    Args:
        message: The message to display.

    """
    console.print(f"[success]✓[/success] {message}")


def warning(message: str) -> None:
    """Print a warning message.

    Args:
        message: The message to display.

    """
    console.print(f"[warning]⚠[/warning] {message}")


def error(message: str) -> None:
    """Print an error message.

    Args:
        message: The message to display.

    """
    console.print(f"[error]✗[/error] {message}")


def action(message: str) -> None:
    """Print an action/progress message.

    Args:
        message: The message to display.

    """
    console.print(f"[info]→[/info] {message}")


def step(message: str) -> None:
    """Print a sub-step message.

    Args:
        message: The message to display.

    """
    console.print(f"[muted]•[/muted] {message}")


def highlight(text: str) -> str:
    """Return text wrapped in highlight markup.

    Args:
        text: The text to highlight.

    Returns:
        Text wrapped in Rich markup for highlighting.

    """
    return f"[highlight]{text}[/highlight]"


class WaitIndicator:
    """A transient spinner line rendered from a background refresh thread.

    The line is only shown between ``start()`` and ``stop()``; stopping
    clears it from the terminal. Both calls are idempotent.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        self._status = console.status(f"[info]{message}[/info]", spinner="dots")
        self._running = False

    @property
    def running(self) -> bool:
        """Whether the indicator is currently shown."""
        return self._running

    def start(self) -> None:
        """Start rendering the spinner."""
        if not self._running:
            self._status.start()
            self._running = True

    def stop(self) -> None:
        """Stop rendering and clear the spinner line."""
        if self._running:
            self._status.stop()
            self._running = False


@contextmanager
def spinner(message: str) -> Generator[WaitIndicator, None, None]:
    """Display a spinner while performing an operation.

    The spinner is cleared when the block exits, whether it succeeded
    or raised.

    Args:
        message: The status message to display.

    Yields:
        The running WaitIndicator.

    """
    indicator = WaitIndicator(message)
    indicator.start()
    try:
        yield indicator
    finally:
        indicator.stop()


def create_task_progress() -> Progress:
    """Create a progress bar configured for task processing.

    Returns:
        A configured Progress instance for batch operations.

    """
    return Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("[muted]{task.completed}/{task.total}[/muted]"),
        console=console,
        transient=True,
    )


def summary_panel(title: str, items: dict[str, str]) -> None:
    """Print a summary panel with key-value pairs.

    Args:
        title: Title for the panel.
        items: Dictionary of label -> value pairs to display.

    """
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column(style="cyan")

    for label, value in items.items():
        table.add_row(f"{label}:", value)

    console.print(Panel(table, title=f"[bold]{title}[/bold]", border_style="green"))
