import logging
from typing import Any, List, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pixelclient.domain.interfaces.user_interface import UserInterface
from pixelclient.domain.models.common import COUNTER_LABELS, CounterName
from pixelclient.domain.models.history import HistoryItem
from pixelclient.domain.models.usage import UsageSnapshot

logger = logging.getLogger(__name__)


def _format_size(size: Any) -> str:
    try:
        size = float(size)
    except (TypeError, ValueError):
        return "-"
    if size <= 0:
        return "-"
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays output text, optionally inside a titled panel.

        Args:
            output: The text to display.
            **kwargs: title (str) wraps the output in a panel.
        """
        title = kwargs.get("title")
        if title:
            self.console.print(Panel(
                Text(str(output)),
                title=f"[bold white]{title}[/bold white]",
                title_align="left",
                border_style="cyan",
                box=ROUNDED,
                padding=(0, 1),
            ))
        else:
            self.console.print(str(output))

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_usage(self, snapshot: UsageSnapshot, counters: List[str]) -> None:
        """Renders one row per counter with its clamped usage and limit state.

        Args:
            snapshot: The usage snapshot to render.
            counters: Counter names, in display order.
        """
        table = Table(show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Counter", style="bold")
        table.add_column("Usage", justify="right")
        table.add_column("Status")

        for counter in counters:
            label = COUNTER_LABELS.get(CounterName(counter), counter)
            status = "[bold red]limit reached[/bold red]" if snapshot.is_at_limit(counter) else "[green]ok[/green]"
            table.add_row(label.capitalize(), snapshot.display_usage(counter), status)

        reset = snapshot.next_reset.isoformat() if snapshot.next_reset else "unknown"
        self.console.print("")
        self.console.print(Panel(
            Text(f"Plan: {snapshot.tier}  ·  Next reset: {reset}", justify="center"),
            border_style="cyan",
            box=SIMPLE,
        ))
        self.console.print(table)

    def display_history(self, items: List[Any]) -> None:
        """Displays history items in a table, newest first."""
        logger.debug(f"Displaying history with {len(items)} item(s)")
        if not items:
            self.display_info("No screenshots yet.")
            return

        table = Table(show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Created", style="dim")
        table.add_column("Format")
        table.add_column("Size", justify="right")
        table.add_column("Status")
        table.add_column("URL", style="white", overflow="fold")

        for i, item in enumerate(items, 1):
            if isinstance(item, HistoryItem):
                created = item.created_at_dt.strftime("%Y-%m-%d %H:%M:%S")
                status_style = "green" if item.status == "completed" else "yellow"
                table.add_row(
                    str(i),
                    created,
                    (item.format or "").upper(),
                    _format_size(item.file_size),
                    f"[{status_style}]{item.status}[/{status_style}]",
                    item.url or "-",
                )
            else:
                table.add_row(str(i), "-", "-", "-", "-", str(item))

        self.console.print("")
        self.console.print(Panel(
            Text("Screenshot History", justify="center"),
            border_style="cyan",
            box=SIMPLE,
        ))
        self.console.print(table)
