"""Console output for the CLI and the sync engine."""

from typing import Optional

from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Prints status lines with rich styling.

    Errors and warnings go to stderr; everything else to stdout and is
    suppressed in quiet mode.
    """

    def __init__(
        self,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.quiet = quiet
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)

    def print(self, message: str = "") -> None:
        if not self.quiet:
            self.console.print(message, highlight=False)

    def info(self, message: str) -> None:
        if not self.quiet:
            self.console.print(f"[blue][INFO][/blue] {message}", highlight=False)

    def success(self, message: str) -> None:
        if not self.quiet:
            self.console.print(f"[green]{message}[/green]", highlight=False)

    def warning(self, message: str) -> None:
        self.err_console.print(f"[magenta][WARN][/magenta] {message}", highlight=False)

    def error(self, message: str) -> None:
        self.err_console.print(f"[red][ERROR][/red] {message}", highlight=False)

    def fatal(self, message: str) -> None:
        self.err_console.print(f"[red][FATAL][/red] {message}", highlight=False)

    def print_summary(self, title: str, rows: list[tuple[str, str]]) -> None:
        """Print a two column key/value table."""
        if self.quiet:
            return
        table = Table(title=title, show_header=False)
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in rows:
            table.add_row(key, value)
        self.console.print(table)
