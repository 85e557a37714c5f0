"""Console output formatting for the CLI and the sync engine."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from .utils import format_size


class OutputFormatter:
    """Formats and prints messages, tables and JSON.

    Messages go through rich consoles: informational text to stdout,
    warnings and errors to stderr. ``quiet`` suppresses informational
    output but never errors.
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)

    def print(self, message: str = "") -> None:
        """Print a plain message (suppressed in quiet mode)."""
        if not self.quiet:
            self.console.print(message, markup=False)

    def info(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message, markup=False)

    def success(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message, style="green", markup=False)

    def warning(self, message: str) -> None:
        if not self.quiet:
            self.err_console.print(message, style="yellow", markup=False)

    def error(self, message: str) -> None:
        self.err_console.print(message, style="bold red", markup=False)

    def output_json(self, data: Any) -> None:
        """Print data as JSON (always, regardless of quiet)."""
        self.console.print_json(json.dumps(data, default=str))

    def output_table(
        self,
        rows: list[dict[str, Any]],
        columns: list[str],
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        """Print rows as a table.

        Args:
            rows: List of dicts, one per row
            columns: Keys to display, in order
            headers: Optional mapping of column key to header text
        """
        if self.json_output:
            self.output_json(rows)
            return

        headers = headers or {}
        table = Table(show_edge=False, header_style="bold cyan")
        for column in columns:
            table.add_column(headers.get(column, column))
        for row in rows:
            table.add_row(*(str(row.get(column, "")) for column in columns))
        self.console.print(table)

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        """Print a titled list of key/value pairs."""
        if self.json_output:
            self.output_json({key: value for key, value in items})
            return
        if self.quiet:
            return
        self.console.print(f"\n{title}", style="bold cyan", markup=False)
        self.console.print("-" * 40, style="dim")
        for key, value in items:
            self.console.print(f"{key}: {value}", markup=False)
        self.console.print("-" * 40, style="dim")

    def format_size(self, size_bytes: int) -> str:
        return format_size(size_bytes)
