"""Rich console wrapper and formatting utilities."""

from typing import List, Optional

from rich.console import Console
from rich.table import Table

from skilld.sources.models import AttemptStatus, ResolveAttempt

# Global console instance
console = Console()

_ATTEMPT_STYLES = {
    AttemptStatus.SUCCESS: "green",
    AttemptStatus.NOT_FOUND: "yellow",
    AttemptStatus.ERROR: "red",
}


def print_info(message: str, title: Optional[str] = None) -> None:
    if title:
        console.print(f"[cyan][bold]{title}:[/bold][/cyan] {message}")
    else:
        console.print(f"[cyan]{message}[/cyan]")


def print_success(message: str, title: Optional[str] = None) -> None:
    if title:
        console.print(f"[green][bold]{title}:[/bold][/green] {message}")
    else:
        console.print(f"[green]✓ {message}[/green]")


def print_warning(message: str, title: Optional[str] = None) -> None:
    if title:
        console.print(f"[yellow][bold]{title}:[/bold][/yellow] {message}")
    else:
        console.print(f"[yellow]⚠ {message}[/yellow]")


def print_error(message: str, title: Optional[str] = None) -> None:
    if title:
        console.print(f"[red][bold]{title}:[/bold][/red] {message}")
    else:
        console.print(f"[red]✗ {message}[/red]")


def create_table(title: str, headers: List[str]) -> Table:
    """
    Create a Rich table.

    Args:
        title: Table title
        headers: Column headers

    Returns:
        Table instance
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    for header in headers:
        table.add_column(header)
    return table


def attempts_table(package: str, attempts: List[ResolveAttempt]) -> Table:
    """Resolution attempts for one package, one row per source tried."""
    table = create_table(f"Sources tried for {package}", ["Source", "Status", "Detail"])
    for attempt in attempts:
        style = _ATTEMPT_STYLES.get(attempt.status, "white")
        table.add_row(
            attempt.source.value,
            f"[{style}]{attempt.status.value}[/{style}]",
            attempt.message or attempt.url or "",
        )
    return table
