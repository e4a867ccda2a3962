"""Live progress table for a sync batch, driven by progress events."""

from typing import Dict, Optional

from rich.console import Console
from rich.live import Live
from rich.table import Table

from skilld.pipeline.events import PackageSyncState, ProgressChannel, ProgressEvent, SyncStatus

STATUS_STYLES: Dict[SyncStatus, str] = {
    SyncStatus.PENDING: "dim",
    SyncStatus.RESOLVING: "cyan",
    SyncStatus.DOWNLOADING: "blue",
    SyncStatus.EMBEDDING: "magenta",
    SyncStatus.GENERATING: "yellow",
    SyncStatus.DONE: "green",
    SyncStatus.ERROR: "red",
}

STATUS_ICONS: Dict[SyncStatus, str] = {
    SyncStatus.PENDING: "·",
    SyncStatus.DONE: "✓",
    SyncStatus.ERROR: "✗",
}


def render_states(channel: ProgressChannel) -> Table:
    """One row per package with its current phase and last message."""
    table = Table(show_header=True, header_style="bold cyan", expand=False)
    table.add_column("", width=1)
    table.add_column("Package", style="bold")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Message", overflow="ellipsis", no_wrap=True, max_width=60)

    for state in channel.states.values():
        table.add_row(*_row(state))
    return table


def _row(state: PackageSyncState):
    style = STATUS_STYLES[state.status]
    icon = STATUS_ICONS.get(state.status, "…")
    return (
        f"[{style}]{icon}[/{style}]",
        state.name,
        state.version or "",
        f"[{style}]{state.status.value}[/{style}]",
        state.message,
    )


class LiveProgress:
    """Subscribes to a channel and re-renders a rich ``Live`` table."""

    def __init__(self, channel: ProgressChannel, console: Optional[Console] = None):
        self.channel = channel
        self.console = console
        self._live: Optional[Live] = None
        self._unsubscribe = None

    def __enter__(self) -> "LiveProgress":
        self._live = Live(render_states(self.channel), console=self.console, refresh_per_second=8)
        self._live.__enter__()
        self._unsubscribe = self.channel.subscribe(self._on_event)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self._live:
            self._live.update(render_states(self.channel))
            self._live.__exit__(exc_type, exc_val, exc_tb)
            self._live = None

    def _on_event(self, event: ProgressEvent) -> None:
        if self._live:
            self._live.update(render_states(self.channel))
