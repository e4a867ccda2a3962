"""UI components for the skilld CLI."""

from .console import (
    attempts_table,
    console,
    create_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from .progress import LiveProgress, render_states

__all__ = [
    "console",
    "create_table",
    "attempts_table",
    "print_error",
    "print_info",
    "print_success",
    "print_warning",
    "LiveProgress",
    "render_states",
]
