from __future__ import annotations

from rich.console import Console
from rich.markup import escape

_DEBUG_LOG = False

console = Console(stderr=True, highlight=False)


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_enabled() -> bool:
    return _DEBUG_LOG


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        console.print(f"[dim]\\[rnb debug] {escape(message)}[/dim]")


def status(message: str) -> None:
    console.print(f"\\[rnb] {escape(message)}")


__all__ = ["console", "set_debug_logging", "debug_enabled", "debug_log", "status"]
