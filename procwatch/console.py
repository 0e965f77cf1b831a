from __future__ import annotations

import os
import re

from rich.console import Console

# Cross-platform output helpers that use Rich on Unix but plain output on Windows

_console: Console | None = None


def get_console() -> Console:
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def clear_screen() -> None:
    """Clear the terminal (used by the fullscreen logger option)."""
    if os.name == "nt":
        os.system("cls")
    else:
        get_console().clear()


def print_rule(title: str = "", style: str = "bold yellow") -> None:
    """Print a horizontal rule with optional title."""
    if os.name == "nt":
        if title:
            print(f"--- {_strip_markup(title)} ---")
        else:
            print("-" * 50)
    else:
        console = get_console()
        if title:
            console.rule(f"[{style}]{title}[/{style}]")
        else:
            console.rule()


def _strip_markup(text: str) -> str:
    return re.sub(r"\[/?[^\]]*\]", "", text)
