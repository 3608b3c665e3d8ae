"""prompt_toolkit TUI for managing SSH hosts.

This package provides the full-screen host manager. The form engine it is
built on lives in ``sshm.tui.models`` and has no prompt_toolkit dependency.

Usage:
    python -m sshm.tui
    python -m sshm.tui --config-dir ~/.config/sshm
"""

from __future__ import annotations

__all__ = [
    "SshmApp",
    "run_tui",
]


def __getattr__(name: str):
    """Lazy import of TUI components."""
    if name == "SshmApp":
        from sshm.tui.app import SshmApp
        return SshmApp
    if name == "run_tui":
        from sshm.tui.app import run_tui
        return run_tui
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
