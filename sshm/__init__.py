"""sshm: manage SSH host profiles and open them in tmux.

Usage:
    sshm                      # Interactive host manager (TUI)
    sshm list                 # List configured servers
    sshm connect web1         # Open web1 in a tmux session
    sshm batch --profile prod # One tmux window per server in a profile
"""

from __future__ import annotations

__version__ = "1.0.0"

__all__ = [
    "Config",
    "Profile",
    "Server",
    "TmuxManager",
]


def __getattr__(name: str):
    """Lazy import of the catalog and tmux types."""
    if name in ("Config", "Profile", "Server"):
        from sshm.lib import config

        return getattr(config, name)
    if name == "TmuxManager":
        from sshm.lib.tmux import TmuxManager

        return TmuxManager
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
