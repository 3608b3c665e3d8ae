"""Entry point for running the TUI as a module.

Usage:
    python -m sshm.tui
    python -m sshm.tui --config-dir DIR
"""

from __future__ import annotations

from sshm.tui.app import main

if __name__ == "__main__":
    main()
