"""Host catalog, import/export and tmux support shared by the CLI and the TUI."""
