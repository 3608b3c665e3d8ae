"""sshm test suite.

- test_config.py: host catalog model and YAML persistence
- test_ssh_config.py: OpenSSH client config parsing
- test_transfer.py: import / export
- test_tmux.py: tmux manager with a fake runner
- test_errors_logging.py: exception hierarchy and logging setup
- test_cli.py: argparse commands
- tui/: form engine, dialogs, modal ownership and the prompt_toolkit views
"""
