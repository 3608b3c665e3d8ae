"""TUI settings loader.

Reads optional TUI preferences from ``tui.yaml`` next to the host catalog
(``~/.sshm/tui.yaml`` or ``$SSHM_CONFIG_DIR/tui.yaml``).

Example tui.yaml:
    tui:
      validation_mode: immediate    # or "submit"
      mouse_support: true
      confirm_delete: true
      log_file: ~/.sshm/sshm.log
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from sshm.lib.config import default_config_dir, expand_path
from sshm.tui.models.form_state import ValidationMode

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "tui.yaml"


@dataclass
class TUISettings:
    """TUI configuration settings."""

    # Re-validate fields while typing, or only on submit
    validation_mode: ValidationMode = ValidationMode.IMMEDIATE

    mouse_support: bool = True

    # Ask before deleting servers and profiles
    confirm_delete: bool = True

    # Where the TUI writes its log (the terminal belongs to the UI)
    log_file: str | None = None

    @classmethod
    def load(cls, config_dir: Path | None = None) -> "TUISettings":
        """Load settings from tui.yaml in the config directory.

        Args:
            config_dir: Directory holding tui.yaml. Defaults to the sshm config dir.

        Returns:
            TUISettings with values from the file, or defaults.
        """
        root = config_dir or default_config_dir()
        settings_path = root / SETTINGS_FILENAME

        if not settings_path.exists():
            return cls()

        try:
            with open(settings_path, encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}

            tui_config = config.get("tui", {}) or {}
            log_file = tui_config.get("log_file")
            return cls(
                validation_mode=ValidationMode(
                    tui_config.get("validation_mode", cls.validation_mode.value)
                ),
                mouse_support=bool(tui_config.get("mouse_support", cls.mouse_support)),
                confirm_delete=bool(tui_config.get("confirm_delete", cls.confirm_delete)),
                log_file=expand_path(str(log_file)) if log_file else None,
            )
        except (OSError, ValueError, AttributeError, yaml.YAMLError) as e:
            # If the file is malformed, use defaults
            logger.warning("Ignoring invalid %s: %s", settings_path, e)
            return cls()


# Global settings instance (loaded on first access)
_settings: TUISettings | None = None


def get_settings(reload: bool = False) -> TUISettings:
    """Get the global TUI settings.

    Args:
        reload: Force reload from the settings file.

    Returns:
        TUISettings instance.
    """
    global _settings
    if _settings is None or reload:
        _settings = TUISettings.load()
    return _settings
