"""
User settings for dockyard, read from a YAML file.

Location: $XDG_CONFIG_HOME/dockyard/config.yaml, or
~/.config/dockyard/config.yaml when XDG_CONFIG_HOME is unset.

    logging:
      level: DEBUG
      file_path: /tmp/dockyard.log
    engine:
      default_tag: latest
      stack_name: default
      seed: 42            # reproducible ids and sizes
    ui:
      show_event_log: true
      max_output_lines: 1000
      workspace_dir: ~/lessons

Every key is optional. Unknown keys and values of the wrong type are
logged and skipped; an unreadable file leaves the built-in defaults in
place. Nothing is written until save_config() is called.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict
from pathlib import Path

logger = logging.getLogger(__name__)

SECTIONS = ("logging", "engine", "ui")


@dataclass
class LogConfig:
    level: str = "INFO"
    file_path: Optional[str] = None  # None: XDG data dir


@dataclass
class EngineConfig:
    """Knobs of the simulated engine."""
    default_tag: str = "latest"
    stack_name: str = "default"
    pull_size_min: int = 10_000_000
    pull_size_max: int = 210_000_000
    build_size_min: int = 20_000_000
    build_size_max: int = 170_000_000
    seed: Optional[int] = None


@dataclass
class UIConfig:
    show_event_log: bool = True
    max_output_lines: int = 1000
    workspace_dir: str = "."


@dataclass
class AppConfig:
    logging: LogConfig = field(default_factory=LogConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    ui: UIConfig = field(default_factory=UIConfig)


def default_config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "dockyard"


class ConfigManager:
    """Loads config.yaml once and hands out typed sections."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.config_file = self.config_dir / "config.yaml"
        self._config = AppConfig()
        self.load_config()

    def load_config(self) -> None:
        if not self.config_file.exists():
            logger.debug(f"{self.config_file} not found, running with defaults")
            self._config = AppConfig()
            return
        try:
            with open(self.config_file) as f:
                overrides = yaml.safe_load(f) or {}
            if not isinstance(overrides, dict):
                raise ValueError("expected a mapping at the top level")
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.error(f"Ignoring {self.config_file}: {e}")
            self._config = AppConfig()
            return
        self._config = self._apply_overrides(AppConfig(), overrides)
        logger.debug(f"Read settings from {self.config_file}")

    def save_config(self) -> None:
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w") as f:
                yaml.safe_dump(asdict(self._config), f, default_flow_style=False, sort_keys=False)
            logger.debug(f"Wrote settings to {self.config_file}")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Could not write {self.config_file}: {e}")

    def get_config(self) -> AppConfig:
        return self._config

    def _apply_overrides(self, config: AppConfig, overrides: Dict[str, Any]) -> AppConfig:
        for name in SECTIONS:
            section = overrides.get(name)
            if isinstance(section, dict):
                self._apply_section(name, getattr(config, name), section)
            elif section is not None:
                logger.warning(f"Config section '{name}' must be a mapping")
        return config

    def _apply_section(self, name: str, target: Any, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            if not hasattr(target, key):
                logger.warning(f"Unknown config key '{name}.{key}'")
                continue
            current = getattr(target, key)
            if current is not None and value is not None and type(current) is not type(value):
                logger.warning(f"Config key '{name}.{key}' expects {type(current).__name__}, "
                               f"got {type(value).__name__}")
                continue
            setattr(target, key, value)

    def get_log_level(self) -> str:
        return self._config.logging.level.upper()

    def get_custom_log_path(self) -> Optional[str]:
        return self._config.logging.file_path

    def get_engine_config(self) -> EngineConfig:
        return self._config.engine

    def get_workspace_dir(self) -> Path:
        return Path(self._config.ui.workspace_dir).expanduser()


config_manager = ConfigManager()
