"""
Configuration management for rtcprobe.

Handles loading, validation, and access to configuration settings.
"""

import logging
import os
import yaml
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
from pathlib import Path

logger = logging.getLogger(__name__)

# Default configuration paths
CONFIG_PATHS = [
    "/etc/rtcprobe/config.yaml",
    os.path.expanduser("~/.config/rtcprobe/config.yaml"),
    "rtcprobe.yaml",
]

# stop_after_ms value that disables the watchdog
WATCHDOG_DISABLED = -1


@dataclass
class SessionConfig:
    """Identity of the monitored session."""
    name: str = "session"
    call_id: str = ""
    user_id: str = ""


@dataclass
class SamplingConfig:
    """Sampling timings, in milliseconds."""
    start_after_ms: int = 0  # Delay before the reference report
    refresh_every_ms: int = 2000  # Period between reports
    stop_after_ms: int = WATCHDOG_DISABLED  # Auto stop, -1 to disable

    @property
    def watchdog_enabled(self) -> bool:
        return self.stop_after_ms != WATCHDOG_DISABLED


@dataclass
class TicketConfig:
    """End of session ticket configuration."""
    enabled: bool = True


@dataclass
class Config:
    """Main configuration class."""
    version: int = 1
    session: SessionConfig = field(default_factory=SessionConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    ticket: TicketConfig = field(default_factory=TicketConfig)

    # Stat type -> fields copied verbatim into the passthrough bucket
    passthrough: Dict[str, List[str]] = field(default_factory=dict)

    verbose_log: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        if "version" in data:
            config.version = data["version"]

        if "session" in data:
            config.session = SessionConfig(**data["session"])

        if "sampling" in data:
            config.sampling = SamplingConfig(**data["sampling"])

        if "ticket" in data:
            config.ticket = TicketConfig(**data["ticket"])

        if "passthrough" in data:
            config.passthrough = {
                stat_type: list(fields)
                for stat_type, fields in (data["passthrough"] or {}).items()
            }

        if "verbose_log" in data:
            config.verbose_log = bool(data["verbose_log"])

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert Config to dictionary."""
        return {
            "version": self.version,
            "session": {
                "name": self.session.name,
                "call_id": self.session.call_id,
                "user_id": self.session.user_id,
            },
            "sampling": {
                "start_after_ms": self.sampling.start_after_ms,
                "refresh_every_ms": self.sampling.refresh_every_ms,
                "stop_after_ms": self.sampling.stop_after_ms,
            },
            "ticket": {
                "enabled": self.ticket.enabled,
            },
            "passthrough": {k: list(v) for k, v in self.passthrough.items()},
            "verbose_log": self.verbose_log,
        }

    def validate(self) -> List[str]:
        """
        Check the configuration for values the collector cannot honor.

        Returns:
            Human readable issues, empty when the configuration is usable.
        """
        issues = []
        if self.sampling.refresh_every_ms <= 0:
            issues.append(f"refresh_every_ms must be positive, got {self.sampling.refresh_every_ms}")
        if self.sampling.start_after_ms < 0:
            issues.append(f"start_after_ms must not be negative, got {self.sampling.start_after_ms}")
        if self.sampling.stop_after_ms < WATCHDOG_DISABLED:
            issues.append(
                f"stop_after_ms must be {WATCHDOG_DISABLED} or positive, got {self.sampling.stop_after_ms}"
            )
        for stat_type, fields in self.passthrough.items():
            if not all(isinstance(f, str) for f in fields):
                issues.append(f"passthrough fields for '{stat_type}' must be strings")
        return issues

    def save(self, path: Optional[str] = None):
        """Save configuration to file."""
        if path is None:
            path = CONFIG_PATHS[0]

        # Ensure directory exists
        Path(path).parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)


def load_config(path: Optional[str] = None) -> Config:
    """
    Load configuration from file.

    Args:
        path: Path to config file. If None, searches default locations.

    Returns:
        Config object with loaded or default settings.
    """
    if path is not None:
        paths_to_try = [path]
    else:
        paths_to_try = CONFIG_PATHS

    for config_path in paths_to_try:
        if os.path.exists(config_path):
            try:
                with open(config_path) as f:
                    data = yaml.safe_load(f)
                    if data:
                        return Config.from_dict(data)
            except Exception as e:
                logger.warning(f"Failed to load config from {config_path}: {e}")

    # Return default config
    return Config()


def get_config_path() -> Optional[str]:
    """Get the path to the active config file."""
    for path in CONFIG_PATHS:
        if os.path.exists(path):
            return path
    return None
