"""Module for configuration variables with defaults that are overridable by a file."""

from __future__ import annotations

from configparser import ConfigParser, SectionProxy
from dataclasses import dataclass, field
import os
from typing import Optional

from cloudtree.logger import log


@dataclass
class DriveConfig:
    """Configuration variables related to the location of the synchronized tree."""

    path: str = os.path.expanduser("~/CloudTree")
    store_path: str = os.path.expanduser("~/.cloudtree/store")

    container: Optional[str] = None
    subdirectory: str = ""

    @staticmethod
    def load(section: SectionProxy) -> DriveConfig:
        """Load overridden variables from a section within a config file."""
        config = DriveConfig()

        config.path = os.path.expanduser(section.get("path", fallback=config.path))
        config.store_path = os.path.expanduser(
            section.get("store_path", fallback=config.store_path)
        )

        config.container = section.get("container", fallback=config.container)
        config.subdirectory = section.get("subdirectory", fallback=config.subdirectory)

        return config


@dataclass
class CoordinationConfig:
    """Configuration variables related to coordinating access with other processes."""

    lock_path: str = os.path.expanduser("~/.cloudtree/locks")

    # Backoff (in seconds) between attempts to acquire a contended lock file
    delay: float = 0.01
    max_delay: float = 0.1

    @staticmethod
    def load(section: SectionProxy) -> CoordinationConfig:
        """Load overridden variables from a section within a config file."""
        config = CoordinationConfig()

        config.lock_path = os.path.expanduser(
            section.get("lock_path", fallback=config.lock_path)
        )

        config.delay = section.getfloat("delay", fallback=config.delay)
        config.max_delay = section.getfloat("max_delay", fallback=config.max_delay)

        return config


@dataclass
class MonitorConfig:
    """Configuration variables related to observing changes in the tree."""

    restart_delay: float = 5.0

    debounce_ms: int = 50
    force_polling: bool = False

    @staticmethod
    def load(section: SectionProxy) -> MonitorConfig:
        """Load overridden variables from a section within a config file."""
        config = MonitorConfig()

        config.restart_delay = section.getfloat(
            "restart_delay", fallback=config.restart_delay
        )

        config.debounce_ms = section.getint("debounce_ms", fallback=config.debounce_ms)
        config.force_polling = section.getboolean(
            "force_polling", fallback=config.force_polling
        )

        return config


@dataclass
class Config:
    """Configuration variables."""

    drive: DriveConfig = field(default_factory=DriveConfig)
    coordination: CoordinationConfig = field(default_factory=CoordinationConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)

    @staticmethod
    def load(filename: str) -> Config:
        """Load overridden configuration variables from a config file."""
        parser = ConfigParser()

        config = Config()

        try:
            with open(filename, "r") as f:
                parser.read_string(f.read(), filename)

            if "drive" in parser:
                config.drive = DriveConfig.load(parser["drive"])
            if "coordination" in parser:
                config.coordination = CoordinationConfig.load(parser["coordination"])
            if "monitor" in parser:
                config.monitor = MonitorConfig.load(parser["monitor"])
        except FileNotFoundError:
            log.info(f"no config file at {filename}")
        except Exception as e:
            # An unreadable config file is not considered a fatal error since we can
            # fall back to defaults.
            log.error(f"failed to read config file {filename}: {e}")
        else:
            log.info(f"loaded config: {config}")

        return config
