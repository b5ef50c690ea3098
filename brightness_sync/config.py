"""
Configuration Management
========================
"""

import logging
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from .exceptions import ConfigError
from .topology import clamp_offset

logger = logging.getLogger(__name__)

DEFAULT_RELEASES_URL = "https://github.com/OCJvanDijk/Brightness-Sync/releases"


@dataclass
class SyncConfig:
    """Timing of the sync pipeline."""
    update_interval: float = 0.1
    quirk_delay: float = 2.0


@dataclass
class SourceConfig:
    """Which backlight is the source (None picks the best one)."""
    backlight: Optional[str] = None


@dataclass
class TargetConfig:
    """Glob patterns selecting target monitors by manufacturer, model or serial."""
    match: List[str] = field(default_factory=lambda: ["*"])
    exclude: List[str] = field(default_factory=list)


@dataclass
class DDCConfig:
    retry_count: int = 1
    sleep_multiplier: float = 0.5


@dataclass
class DiscoveryConfig:
    poll_interval: float = 5.0


@dataclass
class GUIConfig:
    """GUI configuration."""
    theme: str = "dark"
    releases_url: str = DEFAULT_RELEASES_URL


def _positive(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {number}")
    return number


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"{name} must be a mapping, got {section!r}")
    return section


def _patterns(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{name} must be a list of patterns")
    return [str(v) for v in value]


class Config:
    """
    Configuration manager for brightness sync.

    Handles loading, saving, and accessing configuration settings.
    """

    DEFAULT_CONFIG_PATH = Path.home() / ".config" / "brightness-sync" / "config.yaml"

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to configuration file, or None for default
        """
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._data: Dict[str, Any] = {}

        self.sync = SyncConfig()
        self.source = SourceConfig()
        self.targets = TargetConfig()
        self.ddc = DDCConfig()
        self.discovery = DiscoveryConfig()
        self.gui = GUIConfig()
        self.brightness_offset: float = 0.0

    def load(self) -> bool:
        """
        Load configuration from file.

        Returns:
            True if configuration was loaded successfully
        """
        if not self.config_path.exists():
            logger.warning(f"Configuration file not found: {self.config_path}")
            return False

        try:
            with open(self.config_path, 'r') as f:
                self._data = yaml.safe_load(f) or {}
            self._parse_config()
            logger.info(f"Loaded configuration from {self.config_path}")
            return True
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse configuration: {e}")
        except ConfigError as e:
            logger.error(f"Invalid configuration in {self.config_path}: {e}")
        except OSError as e:
            logger.error(f"Failed to load configuration: {e}")

        # Keep defaults rather than a half-parsed config
        self._data = {}
        self._parse_config()
        return False

    def _parse_config(self):
        """Parse loaded configuration data into typed objects."""
        if not isinstance(self._data, dict):
            raise ConfigError("Top level of the configuration must be a mapping")

        sync = _section(self._data, 'sync')
        self.sync = SyncConfig(
            update_interval=_positive(sync.get('update_interval', 0.1), 'sync.update_interval'),
            quirk_delay=_positive(sync.get('quirk_delay', 2.0), 'sync.quirk_delay'),
        )

        source = _section(self._data, 'source')
        self.source = SourceConfig(backlight=source.get('backlight'))

        targets = _section(self._data, 'targets')
        self.targets = TargetConfig(
            match=_patterns(targets.get('match', ["*"]), 'targets.match'),
            exclude=_patterns(targets.get('exclude', []), 'targets.exclude'),
        )

        ddc = _section(self._data, 'ddc')
        self.ddc = DDCConfig(
            retry_count=int(_positive(ddc.get('retry_count', 1), 'ddc.retry_count')),
            sleep_multiplier=_positive(ddc.get('sleep_multiplier', 0.5), 'ddc.sleep_multiplier'),
        )

        discovery = _section(self._data, 'discovery')
        self.discovery = DiscoveryConfig(
            poll_interval=_positive(discovery.get('poll_interval', 5.0), 'discovery.poll_interval'),
        )

        gui = _section(self._data, 'gui')
        self.gui = GUIConfig(
            theme=gui.get('theme', 'dark'),
            releases_url=gui.get('releases_url', DEFAULT_RELEASES_URL),
        )

        # App state (persisted settings)
        app_state = _section(self._data, 'app_state')
        try:
            self.brightness_offset = clamp_offset(app_state.get('brightness_offset', 0.0))
        except (TypeError, ValueError):
            raise ConfigError("app_state.brightness_offset must be a number")

    def save(self) -> bool:
        """
        Save current configuration to file.

        Returns:
            True if configuration was saved successfully
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.safe_dump(self._data, f, default_flow_style=False, sort_keys=False)
            logger.info(f"Saved configuration to {self.config_path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")
            return False

    def set_brightness_offset(self, offset: float) -> bool:
        """
        Update and save the brightness offset.

        Args:
            offset: New offset, clamped to [-0.5, 0.5]

        Returns:
            True if successfully saved
        """
        self.brightness_offset = clamp_offset(offset)
        if not isinstance(self._data.get('app_state'), dict):
            self._data['app_state'] = {}
        self._data['app_state']['brightness_offset'] = round(self.brightness_offset, 3)
        return self.save()

    @classmethod
    def get_default_config_dir(cls) -> Path:
        """Get the default configuration directory."""
        return cls.DEFAULT_CONFIG_PATH.parent

    @classmethod
    def create_default_config(cls, path: Optional[Path] = None) -> bool:
        """
        Create a default configuration file from the bundled template.

        Args:
            path: Path for the configuration file

        Returns:
            True if file was created successfully
        """
        target_path = path or cls.DEFAULT_CONFIG_PATH
        package_config = Path(__file__).parent / "config.yaml"
        if not package_config.exists():
            logger.error("Default configuration template not found")
            return False
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy(package_config, target_path)
            logger.info(f"Created default configuration at {target_path}")
            return True
        except OSError as e:
            logger.error(f"Failed to copy default config: {e}")
            return False


class SettingsStore:
    """
    User offset persisted in the configuration file.

    Change callbacks run on the thread that called set_offset().
    """

    def __init__(self, config: Config):
        self.config = config
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[float], None]] = []

    def get_offset(self) -> float:
        return self.config.brightness_offset

    def set_offset(self, offset: float) -> float:
        """
        Change the offset, persist it and notify subscribers.

        Returns:
            The stored (clamped) offset
        """
        offset = clamp_offset(offset)
        with self._lock:
            if offset == self.config.brightness_offset:
                return offset
            self.config.set_brightness_offset(offset)
            callbacks = list(self._callbacks)
        logger.info(f"Brightness offset set to {offset:+.2f}")
        for callback in callbacks:
            try:
                callback(offset)
            except Exception:
                logger.exception("Error in offset change callback")
        return offset

    def on_offset_changed(self, callback: Callable[[float], None]):
        with self._lock:
            self._callbacks.append(callback)
