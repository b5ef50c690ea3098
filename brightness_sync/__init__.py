"""
Brightness Sync - Follow the built-in panel's brightness on external monitors
=============================================================================

Keeps DDC/CI monitors at the brightness of the laptop panel:
- Sysfs backlight sampling of the built-in display
- User brightness offset, persisted in YAML config
- Restores pre-sleep brightness when the lid closes
- Small CustomTkinter status panel
"""

__version__ = "1.0.0"
__author__ = "Brightness Sync"

from .config import Config, SettingsStore
from .discovery import DisplayDiscovery, DisplayWatcher
from .brightness_io import SystemBrightnessIO
from .engine import SyncEngine
from .service import SyncService
from .topology import DisplayHandle, Topology

__all__ = [
    "Config",
    "SettingsStore",
    "DisplayDiscovery",
    "DisplayWatcher",
    "SystemBrightnessIO",
    "SyncEngine",
    "SyncService",
    "DisplayHandle",
    "Topology",
]
