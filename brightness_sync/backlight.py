"""
Backlight - Source display brightness from sysfs
================================================

The built-in panel is read through ``/sys/class/backlight``. Whether the panel
is actually lit is taken from ``bl_power`` and, when it can be found, from the
internal DRM connector under ``/sys/class/drm`` (``enabled`` / ``dpms``).
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .exceptions import BrightnessIOError

logger = logging.getLogger(__name__)

BACKLIGHT_ROOT = Path("/sys/class/backlight")
DRM_ROOT = Path("/sys/class/drm")

# Preferred backlight interfaces, best first
BACKLIGHT_TYPE_ORDER = ("firmware", "platform", "raw")

# Connector types used for built-in panels
INTERNAL_CONNECTOR_TYPES = ("eDP", "LVDS", "DSI")


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return None


@dataclass(frozen=True)
class Backlight:
    """A sysfs backlight device, optionally paired with its DRM connector."""
    sysfs_dir: Path
    connector_dir: Optional[Path] = None

    @property
    def name(self) -> str:
        return self.sysfs_dir.name

    @property
    def backlight_type(self) -> str:
        return _read_text(self.sysfs_dir / "type") or "unknown"

    @property
    def max_brightness(self) -> int:
        raw = _read_text(self.sysfs_dir / "max_brightness")
        if raw is None:
            raise BrightnessIOError(f"Cannot read max_brightness of {self.name}")
        return int(raw)

    def raw_brightness(self) -> int:
        """Current raw brightness, preferring the hardware-reported value."""
        for filename in ("actual_brightness", "brightness"):
            raw = _read_text(self.sysfs_dir / filename)
            if raw is not None:
                return int(raw)
        raise BrightnessIOError(f"Cannot read brightness of {self.name}")

    def is_panel_on(self) -> bool:
        """False while the panel is powered down or its connector disabled."""
        bl_power = _read_text(self.sysfs_dir / "bl_power")
        if bl_power is not None and bl_power != "0":
            return False
        if self.connector_dir is not None:
            if _read_text(self.connector_dir / "enabled") == "disabled":
                return False
            if _read_text(self.connector_dir / "dpms") == "Off":
                return False
        return True

    def is_connected(self) -> bool:
        """False when the internal connector reports the panel as gone."""
        if self.connector_dir is None:
            return True
        return _read_text(self.connector_dir / "status") != "disconnected"

    def read(self) -> Optional[float]:
        """
        Read brightness as a fraction.

        Returns:
            Brightness in [0, 1], or None while the panel cannot report one
        """
        if not self.is_panel_on():
            return None
        try:
            maximum = self.max_brightness
            current = self.raw_brightness()
        except ValueError as e:
            raise BrightnessIOError(f"Unexpected brightness value for {self.name}: {e}") from e
        if maximum <= 0:
            return None
        return max(0.0, min(1.0, current / maximum))

    def write(self, value: float):
        """Set brightness from a fraction in [0, 1]."""
        raw = int(round(max(0.0, min(1.0, value)) * self.max_brightness))
        try:
            (self.sysfs_dir / "brightness").write_text(str(raw), encoding="utf-8")
        except OSError as e:
            raise BrightnessIOError(f"Cannot write brightness of {self.name}: {e}") from e
        logger.debug(f"Backlight {self.name} set to {raw}")


def find_internal_connector(drm_root: Path = DRM_ROOT) -> Optional[Path]:
    """Find the DRM connector of the built-in panel (e.g. card0-eDP-1)."""
    if not drm_root.is_dir():
        return None
    for path in sorted(drm_root.iterdir()):
        # Connector entries look like "card0-eDP-1"; plain "card0" is the device
        parts = path.name.split("-")
        if len(parts) >= 2 and parts[1] in INTERNAL_CONNECTOR_TYPES:
            return path
    return None


def find_backlights(
    backlight_root: Path = BACKLIGHT_ROOT,
    drm_root: Path = DRM_ROOT,
) -> List[Backlight]:
    """
    Enumerate backlight devices, best candidate first.

    Returns:
        Backlights ordered by interface type, then name
    """
    if not backlight_root.is_dir():
        return []

    connector = find_internal_connector(drm_root)
    backlights = [Backlight(path, connector) for path in sorted(backlight_root.iterdir())]

    def rank(backlight: Backlight):
        kind = backlight.backlight_type
        order = BACKLIGHT_TYPE_ORDER.index(kind) if kind in BACKLIGHT_TYPE_ORDER else len(BACKLIGHT_TYPE_ORDER)
        return order, backlight.name

    return sorted(backlights, key=rank)
