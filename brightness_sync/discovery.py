"""
Display Discovery - Find the source panel and target monitors
=============================================================
"""

import fnmatch
import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .backlight import BACKLIGHT_ROOT, DRM_ROOT, INTERNAL_CONNECTOR_TYPES, Backlight, find_backlights
from .ddc import DDCController, MonitorInfo
from .topology import DisplayHandle, Topology

logger = logging.getLogger(__name__)

# Try to import Xlib for RandR screen change events
try:
    from Xlib import display as xdisplay
    from Xlib.ext import randr
    XLIB_AVAILABLE = True
except ImportError:
    XLIB_AVAILABLE = False


def monitor_matches(monitor: MonitorInfo, patterns: Sequence[str]) -> bool:
    """Check if a monitor matches any glob-style pattern (case-insensitive)."""
    candidates = [
        monitor.manufacturer,
        monitor.model,
        monitor.serial,
        f"{monitor.manufacturer} {monitor.model}",
    ]
    candidates = [c.lower() for c in candidates if c]
    for pattern in patterns:
        pattern_lower = pattern.lower()
        if any(fnmatch.fnmatch(c, pattern_lower) for c in candidates):
            return True
    return False


def is_internal_monitor(monitor: MonitorInfo) -> bool:
    """True for monitors on a built-in panel connector (eDP, LVDS, DSI)."""
    parts = monitor.drm_connector.split("-")
    return len(parts) >= 2 and parts[1] in INTERNAL_CONNECTOR_TYPES


class DisplayDiscovery:
    """
    Builds the source/target topology from sysfs and ddcutil.

    The source is the built-in panel's backlight; targets are DDC/CI monitors
    matching the configured patterns.
    """

    def __init__(
        self,
        source_backlight: Optional[str] = None,
        target_match: Sequence[str] = ("*",),
        target_exclude: Sequence[str] = (),
        detect_monitors: Callable[[], List[MonitorInfo]] = DDCController.detect_monitors,
        backlight_root: Path = BACKLIGHT_ROOT,
        drm_root: Path = DRM_ROOT,
    ):
        """
        Args:
            source_backlight: Backlight device name to use, or None for the best one
            target_match: Glob patterns a monitor must match to be a target
            target_exclude: Glob patterns excluding monitors from the targets
            detect_monitors: Function returning the connected DDC/CI monitors
            backlight_root: sysfs backlight class directory
            drm_root: sysfs DRM class directory
        """
        self.source_backlight = source_backlight
        self.target_match = list(target_match)
        self.target_exclude = list(target_exclude)
        self._detect_monitors = detect_monitors
        self.backlight_root = backlight_root
        self.drm_root = drm_root
        self._lock = threading.Lock()
        self._topology: Optional[Topology] = None
        self._callbacks: List[Callable[[Topology], None]] = []
        self.monitors: List[MonitorInfo] = []

    def on_topology_changed(self, callback: Callable[[Topology], None]):
        with self._lock:
            self._callbacks.append(callback)

    def current_topology(self) -> Topology:
        """Latest detected topology, empty until the first refresh()."""
        with self._lock:
            return self._topology or Topology()

    def refresh(self) -> bool:
        """
        Re-detect displays and notify subscribers on change.

        Returns:
            True if the topology changed
        """
        topology = self.detect()
        with self._lock:
            if topology == self._topology:
                return False
            self._topology = topology
            callbacks = list(self._callbacks)

        logger.info(f"Displays: {topology.describe()}")
        for callback in callbacks:
            try:
                callback(topology)
            except Exception:
                logger.exception("Error in topology change callback")
        return True

    def detect(self) -> Topology:
        """Detect the current topology without notifying anyone."""
        source = self.find_source()
        targets = self.find_targets()
        return Topology.build(source, targets)

    def find_source_backlight(self) -> Optional[Backlight]:
        backlights = find_backlights(self.backlight_root, self.drm_root)
        if not backlights:
            logger.debug("No backlight devices found")
            return None
        if self.source_backlight:
            for backlight in backlights:
                if backlight.name == self.source_backlight:
                    return backlight
            logger.warning(f"Configured backlight '{self.source_backlight}' not found")
            return None
        return backlights[0]

    def find_source(self) -> Optional[DisplayHandle]:
        backlight = self.find_source_backlight()
        if backlight is None:
            return None
        if not backlight.is_connected():
            # Lid closed with the panel switched off entirely
            logger.debug(f"Built-in panel for {backlight.name} is disconnected")
            return None
        return DisplayHandle("backlight", backlight.name, label=f"Built-in display ({backlight.name})")

    def find_targets(self) -> List[DisplayHandle]:
        self.monitors = self._detect_monitors()
        targets = []
        for monitor in self.monitors:
            if is_internal_monitor(monitor):
                continue
            if not monitor_matches(monitor, self.target_match):
                logger.debug(f"Found incompatible display: {monitor}")
                continue
            if self.target_exclude and monitor_matches(monitor, self.target_exclude):
                logger.debug(f"Excluded display: {monitor}")
                continue
            bus = monitor.bus_number
            if bus is None:
                logger.warning(f"Display {monitor} has no I2C bus, skipping")
                continue
            logger.debug(f"Found compatible display: {monitor}")
            targets.append(DisplayHandle("ddc", str(bus), label=f"{monitor.manufacturer} {monitor.model}"))
        return targets


class DisplayWatcher:
    """
    Re-runs discovery in the background.

    Discovery runs every ``poll_interval`` seconds, and immediately when X
    reports a RandR screen change (python-xlib installed, X11 session).
    """

    def __init__(self, discovery: DisplayDiscovery, poll_interval: float = 5.0):
        self.discovery = discovery
        self.poll_interval = poll_interval
        self._running = False
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._x_thread: Optional[threading.Thread] = None

    def request_refresh(self):
        """Ask for a discovery run as soon as possible."""
        self._wake.set()

    def start(self):
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._monitor_loop, name="display-watcher", daemon=True)
        self._thread.start()
        if XLIB_AVAILABLE and os.environ.get('DISPLAY'):
            self._x_thread = threading.Thread(target=self._randr_loop, name="randr-events", daemon=True)
            self._x_thread.start()
        logger.info(f"Started display watcher (interval: {self.poll_interval}s)")

    def stop(self):
        self._running = False
        self._wake.set()
        for thread in (self._thread, self._x_thread):
            if thread:
                thread.join(timeout=2)
        self._thread = None
        self._x_thread = None
        logger.info("Stopped display watcher")

    def _monitor_loop(self):
        while self._running:
            try:
                self.discovery.refresh()
            except Exception as e:
                logger.error(f"Error in display discovery: {e}")
            self._wake.wait(timeout=self.poll_interval)
            self._wake.clear()

    def _randr_loop(self):
        """Wake discovery on RandR screen and output changes."""
        try:
            x = xdisplay.Display()
            if not x.has_extension('RANDR'):
                logger.info("X server has no RandR extension, polling only")
                return
            root = x.screen().root
            root.xrandr_select_input(
                randr.RRScreenChangeNotifyMask | randr.RROutputChangeNotifyMask
            )
        except Exception as e:
            logger.warning(f"Could not subscribe to RandR events: {e}")
            return

        logger.debug("Listening for RandR screen changes")
        try:
            while self._running:
                try:
                    changed = False
                    while x.pending_events():
                        x.next_event()
                        changed = True
                    if changed:
                        logger.debug("Screen configuration changed")
                        # Outputs settle a moment after the event
                        time.sleep(0.5)
                        self.request_refresh()
                    time.sleep(0.1)
                except Exception as e:
                    logger.error(f"Error in RandR event loop: {e}")
                    time.sleep(1)
        finally:
            x.close()
