"""
Brightness I/O - Read and write display brightness by handle
============================================================

Backlight handles are served inline (sysfs reads are fast). DDC/CI writes take
100 ms or more per command, so they are handed to a writer thread that only
keeps the newest pending value per display.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

from .backlight import BACKLIGHT_ROOT, Backlight, find_internal_connector
from .ddc import DDCController
from .exceptions import BrightnessIOError
from .topology import DisplayHandle

logger = logging.getLogger(__name__)

KIND_BACKLIGHT = "backlight"
KIND_DDC = "ddc"


class DDCWriter:
    """
    Background writer for DDC/CI brightness commands.

    Queued values for the same display overwrite each other, so a slow monitor
    never falls behind the source by more than one command.
    """

    def __init__(self, controller_for: Callable[[DisplayHandle], DDCController]):
        self._controller_for = controller_for
        self._pending: Dict[DisplayHandle, float] = {}
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def submit(self, handle: DisplayHandle, value: float):
        with self._lock:
            if handle in self._pending:
                logger.debug(f"Skipping outdated brightness for {handle}")
            self._pending[handle] = value
        self._wake.set()

    @property
    def pending(self) -> Dict[DisplayHandle, float]:
        with self._lock:
            return dict(self._pending)

    def start(self):
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, name="ddc-writer", daemon=True)
        self._thread.start()
        logger.debug("DDC writer started")

    def stop(self):
        self._running = False
        self._wake.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.debug("DDC writer stopped")

    def _run(self):
        while self._running:
            self._wake.wait(timeout=1.0)
            self._wake.clear()
            self.flush()
        # Values submitted right before stop() still go out
        self.flush()

    def flush(self) -> int:
        """
        Send all pending values.

        Returns:
            Number of values written successfully
        """
        with self._lock:
            batch, self._pending = self._pending, {}

        written = 0
        for handle, value in sorted(batch.items()):
            try:
                self._controller_for(handle).set_brightness_fraction(value)
                written += 1
            except BrightnessIOError as e:
                # Not retried; the next source change sends a fresh value
                logger.warning(f"Failed to set brightness of {handle}: {e}")
        return written


class SystemBrightnessIO:
    """Brightness read/write primitive for backlight and DDC/CI handles."""

    def __init__(
        self,
        ddc_retry_count: int = 1,
        ddc_sleep_multiplier: float = 0.5,
        backlight_root: Path = BACKLIGHT_ROOT,
    ):
        self.ddc_retry_count = ddc_retry_count
        self.ddc_sleep_multiplier = ddc_sleep_multiplier
        self.backlight_root = backlight_root
        self._lock = threading.Lock()
        self._backlights: Dict[str, Backlight] = {}
        self._controllers: Dict[str, DDCController] = {}
        self.writer = DDCWriter(self.controller_for)

    def start(self):
        self.writer.start()

    def stop(self):
        self.writer.stop()

    def backlight_for(self, handle: DisplayHandle) -> Backlight:
        with self._lock:
            backlight = self._backlights.get(handle.key)
            if backlight is None:
                backlight = Backlight(self.backlight_root / handle.key, find_internal_connector())
                self._backlights[handle.key] = backlight
            return backlight

    def controller_for(self, handle: DisplayHandle) -> DDCController:
        with self._lock:
            controller = self._controllers.get(handle.key)
            if controller is None:
                try:
                    bus = int(handle.key)
                except ValueError:
                    raise BrightnessIOError(f"Invalid I2C bus for {handle}: {handle.key!r}")
                controller = DDCController(
                    bus=bus,
                    retry_count=self.ddc_retry_count,
                    sleep_multiplier=self.ddc_sleep_multiplier,
                )
                self._controllers[handle.key] = controller
            return controller

    def read(self, handle: DisplayHandle) -> Optional[float]:
        """
        Read a display's brightness.

        Returns:
            Brightness in [0, 1], or None if the display cannot report one

        Raises:
            BrightnessIOError: If the device cannot be read
        """
        if handle.kind == KIND_BACKLIGHT:
            return self.backlight_for(handle).read()
        if handle.kind == KIND_DDC:
            return self.controller_for(handle).get_brightness_fraction()
        raise BrightnessIOError(f"Unsupported display kind: {handle.kind}")

    def write(self, handle: DisplayHandle, value: float):
        """Set a display's brightness. Failures are logged, not raised."""
        if handle.kind == KIND_DDC:
            self.writer.submit(handle, value)
            return
        if handle.kind == KIND_BACKLIGHT:
            try:
                self.backlight_for(handle).write(value)
            except BrightnessIOError as e:
                logger.warning(f"Failed to set brightness of {handle}: {e}")
            return
        logger.error(f"Unsupported display kind: {handle.kind}")
