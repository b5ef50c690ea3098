"""
Test doubles for the sync engine.

FakeLoop runs timers in virtual time so pipeline timing is deterministic.
"""

import heapq
import itertools
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from brightness_sync.topology import DisplayHandle, Topology


class FakeHandle:
    """Timer handle with the cancel() the pipeline uses."""

    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """
    Minimal event loop driven by advance().

    Timers fire in deadline order, ties in scheduling order.
    """

    def __init__(self):
        self.time = 0.0
        self._queue = []
        self._seq = itertools.count()

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(self.time + delay, callback, args)
        heapq.heappush(self._queue, (handle.when, next(self._seq), handle))
        return handle

    def call_soon_threadsafe(self, callback, *args):
        return self.call_later(0, callback, *args)

    @property
    def pending(self) -> List[FakeHandle]:
        """Timers that are still armed."""
        return [entry[2] for entry in self._queue if not entry[2].cancelled]

    def advance(self, seconds: float = 0.0):
        """Move virtual time forward, running every callback that falls due."""
        target = self.time + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.time = when
            handle.callback(*handle.args)
        self.time = target

    def run_ready(self):
        self.advance(0.0)


class FakeIO:
    """Brightness I/O with settable reads and recorded writes."""

    def __init__(self):
        self.values: Dict[DisplayHandle, Optional[float]] = {}
        self.reads: List[DisplayHandle] = []
        self.writes: List[Tuple[DisplayHandle, float]] = []
        self.read_error: Optional[Exception] = None

    def read(self, handle):
        self.reads.append(handle)
        if self.read_error is not None:
            raise self.read_error
        return self.values.get(handle)

    def write(self, handle, value):
        self.writes.append((handle, value))

    def writes_to(self, handle) -> List[float]:
        return [value for target, value in self.writes if target == handle]


class FakeDiscovery:
    """Discovery service whose topology is set by the test."""

    def __init__(self, topology: Optional[Topology] = None):
        self.topology = topology or Topology()
        self._callbacks = []

    def current_topology(self):
        return self.topology

    def on_topology_changed(self, callback):
        self._callbacks.append(callback)

    def change(self, topology: Topology):
        self.topology = topology
        for callback in self._callbacks:
            callback(topology)


class FakeSettings:
    """Offset store without persistence."""

    def __init__(self, offset: float = 0.0):
        self.offset = offset
        self._callbacks = []

    def get_offset(self):
        return self.offset

    def on_offset_changed(self, callback):
        self._callbacks.append(callback)

    def change(self, offset: float):
        self.offset = offset
        for callback in self._callbacks:
            callback(offset)


class RecordingSink:
    """Status sink remembering every status text."""

    def __init__(self):
        self.statuses: List[str] = []

    def set_status(self, text):
        self.statuses.append(text)


SOURCE = DisplayHandle("backlight", "intel_backlight", label="Built-in display")
TARGET_A = DisplayHandle("ddc", "5", label="Monitor A")
TARGET_B = DisplayHandle("ddc", "7", label="Monitor B")


def make_backlight(root: Path, name: str, brightness: int = 500, maximum: int = 1000,
                   kind: str = "raw", bl_power: str = "0") -> Path:
    """Create a fake /sys/class/backlight/<name> directory."""
    path = root / name
    path.mkdir(parents=True)
    (path / "max_brightness").write_text(f"{maximum}\n")
    (path / "brightness").write_text(f"{brightness}\n")
    (path / "actual_brightness").write_text(f"{brightness}\n")
    (path / "type").write_text(f"{kind}\n")
    (path / "bl_power").write_text(f"{bl_power}\n")
    return path


def make_connector(root: Path, name: str = "card0-eDP-1", status: str = "connected",
                   enabled: str = "enabled", dpms: str = "On") -> Path:
    """Create a fake /sys/class/drm/<name> connector directory."""
    path = root / name
    path.mkdir(parents=True)
    (path / "status").write_text(f"{status}\n")
    (path / "enabled").write_text(f"{enabled}\n")
    (path / "dpms").write_text(f"{dpms}\n")
    return path
