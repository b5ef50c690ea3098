"""
Sync Engine - Wires the pipeline to its collaborators
=====================================================

Data flow::

    topology ──┬──> Sampler ──┬──> QuirkCompensator ──> Mixer ──> Actuator
               │              └──> StatusReporter        ^
               └─────────────────────────────────────────┤
    offset ──────────────────────────────────────────────┘

Everything here runs on a single event loop. Collaborators may call back from
other threads; those calls are posted onto the loop with
``call_soon_threadsafe`` before they touch any state.
"""

import logging
from typing import Callable, Optional, Protocol

from .pipeline import (
    Actuator,
    Mixer,
    QuirkCompensator,
    Sample,
    Sampler,
    Status,
    StatusReporter,
)
from .topology import DisplayHandle, OffsetState, Topology, TopologyState

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_INTERVAL = 0.1
DEFAULT_QUIRK_DELAY = 2.0


class DiscoveryService(Protocol):
    def current_topology(self) -> Topology: ...

    def on_topology_changed(self, callback: Callable[[Topology], None]) -> None: ...


class BrightnessIO(Protocol):
    def read(self, handle: DisplayHandle) -> Sample: ...

    def write(self, handle: DisplayHandle, value: float) -> None: ...


class SettingsStore(Protocol):
    def get_offset(self) -> float: ...

    def on_offset_changed(self, callback: Callable[[float], None]) -> None: ...


class StatusSink(Protocol):
    def set_status(self, text: str) -> None: ...


class SyncEngine:
    """
    Keeps target display brightness in sync with the source display.

    Must be started, stopped and driven from the thread running ``loop``.
    """

    def __init__(
        self,
        loop,
        discovery: DiscoveryService,
        io: BrightnessIO,
        settings: SettingsStore,
        status_sink: Optional[StatusSink] = None,
        update_interval: float = DEFAULT_UPDATE_INTERVAL,
        quirk_delay: float = DEFAULT_QUIRK_DELAY,
    ):
        """
        Initialize the engine.

        Args:
            loop: Event loop (asyncio or compatible) the engine runs on
            discovery: Source of topology snapshots and change notifications
            io: Brightness read/write primitive
            settings: Source of the user offset and its change notifications
            status_sink: Optional receiver of "Active"/"Inactive" status text
            update_interval: Seconds between source reads while tracking
            quirk_delay: Age in seconds of the sample restored on sleep
        """
        self._loop = loop
        self._discovery = discovery
        self._settings = settings
        self._running = False

        self.topology_state = TopologyState()
        self.offset_state = OffsetState(settings.get_offset())

        self.actuator = Actuator(io.write)
        self.mixer = Mixer(self.topology_state, self.offset_state, self.actuator)
        self.compensator = QuirkCompensator(loop, delay=quirk_delay)
        self.status_reporter = StatusReporter(status_sink)
        self.sampler = Sampler(loop, io.read, interval=update_interval)

        self.sampler.subscribe(self.compensator.push)
        self.sampler.subscribe(self.status_reporter.push)
        self.compensator.subscribe(self.mixer.push)

        # Subscriptions are made once; they are ignored while stopped
        discovery.on_topology_changed(self._post_topology)
        settings.on_offset_changed(self._post_offset)

    # Lifecycle

    def start(self):
        """Apply the current topology and begin syncing."""
        if self._running:
            return
        self._running = True
        topology = self._discovery.current_topology()
        self.topology_state.update(topology)
        self.offset_state.update(self._settings.get_offset())
        self.sampler.restart(topology)
        logger.info(f"Sync engine started ({topology.describe()})")

    def stop(self):
        """Stop sampling and drop pending history."""
        if not self._running:
            return
        self._running = False
        self.sampler.reset()
        self.compensator.reset()
        self.mixer.reset()
        logger.info("Sync engine stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_tracking(self) -> bool:
        """True when a source and targets exist and the sampler is running."""
        return self.sampler.is_running

    # Events

    def apply_topology(self, topology: Topology):
        """Handle a topology snapshot from discovery."""
        if not self._running:
            return
        previous_targets = self.topology_state.targets
        if not self.topology_state.update(topology):
            return
        self.sampler.restart(topology)
        # New targets must not wait for the source brightness to change
        if topology.targets != previous_targets:
            self.mixer.refresh()

    def set_offset(self, offset: float):
        """Handle a user offset change."""
        if not self._running:
            return
        if self.offset_state.update(offset):
            self.mixer.refresh()

    def _post_topology(self, topology: Topology):
        self._loop.call_soon_threadsafe(self.apply_topology, topology)

    def _post_offset(self, offset: float):
        self._loop.call_soon_threadsafe(self.set_offset, offset)

    # Status

    @property
    def status(self) -> Optional[Status]:
        return self.status_reporter.status

    def on_status_changed(self, callback: Callable[[Status], None]):
        self.status_reporter.on_status_changed(callback)
