"""
Sync Pipeline - Sampler, quirk compensation, mixing and actuation
=================================================================

Each stage is a small object that receives values through ``push`` and hands
its output to subscribed callbacks. All stages run on the engine's event loop;
the only thing they need from the loop is ``call_later(delay, callback, *args)``
returning a handle with ``cancel()``.
"""

import logging
from collections import deque
from enum import Enum
from typing import Callable, Deque, List, NamedTuple, Optional

from .exceptions import BrightnessIOError
from .topology import DisplayHandle, OffsetState, Topology, TopologyState, clamp

logger = logging.getLogger(__name__)

# A brightness value in [0, 1], or None when the source cannot report one
Sample = Optional[float]

SampleCallback = Callable[[Sample], None]

_UNSET = object()


def _notify(callbacks: List[Callable], value, what: str):
    """Call every subscriber, logging failures instead of propagating them."""
    for callback in list(callbacks):
        try:
            callback(value)
        except Exception:
            logger.exception(f"Error in {what} callback")


class Status(str, Enum):
    """Whether the source display currently yields a brightness value."""
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class Actuation(NamedTuple):
    """One brightness write for one target display."""
    target: DisplayHandle
    value: float


class Sampler:
    """
    Periodically reads the source display's brightness.

    The timer only runs while there is a source and at least one target.
    Consecutive duplicate samples are never emitted.
    """

    def __init__(
        self,
        loop,
        read: Callable[[DisplayHandle], Sample],
        interval: float = 0.1,
    ):
        """
        Args:
            loop: Event loop providing call_later()
            read: Brightness read primitive for the source display
            interval: Seconds between reads while tracking
        """
        self._loop = loop
        self._read = read
        self.interval = interval
        self._source: Optional[DisplayHandle] = None
        self._timer = None
        self._last = _UNSET
        self._callbacks: List[SampleCallback] = []

    def subscribe(self, callback: SampleCallback):
        self._callbacks.append(callback)

    @property
    def is_running(self) -> bool:
        """True while the sampling timer is armed."""
        return self._timer is not None

    @property
    def last_sample(self) -> Sample:
        return None if self._last is _UNSET else self._last

    def restart(self, topology: Topology):
        """Cancel any running timer and start over against a new topology."""
        self.cancel()
        if topology.can_sync:
            self._source = topology.source
            logger.debug(f"Sampling {self._source} every {self.interval}s")
            self._arm()
        else:
            # Nothing to sync, don't keep a timer around
            self._source = None
            self._emit(None)

    def cancel(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def reset(self):
        """Stop sampling and forget the last emitted sample."""
        self.cancel()
        self._source = None
        self._last = _UNSET

    def _arm(self):
        self._timer = self._loop.call_later(self.interval, self._tick)

    def _tick(self):
        self._timer = None
        if self._source is None:
            return
        self._arm()
        sample = self._read_source(self._source)
        self._emit(sample)

    def _read_source(self, source: DisplayHandle) -> Sample:
        try:
            value = self._read(source)
        except (BrightnessIOError, OSError) as e:
            logger.debug(f"Reading {source} failed: {e}")
            return None
        except Exception:
            logger.exception(f"Unexpected error reading {source}")
            return None
        if value is None:
            return None
        return clamp(float(value), 0.0, 1.0)

    def _emit(self, sample: Sample):
        if sample == self._last:
            return
        self._last = sample
        logger.debug(f"Source brightness: {sample}")
        _notify(self._callbacks, sample, "sampler")


class QuirkCompensator:
    """
    Restores the pre-sleep brightness when the source stops reporting.

    Some panels report a bogus value (often full brightness) right before they
    go dark. When the source goes from a value to unavailable, the value seen
    ``delay`` seconds earlier is emitted again before the unavailable sample.
    """

    def __init__(self, loop, delay: float = 2.0):
        self._loop = loop
        self.delay = delay
        self._past: Sample = None
        self._pending: Deque = deque()
        self._callbacks: List[SampleCallback] = []

    def subscribe(self, callback: SampleCallback):
        self._callbacks.append(callback)

    @property
    def past(self) -> Sample:
        """The sample as it was ``delay`` seconds ago."""
        return self._past

    def push(self, current: Sample) -> List[Sample]:
        """
        Handle one deduplicated sample.

        Returns:
            The samples emitted downstream, in order
        """
        past = self._past
        # Aging a value into an unchanged history is a no-op, skip the timer
        if self._pending or current != past:
            self._pending.append(self._loop.call_later(self.delay, self._age, current))

        if current is None and past is not None:
            logger.info(f"Source became unavailable, restoring brightness from {self.delay}s ago: {past:.2f}")
            emitted = [past, current]
        else:
            emitted = [current]

        for sample in emitted:
            _notify(self._callbacks, sample, "compensator")
        return emitted

    def reset(self):
        """Forget the delayed history."""
        while self._pending:
            self._pending.popleft().cancel()
        self._past = None

    def _age(self, sample: Sample):
        if self._pending:
            self._pending.popleft()
        self._past = sample


class Actuator:
    """Applies brightness values to target displays."""

    def __init__(self, write: Callable[[DisplayHandle, float], None]):
        self._write = write

    def apply(self, actuation: Actuation):
        logger.debug(f"Setting {actuation.target} to {actuation.value:.3f}")
        self._write(actuation.target, actuation.value)


class Mixer:
    """
    Combines compensated samples with the latest offset and targets.

    Unavailable samples produce nothing; targets keep their last brightness.
    """

    def __init__(self, topology: TopologyState, offset: OffsetState, actuator: Actuator):
        self._topology = topology
        self._offset = offset
        self._actuator = actuator
        self._latest: Sample = None

    @property
    def latest(self) -> Sample:
        return self._latest

    def push(self, sample: Sample) -> List[Actuation]:
        self._latest = sample
        return self._mix(sample)

    def refresh(self) -> List[Actuation]:
        """Re-apply the latest sample after the offset or targets changed."""
        return self._mix(self._latest)

    def reset(self):
        self._latest = None

    def mix(self, sample: Sample) -> List[Actuation]:
        """Compute the actuations for a sample without applying them."""
        if sample is None:
            return []
        adjusted = clamp(sample + self._offset.offset, 0.0, 1.0)
        return [Actuation(target, adjusted) for target in sorted(self._topology.targets)]

    def _mix(self, sample: Sample) -> List[Actuation]:
        actuations = self.mix(sample)
        for actuation in actuations:
            self._actuator.apply(actuation)
        return actuations


class StatusReporter:
    """Derives Active/Inactive from the sampler output."""

    def __init__(self, sink=None):
        """
        Args:
            sink: Optional object with set_status(text) to notify
        """
        self._sink = sink
        self._status: Optional[Status] = None
        self._callbacks: List[Callable[[Status], None]] = []

    @property
    def status(self) -> Optional[Status]:
        """Latest status, or None before the first sample."""
        return self._status

    def on_status_changed(self, callback: Callable[[Status], None]):
        self._callbacks.append(callback)

    def push(self, sample: Sample):
        status = Status.ACTIVE if sample is not None else Status.INACTIVE
        if status == self._status:
            return
        self._status = status
        logger.info(f"Status: {status.value}")
        if self._sink is not None:
            try:
                self._sink.set_status(status.value)
            except Exception:
                logger.exception("Error updating status sink")
        _notify(self._callbacks, status, "status")
