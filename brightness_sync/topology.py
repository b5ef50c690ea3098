"""
Display Topology - Source/target assignment and user offset
===========================================================
"""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

logger = logging.getLogger(__name__)

# Allowed range for the user brightness offset
OFFSET_MIN = -0.5
OFFSET_MAX = 0.5


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp value to the closed range [lower, upper]."""
    return max(lower, min(upper, value))


def clamp_offset(offset: float) -> float:
    """Clamp a brightness offset to the allowed range."""
    return clamp(float(offset), OFFSET_MIN, OFFSET_MAX)


@dataclass(frozen=True, order=True)
class DisplayHandle:
    """Identifies a physical display.

    kind is "backlight" for a sysfs panel backlight or "ddc" for a DDC/CI
    monitor. key is the backlight device name or the I2C bus number.
    """
    kind: str
    key: str
    label: str = field(default="", compare=False)

    def __str__(self):
        return self.label or f"{self.kind}:{self.key}"


@dataclass(frozen=True)
class Topology:
    """Current source display and the displays that follow it."""
    source: Optional[DisplayHandle] = None
    targets: FrozenSet[DisplayHandle] = frozenset()

    def __post_init__(self):
        # targets never contain the source
        targets = frozenset(self.targets)
        if self.source is not None:
            targets = targets - {self.source}
        object.__setattr__(self, 'targets', targets)

    @classmethod
    def build(cls, source: Optional[DisplayHandle], targets: Iterable[DisplayHandle]) -> 'Topology':
        return cls(source=source, targets=frozenset(targets))

    @property
    def can_sync(self) -> bool:
        """True when there is a source and at least one target."""
        return self.source is not None and bool(self.targets)

    def describe(self) -> str:
        source = str(self.source) if self.source else "none"
        targets = ", ".join(str(t) for t in sorted(self.targets)) or "none"
        return f"source={source}, targets=[{targets}]"


class TopologyState:
    """Holds the latest topology. Written only by discovery events."""

    def __init__(self, topology: Optional[Topology] = None):
        self._topology = topology or Topology()

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def source(self) -> Optional[DisplayHandle]:
        return self._topology.source

    @property
    def targets(self) -> FrozenSet[DisplayHandle]:
        return self._topology.targets

    def update(self, topology: Topology) -> bool:
        """
        Replace the current topology.

        Returns:
            True if the topology actually changed
        """
        if topology == self._topology:
            return False
        logger.info(f"Topology changed: {topology.describe()}")
        self._topology = topology
        return True


class OffsetState:
    """Holds the latest user brightness offset. Written only by user input."""

    def __init__(self, offset: float = 0.0):
        self._offset = clamp_offset(offset)

    @property
    def offset(self) -> float:
        return self._offset

    def update(self, offset: float) -> bool:
        """Set a new offset (clamped). Returns True if it changed."""
        offset = clamp_offset(offset)
        if offset == self._offset:
            return False
        logger.debug(f"Brightness offset changed: {self._offset:+.2f} -> {offset:+.2f}")
        self._offset = offset
        return True
