"""
Diagnostics - Plain-text report of what the app can see
=======================================================
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from typing import List

from .backlight import find_backlights
from .discovery import DisplayDiscovery, is_internal_monitor, monitor_matches
from .exceptions import BrightnessIOError

logger = logging.getLogger(__name__)


@dataclass
class XrandrOutput:
    """One xrandr output line."""
    name: str
    connected: bool
    primary: bool
    geometry: str = ""


def get_xrandr_outputs() -> List[XrandrOutput]:
    """
    List xrandr outputs.

    Returns:
        Outputs in xrandr order, or an empty list if xrandr is unavailable
    """
    try:
        result = subprocess.run(
            ["xrandr", "--query"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (subprocess.SubprocessError, OSError) as e:
        logger.debug(f"Failed to query xrandr: {e}")
        return []

    outputs = []
    for line in result.stdout.split('\n'):
        # "DP-1 connected primary 2560x1440+0+0 ..." / "HDMI-1 disconnected ..."
        match = re.match(r'^(\S+)\s+(connected|disconnected)\s*(primary\s+)?(\d+x\d+\+\d+\+\d+)?', line)
        if match:
            outputs.append(XrandrOutput(
                name=match.group(1),
                connected=match.group(2) == "connected",
                primary=bool(match.group(3)),
                geometry=match.group(4) or "",
            ))
    return outputs


def collect_diagnostics(discovery: DisplayDiscovery) -> str:
    """Build the diagnostics report shown by --diagnostics and copied by the GUI."""
    lines = ["XrandrOutputs:"]
    outputs = get_xrandr_outputs()
    if not outputs:
        lines.append("  (xrandr unavailable)")
    for output in outputs:
        state = "connected" if output.connected else "disconnected"
        extra = " primary" if output.primary else ""
        geometry = f" {output.geometry}" if output.geometry else ""
        lines.append(f"  {output.name}: {state}{extra}{geometry}")

    lines.append("")
    lines.append("Backlights:")
    backlights = find_backlights(discovery.backlight_root, discovery.drm_root)
    if not backlights:
        lines.append("  (none)")
    for backlight in backlights:
        try:
            raw = f"{backlight.raw_brightness()}/{backlight.max_brightness}"
        except (BrightnessIOError, ValueError) as e:
            raw = f"unreadable ({e})"
        connector = backlight.connector_dir.name if backlight.connector_dir else "none"
        lines.append(
            f"  {backlight.name}: type={backlight.backlight_type} brightness={raw} "
            f"panel_on={backlight.is_panel_on()} connector={connector}"
        )

    lines.append("")
    lines.append("DDCDisplays:")
    topology = discovery.detect()
    if not discovery.monitors:
        lines.append("  (none)")
    for m in discovery.monitors:
        if is_internal_monitor(m):
            eligibility = "internal"
        elif monitor_matches(m, discovery.target_match):
            eligibility = "compatible"
        else:
            eligibility = "incompatible"
        lines.append(
            f"  Display {m.display_number}: Manufacturer={m.manufacturer} Model={m.model} "
            f"Serial={m.serial or 'N/A'} Bus={m.i2c_bus or 'N/A'} "
            f"Connector={m.drm_connector or 'N/A'} ({eligibility})"
        )

    lines.append("")
    lines.append(f"Topology: {topology.describe()}")
    return "\n".join(lines)
