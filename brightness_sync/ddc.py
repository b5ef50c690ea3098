"""
DDC/CI Controller - Target display brightness through ddcutil
=============================================================
"""

import glob
import grp
import logging
import os
import re
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import DDCError

logger = logging.getLogger(__name__)


@dataclass
class MonitorInfo:
    """Information about a detected monitor."""
    display_number: int
    model: str
    serial: str
    manufacturer: str
    i2c_bus: str
    drm_connector: str = ""  # DRM connector name (e.g., "card1-DP-1")

    def __str__(self):
        return f"{self.manufacturer} {self.model} (Display {self.display_number})"

    @property
    def bus_number(self) -> Optional[int]:
        """I2C bus number parsed from e.g. "/dev/i2c-5"."""
        match = re.search(r'(\d+)$', self.i2c_bus or "")
        return int(match.group(1)) if match else None


@dataclass
class VCPFeature:
    """VCP feature information."""
    code: int
    current_value: int
    max_value: int


class DDCController:
    """
    Controller for DDC/CI communication with one monitor via ddcutil.
    """

    VCP_BRIGHTNESS = 0x10

    # Verification reads are slow and brightness writes work without them
    VCP_NOVERIFY = {0x10}

    def __init__(
        self,
        bus: int,
        retry_count: int = 1,
        sleep_multiplier: float = 0.5,
    ):
        """
        Initialize DDC controller.

        Args:
            bus: I2C bus number of the monitor (stable across detects)
            retry_count: Number of attempts for failed commands
            sleep_multiplier: Multiplier for inter-command delays
        """
        self.bus = bus
        self.retry_count = max(1, retry_count)
        self.sleep_multiplier = sleep_multiplier
        self._lock = threading.Lock()
        self._last_command_time = 0.0
        self._min_command_interval = 0.1 * sleep_multiplier
        # Cache of last-set VCP values to avoid redundant DDC writes
        self._vcp_cache: Dict[int, int] = {}
        self._max_values: Dict[int, int] = {}

    @property
    def name(self) -> str:
        return f"bus {self.bus}"

    def _build_display_args(self) -> List[str]:
        """Build ddcutil arguments for display selection and speed."""
        return [
            "--sleep-multiplier", f"{self.sleep_multiplier:.1f}",
            "--bus", str(self.bus),
        ]

    def _run_ddcutil(
        self,
        command: List[str],
        timeout: float = 5.0,
    ) -> subprocess.CompletedProcess:
        """
        Run a ddcutil command with retry logic.

        Args:
            command: Command arguments to pass to ddcutil
            timeout: Command timeout in seconds

        Returns:
            CompletedProcess result

        Raises:
            DDCError: If command fails after retries
        """
        with self._lock:
            # Rate limiting
            elapsed = time.time() - self._last_command_time
            if elapsed < self._min_command_interval:
                time.sleep(self._min_command_interval - elapsed)

            full_command = ["ddcutil"] + self._build_display_args() + command
            logger.debug(f"DDC[{self.name}] Running: {' '.join(full_command)}")

            last_error: Optional[Exception] = None
            for attempt in range(self.retry_count):
                attempt_start = time.time()
                try:
                    result = subprocess.run(
                        full_command,
                        capture_output=True,
                        text=True,
                        timeout=timeout,
                        check=True,
                    )
                    self._last_command_time = time.time()
                    logger.debug(f"DDC[{self.name}] Command completed in {time.time() - attempt_start:.2f}s")
                    return result
                except subprocess.CalledProcessError as e:
                    last_error = e
                    stderr_msg = e.stderr.strip() if e.stderr else "(no stderr)"
                    logger.warning(
                        f"DDC[{self.name}] Command failed (attempt {attempt + 1}/{self.retry_count}): "
                        f"{' '.join(command)} → {stderr_msg}"
                    )
                    if attempt < self.retry_count - 1:
                        time.sleep(0.3 * (attempt + 1))
                except subprocess.TimeoutExpired as e:
                    last_error = e
                    logger.warning(
                        f"DDC[{self.name}] Command timed out after {time.time() - attempt_start:.1f}s "
                        f"(attempt {attempt + 1}/{self.retry_count}): {' '.join(command)}"
                    )
                except FileNotFoundError as e:
                    raise DDCError("ddcutil not found") from e

            self._last_command_time = time.time()
        raise DDCError(f"DDC command '{' '.join(command)}' failed after {self.retry_count} attempts: {last_error}")

    @staticmethod
    def detect_monitors() -> List[MonitorInfo]:
        """
        Detect all DDC/CI capable monitors.

        Returns:
            List of MonitorInfo objects for each detected monitor
        """
        try:
            result = subprocess.run(
                ["ddcutil", "detect", "--terse"],
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (subprocess.SubprocessError, OSError) as e:
            logger.error(f"Failed to detect monitors: {e}")
            return []
        return DDCController.parse_detect_output(result.stdout)

    @staticmethod
    def parse_detect_output(output: str) -> List[MonitorInfo]:
        """Parse ``ddcutil detect --terse`` output."""
        monitors = []
        current: Dict[str, Any] = {}

        def flush():
            if current.get('display_number'):
                monitors.append(MonitorInfo(
                    display_number=current['display_number'],
                    model=current.get('model', 'Unknown'),
                    serial=current.get('serial', ''),
                    manufacturer=current.get('manufacturer', 'Unknown'),
                    i2c_bus=current.get('i2c_bus', ''),
                    drm_connector=current.get('drm_connector', ''),
                ))

        for line in output.split('\n'):
            line = line.strip()
            if not line:
                flush()
                current = {}
                continue

            # "Invalid display" blocks have no display number and are skipped
            if line.startswith('Display'):
                match = re.match(r'Display (\d+)', line)
                if match:
                    current['display_number'] = int(match.group(1))
            elif ':' in line:
                key, _, value = line.partition(':')
                key = key.strip().lower().replace(' ', '_')
                value = value.strip()

                # Terse format has "Monitor: MFG:Model:Serial"
                if key == 'monitor' and ':' in value:
                    parts = value.split(':')
                    current['manufacturer'] = parts[0] or 'Unknown'
                    if len(parts) >= 2:
                        current['model'] = parts[1] or 'Unknown'
                    if len(parts) >= 3:
                        current['serial'] = parts[2]
                elif key == 'i2c_bus':
                    current['i2c_bus'] = value
                elif key == 'drm_connector':
                    current['drm_connector'] = value
        flush()

        for m in monitors:
            logger.debug(f"Detected {m} on {m.i2c_bus or 'unknown bus'}")
        return monitors

    def get_vcp(self, feature_code: int) -> VCPFeature:
        """
        Get current value of a continuous VCP feature.

        Args:
            feature_code: VCP feature code (e.g., 0x10 for brightness)

        Returns:
            VCPFeature with current and max values

        Raises:
            DDCError: If the read fails or cannot be parsed
        """
        result = self._run_ddcutil(["getvcp", f"0x{feature_code:02x}"])

        # "VCP code 0x10 (Brightness): current value = 50, max value = 100"
        match = re.search(
            r'VCP code 0x([0-9A-Fa-f]+)\s+\([^)]+\).*?'
            r'current value\s*=\s*(\d+).*?max value\s*=\s*(\d+)',
            result.stdout,
            re.IGNORECASE
        )
        if not match:
            raise DDCError(f"Failed to parse VCP response: {result.stdout.strip()}")

        feature = VCPFeature(
            code=int(match.group(1), 16),
            current_value=int(match.group(2)),
            max_value=int(match.group(3)),
        )
        self._vcp_cache[feature_code] = feature.current_value
        self._max_values[feature_code] = feature.max_value
        return feature

    def set_vcp(self, feature_code: int, value: int):
        """
        Set a VCP feature value.

        Args:
            feature_code: VCP feature code
            value: Value to set

        Raises:
            DDCError: If the write fails
        """
        feature_name = f"VCP 0x{feature_code:02x}"

        if self._vcp_cache.get(feature_code) == value:
            logger.debug(f"DDC[{self.name}] Skipping {feature_name} - already set to {value}")
            return

        cmd = ["setvcp", f"0x{feature_code:02x}", str(value)]
        if feature_code in self.VCP_NOVERIFY:
            cmd.append("--noverify")
        try:
            self._run_ddcutil(cmd)
        except DDCError:
            # Next attempt must actually send
            self._vcp_cache.pop(feature_code, None)
            raise
        self._vcp_cache[feature_code] = value
        logger.debug(f"DDC[{self.name}] Set {feature_name} to {value}")

    def get_max_value(self, feature_code: int) -> int:
        """Max value of a feature, read once from the monitor."""
        if feature_code not in self._max_values:
            self.get_vcp(feature_code)
        return self._max_values[feature_code] or 100

    def get_brightness_fraction(self) -> float:
        """Current brightness scaled to [0, 1]."""
        feature = self.get_vcp(self.VCP_BRIGHTNESS)
        if feature.max_value <= 0:
            raise DDCError(f"DDC[{self.name}] reports no brightness range")
        return feature.current_value / feature.max_value

    def set_brightness_fraction(self, value: float):
        """Set brightness from a value in [0, 1]."""
        max_value = self.get_max_value(self.VCP_BRIGHTNESS)
        raw = int(round(max(0.0, min(1.0, value)) * max_value))
        self.set_vcp(self.VCP_BRIGHTNESS, raw)


def check_ddcutil_available() -> Tuple[bool, str]:
    """
    Check if ddcutil is installed and working.

    Returns:
        Tuple of (is_available, message)
    """
    try:
        result = subprocess.run(
            ["ddcutil", "--version"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            version = result.stdout.split('\n')[0] if result.stdout else "unknown"
            return True, f"ddcutil found: {version}"
        return False, f"ddcutil error: {result.stderr}"
    except FileNotFoundError:
        return False, "ddcutil not found. Install with: sudo apt install ddcutil"
    except subprocess.TimeoutExpired:
        return False, "ddcutil timed out"
    except OSError as e:
        return False, f"ddcutil could not be run: {e}"


def check_i2c_permissions() -> Tuple[bool, str]:
    """
    Check if user has permissions to access I2C devices.

    Returns:
        Tuple of (has_permission, message)
    """
    try:
        i2c_group = grp.getgrnam('i2c')
        if os.getuid() == 0 or i2c_group.gr_gid in os.getgroups():
            return True, "User has i2c group access"
    except KeyError:
        pass

    i2c_devices = glob.glob('/dev/i2c-*')
    if not i2c_devices:
        return False, "No I2C devices found. Load i2c-dev module: sudo modprobe i2c-dev"

    for device in i2c_devices:
        if os.access(device, os.R_OK | os.W_OK):
            return True, f"I2C device {device} is accessible"

    return False, (
        "Cannot access I2C devices. Add user to i2c group:\n"
        "  sudo usermod -aG i2c $USER\n"
        "Then log out and back in."
    )
