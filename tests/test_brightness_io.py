#!/usr/bin/env python3
"""
Tests for routing brightness reads and writes to backlight and DDC devices.
"""

import shutil
import sys
import tempfile
import unittest
from unittest.mock import Mock, patch
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from brightness_sync.brightness_io import DDCWriter, SystemBrightnessIO
from brightness_sync.exceptions import BrightnessIOError, DDCError
from brightness_sync.topology import DisplayHandle
from fakes import TARGET_A, TARGET_B, make_backlight


class TestDDCWriter(unittest.TestCase):
    """Pending DDC writes keep only the newest value per display."""

    def setUp(self):
        self.controllers = {TARGET_A: Mock(), TARGET_B: Mock()}
        self.writer = DDCWriter(self.controllers.__getitem__)

    def test_coalesces_per_display(self):
        self.writer.submit(TARGET_A, 0.2)
        self.writer.submit(TARGET_B, 0.1)
        self.writer.submit(TARGET_A, 0.4)

        self.assertEqual(self.writer.flush(), 2)
        self.controllers[TARGET_A].set_brightness_fraction.assert_called_once_with(0.4)
        self.controllers[TARGET_B].set_brightness_fraction.assert_called_once_with(0.1)
        self.assertEqual(self.writer.pending, {})

    def test_failure_logged_not_retried(self):
        self.controllers[TARGET_A].set_brightness_fraction.side_effect = DDCError("no ack")
        self.writer.submit(TARGET_A, 0.2)
        self.writer.submit(TARGET_B, 0.3)

        with self.assertLogs('brightness_sync.brightness_io', level='WARNING'):
            self.assertEqual(self.writer.flush(), 1)
        self.assertEqual(self.writer.flush(), 0)
        self.assertEqual(self.controllers[TARGET_A].set_brightness_fraction.call_count, 1)

    def test_thread_writes_submitted_values(self):
        self.writer.start()
        self.writer.submit(TARGET_A, 0.6)
        self.writer.stop()

        self.controllers[TARGET_A].set_brightness_fraction.assert_called_once_with(0.6)


class TestSystemBrightnessIO(unittest.TestCase):

    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        make_backlight(self.tmpdir, "intel_backlight", 300, 1000)
        self.io = SystemBrightnessIO(backlight_root=self.tmpdir)
        self.panel = DisplayHandle("backlight", "intel_backlight")
        patcher = patch('brightness_sync.brightness_io.find_internal_connector', return_value=None)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_reads_backlight(self):
        self.assertEqual(self.io.read(self.panel), 0.3)

    def test_writes_backlight_inline(self):
        self.io.write(self.panel, 0.5)
        self.assertEqual((self.tmpdir / "intel_backlight" / "brightness").read_text(), "500")

    def test_backlight_write_failure_logged(self):
        missing = DisplayHandle("backlight", "gone")
        with self.assertLogs('brightness_sync.brightness_io', level='WARNING'):
            self.io.write(missing, 0.5)

    def test_ddc_write_queued(self):
        self.io.write(TARGET_A, 0.7)
        self.assertEqual(self.io.writer.pending, {TARGET_A: 0.7})

    def test_ddc_controller_per_bus(self):
        controller = self.io.controller_for(TARGET_A)

        self.assertEqual(controller.bus, 5)
        self.assertIs(self.io.controller_for(DisplayHandle("ddc", "5")), controller)

    def test_invalid_bus(self):
        with self.assertRaises(BrightnessIOError):
            self.io.controller_for(DisplayHandle("ddc", "DP-1"))

    def test_unknown_kind(self):
        with self.assertRaises(BrightnessIOError):
            self.io.read(DisplayHandle("usb", "1"))


if __name__ == '__main__':
    unittest.main()
