#!/usr/bin/env python3
"""
Tests for source/target discovery and the diagnostics report.
"""

import shutil
import sys
import tempfile
import unittest
from unittest.mock import Mock, patch
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from brightness_sync.ddc import MonitorInfo
from brightness_sync.diagnostics import collect_diagnostics, get_xrandr_outputs
from brightness_sync.discovery import DisplayDiscovery, monitor_matches
from brightness_sync.topology import DisplayHandle, Topology
from fakes import make_backlight, make_connector


DELL = MonitorInfo(1, "DELL U2720Q", "ABC123", "DEL", "/dev/i2c-5", "card1-DP-1")
LG = MonitorInfo(2, "LG HDR 4K", "", "GSM", "/dev/i2c-7", "card1-HDMI-A-1")
PANEL = MonitorInfo(3, "Panel", "", "BOE", "/dev/i2c-3", "card1-eDP-1")

XRANDR_OUTPUT = """\
Screen 0: minimum 320 x 200, current 4480 x 1440, maximum 16384 x 16384
eDP-1 connected primary 1920x1080+0+360 (normal left inverted right x axis y axis) 344mm x 194mm
   1920x1080     60.00*+
DP-1 connected 2560x1440+1920+0 (normal left inverted right x axis y axis) 597mm x 336mm
HDMI-1 disconnected (normal left inverted right x axis y axis)
"""


class TestMonitorMatching(unittest.TestCase):

    def test_wildcard_matches_everything(self):
        self.assertTrue(monitor_matches(DELL, ["*"]))

    def test_matches_model_case_insensitive(self):
        self.assertTrue(monitor_matches(LG, ["lg*"]))
        self.assertFalse(monitor_matches(DELL, ["lg*"]))

    def test_matches_serial(self):
        self.assertTrue(monitor_matches(DELL, ["ABC123"]))

    def test_matches_manufacturer_and_model(self):
        self.assertTrue(monitor_matches(DELL, ["DEL DELL*"]))


class DiscoveryTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.backlight_root = self.tmpdir / "backlight"
        self.drm_root = self.tmpdir / "drm"
        self.backlight_root.mkdir()
        self.drm_root.mkdir()
        self.connector = make_connector(self.drm_root)
        make_backlight(self.backlight_root, "intel_backlight")
        self.monitors = [DELL, LG, PANEL]

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def make_discovery(self, **kwargs):
        return DisplayDiscovery(
            detect_monitors=lambda: list(self.monitors),
            backlight_root=self.backlight_root,
            drm_root=self.drm_root,
            **kwargs
        )


class TestDisplayDiscovery(DiscoveryTestCase):

    def test_detects_source_and_targets(self):
        topology = self.make_discovery().detect()

        self.assertEqual(topology.source, DisplayHandle("backlight", "intel_backlight"))
        self.assertEqual(
            topology.targets,
            frozenset({DisplayHandle("ddc", "5"), DisplayHandle("ddc", "7")}),
        )

    def test_labels(self):
        topology = self.make_discovery().detect()

        self.assertEqual(str(topology.source), "Built-in display (intel_backlight)")
        self.assertEqual(
            sorted(str(t) for t in topology.targets),
            ["DEL DELL U2720Q", "GSM LG HDR 4K"],
        )

    def test_target_patterns(self):
        topology = self.make_discovery(target_match=["DEL*"]).detect()
        self.assertEqual(topology.targets, frozenset({DisplayHandle("ddc", "5")}))

    def test_target_exclusion(self):
        topology = self.make_discovery(target_exclude=["lg*"]).detect()
        self.assertEqual(topology.targets, frozenset({DisplayHandle("ddc", "5")}))

    def test_monitor_without_bus_skipped(self):
        self.monitors = [MonitorInfo(4, "Odd", "", "XYZ", "", "card1-DP-2")]
        with self.assertLogs('brightness_sync.discovery', level='WARNING'):
            topology = self.make_discovery().detect()
        self.assertEqual(topology.targets, frozenset())

    def test_disconnected_panel_has_no_source(self):
        (self.connector / "status").write_text("disconnected\n")

        topology = self.make_discovery().detect()

        self.assertIsNone(topology.source)
        self.assertFalse(topology.can_sync)

    def test_configured_backlight(self):
        make_backlight(self.backlight_root, "acpi_video0", kind="firmware")

        self.assertEqual(self.make_discovery().detect().source.key, "acpi_video0")
        discovery = self.make_discovery(source_backlight="intel_backlight")
        self.assertEqual(discovery.detect().source.key, "intel_backlight")

    def test_unknown_configured_backlight(self):
        discovery = self.make_discovery(source_backlight="nope")
        with self.assertLogs('brightness_sync.discovery', level='WARNING'):
            self.assertIsNone(discovery.detect().source)

    def test_notifies_only_on_change(self):
        discovery = self.make_discovery()
        callback = Mock()
        discovery.on_topology_changed(callback)

        self.assertTrue(discovery.refresh())
        self.assertFalse(discovery.refresh())
        self.assertEqual(callback.call_count, 1)

        self.monitors = [DELL]
        self.assertTrue(discovery.refresh())
        self.assertEqual(callback.call_count, 2)
        self.assertEqual(callback.call_args[0][0].targets, frozenset({DisplayHandle("ddc", "5")}))

    def test_current_topology_never_detects(self):
        detect = Mock(return_value=[DELL])
        discovery = DisplayDiscovery(
            detect_monitors=detect,
            backlight_root=self.backlight_root,
            drm_root=self.drm_root,
        )

        self.assertEqual(discovery.current_topology(), Topology())
        detect.assert_not_called()

        discovery.refresh()
        first = discovery.current_topology()
        second = discovery.current_topology()

        self.assertIs(first, second)
        self.assertEqual(first.targets, frozenset({DisplayHandle("ddc", "5")}))
        detect.assert_called_once_with()


class TestDiagnostics(DiscoveryTestCase):

    @patch('brightness_sync.diagnostics.subprocess.run')
    def test_xrandr_outputs(self, mock_run):
        mock_run.return_value = Mock(stdout=XRANDR_OUTPUT)

        outputs = get_xrandr_outputs()

        self.assertEqual([o.name for o in outputs], ["eDP-1", "DP-1", "HDMI-1"])
        self.assertTrue(outputs[0].primary)
        self.assertEqual(outputs[1].geometry, "2560x1440+1920+0")
        self.assertFalse(outputs[2].connected)

    @patch('brightness_sync.diagnostics.subprocess.run')
    def test_report_sections(self, mock_run):
        mock_run.return_value = Mock(stdout=XRANDR_OUTPUT)

        report = collect_diagnostics(self.make_discovery(target_match=["DEL*"]))

        self.assertIn("XrandrOutputs:", report)
        self.assertIn("  DP-1: connected 2560x1440+1920+0", report)
        self.assertIn("intel_backlight: type=raw brightness=500/1000 panel_on=True", report)
        self.assertIn("Model=DELL U2720Q Serial=ABC123 Bus=/dev/i2c-5 Connector=card1-DP-1 (compatible)", report)
        self.assertIn("Model=LG HDR 4K", report)
        self.assertIn("(incompatible)", report)
        self.assertIn("(internal)", report)
        self.assertIn("Topology: source=Built-in display (intel_backlight), targets=[DEL DELL U2720Q]", report)

    @patch('brightness_sync.diagnostics.subprocess.run')
    def test_report_without_xrandr(self, mock_run):
        mock_run.side_effect = FileNotFoundError("xrandr")
        self.monitors = []

        report = collect_diagnostics(self.make_discovery())

        self.assertIn("(xrandr unavailable)", report)
        self.assertIn("DDCDisplays:\n  (none)", report)


if __name__ == '__main__':
    unittest.main()
