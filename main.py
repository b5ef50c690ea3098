#!/usr/bin/env python3
"""
Brightness Sync - Follow the laptop panel's brightness on external monitors
===========================================================================

Reads the built-in display's backlight and applies the same brightness, plus
a user offset, to DDC/CI monitors. When the lid closes, the brightness from a
moment before is restored so external monitors don't flash at full brightness.

Usage:
    python main.py [--config PATH] [--no-gui] [--debug]

    Options:
        --config PATH   Path to configuration file
        --no-gui        Run without GUI (daemon mode)
        --debug         Enable debug logging
        --detect        Show source and target displays and exit
        --diagnostics   Print a diagnostics report and exit
        --offset VALUE  Save a brightness offset (-0.5 to 0.5) and exit
"""

import argparse
import logging
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional


# Set up logging first
def setup_logging(debug: bool = False, log_file: Optional[Path] = None):
    """Configure logging."""
    level = logging.DEBUG if debug else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
    )


logger = logging.getLogger(__name__)


def load_config(config_path: Optional[Path] = None):
    """Load the config file, creating it from the bundled template if missing."""
    from brightness_sync.config import Config

    config = Config(config_path)
    if not config.config_path.exists():
        logger.warning(f"No configuration file at {config.config_path}, creating one with defaults")
        if not Config.create_default_config(config.config_path):
            return config
    config.load()
    return config


def create_discovery(config):
    from brightness_sync.discovery import DisplayDiscovery

    return DisplayDiscovery(
        source_backlight=config.source.backlight,
        target_match=config.targets.match,
        target_exclude=config.targets.exclude,
    )


def detect_displays(config_path: Optional[Path] = None):
    """Detect and display the source and target displays."""
    from brightness_sync.ddc import check_ddcutil_available, check_i2c_permissions

    available, msg = check_ddcutil_available()
    if not available:
        print(f"Error: {msg}")
        return 1
    print(f"✓ {msg}")

    has_perms, msg = check_i2c_permissions()
    if not has_perms:
        print(f"Warning: {msg}")
    else:
        print(f"✓ {msg}")

    print("\nDetecting displays...")
    discovery = create_discovery(load_config(config_path))
    topology = discovery.detect()

    print(f"\nSource: {topology.source or 'none (no built-in backlight found)'}")
    if not topology.targets:
        print("Targets: none")
        print("\nTroubleshooting:")
        print("  1. Ensure DDC/CI is enabled in monitor OSD settings")
        print("  2. Try: sudo modprobe i2c-dev")
        print("  3. Check the targets.match patterns in your config")
        return 1

    print(f"Targets ({len(topology.targets)}):")
    for target in sorted(topology.targets):
        print(f"  {target} (I2C bus {target.key})")
    return 0


def show_diagnostics(config_path: Optional[Path] = None):
    """Print the diagnostics report."""
    from brightness_sync.diagnostics import collect_diagnostics

    print(collect_diagnostics(create_discovery(load_config(config_path))))
    return 0


class BrightnessSyncApp:
    """
    Main application controller.

    Coordinates all components: configuration, display discovery,
    brightness I/O, the sync engine and the GUI.
    """

    def __init__(self, config_path: Optional[Path] = None, gui_enabled: bool = True):
        """
        Initialize the application.

        Args:
            config_path: Path to configuration file
            gui_enabled: Whether to show the status panel
        """
        self.config_path = config_path
        self.gui_enabled = gui_enabled
        self._running = False
        self._stopped = False

        # Components (initialized in start())
        self.config = None
        self.settings = None
        self.discovery = None
        self.watcher = None
        self.io = None
        self.service = None
        self.panel = None

    def start(self) -> bool:
        """Start the application."""
        from brightness_sync import __version__
        from brightness_sync.brightness_io import SystemBrightnessIO
        from brightness_sync.config import SettingsStore
        from brightness_sync.ddc import check_ddcutil_available, check_i2c_permissions
        from brightness_sync.discovery import DisplayWatcher
        from brightness_sync.service import SyncService

        logger.info(f"Starting Brightness Sync v{__version__}...")

        # Check prerequisites
        available, msg = check_ddcutil_available()
        if not available:
            logger.error(msg)
            return False
        logger.info(msg)

        has_perms, msg = check_i2c_permissions()
        if not has_perms:
            logger.warning(msg)

        self.config = load_config(self.config_path)
        self.settings = SettingsStore(self.config)

        self.discovery = create_discovery(self.config)
        self.watcher = DisplayWatcher(self.discovery, poll_interval=self.config.discovery.poll_interval)

        self.io = SystemBrightnessIO(
            ddc_retry_count=self.config.ddc.retry_count,
            ddc_sleep_multiplier=self.config.ddc.sleep_multiplier,
        )
        self.io.start()

        if self.gui_enabled:
            self._init_gui(__version__)

        # Initial detection can take seconds; keep it off the engine loop
        self.discovery.refresh()

        self.service = SyncService(self._create_engine)
        if not self.service.start():
            logger.error("Could not start the sync engine")
            self.stop()
            return False

        # Discovery runs on the watcher thread from here on
        self.watcher.start()

        self._running = True
        logger.info("Brightness Sync started successfully")
        return True

    def _create_engine(self, loop):
        """Build the engine on the service's loop thread."""
        from brightness_sync.engine import SyncEngine

        engine = SyncEngine(
            loop,
            discovery=self.discovery,
            io=self.io,
            settings=self.settings,
            status_sink=self.panel or _LogStatusSink(),
            update_interval=self.config.sync.update_interval,
            quirk_delay=self.config.sync.quirk_delay,
        )
        return engine

    def _init_gui(self, version: str):
        """Create and start the status panel."""
        from brightness_sync.gui import SyncPanelCTk

        self.panel = SyncPanelCTk(
            version=version,
            offset=self.settings.get_offset(),
            theme=self.config.gui.theme,
            releases_url=self.config.gui.releases_url,
        )
        self.panel.set_callback('offset_change', self.settings.set_offset)
        self.panel.set_callback('copy_diagnostics', self._copy_diagnostics)
        self.panel.set_callback('quit', self._request_quit)
        self.settings.on_offset_changed(self.panel.set_offset)
        self.panel.start()

    def _copy_diagnostics(self):
        """Collect diagnostics off the GUI thread, then copy them."""
        from brightness_sync.diagnostics import collect_diagnostics

        def worker():
            try:
                report = collect_diagnostics(self.discovery)
            except Exception as e:
                logger.error(f"Failed to collect diagnostics: {e}")
                return
            if self.panel:
                self.panel.copy_to_clipboard(report)

        threading.Thread(target=worker, name="diagnostics", daemon=True).start()

    def _request_quit(self):
        logger.info("Quit requested")
        self._running = False

    def stop(self):
        """Stop the application."""
        # Guard against double-stop
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping Brightness Sync...")
        self._running = False

        if self.watcher:
            self.watcher.stop()
        if self.service:
            self.service.stop()
        if self.io:
            self.io.stop()

        # Stop GUI last
        if self.panel:
            self.panel.stop()

        logger.info("Brightness Sync stopped")

    def run(self):
        """Run the application (blocking)."""
        if not self.start():
            return 1

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}")
            self._running = False

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        # Main loop - poll frequently so we respond quickly to quit
        try:
            while self._running:
                time.sleep(0.1)
        except KeyboardInterrupt:
            pass

        self.stop()
        return 0


class _LogStatusSink:
    """Status sink for daemon mode."""

    def set_status(self, text: str):
        logger.info(f"Sync {text.lower()}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Brightness Sync - follow the built-in display's brightness on DDC/CI monitors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        '--config', '-c',
        type=Path,
        help='Path to configuration file'
    )
    parser.add_argument(
        '--no-gui',
        action='store_true',
        help='Run without GUI (daemon mode)'
    )
    parser.add_argument(
        '--debug', '-d',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--detect',
        action='store_true',
        help='Show source and target displays and exit'
    )
    parser.add_argument(
        '--diagnostics',
        action='store_true',
        help='Print a diagnostics report and exit'
    )
    parser.add_argument(
        '--offset',
        type=float,
        metavar='VALUE',
        help='Save brightness offset (-0.5 to 0.5) and exit'
    )

    args = parser.parse_args()

    # Setup logging
    log_file = None
    if not (args.detect or args.diagnostics or args.offset is not None):
        log_file = Path.home() / ".local" / "share" / "brightness-sync" / "brightness-sync.log"
    setup_logging(args.debug, log_file)

    # Handle quick commands
    if args.detect:
        return detect_displays(args.config)

    if args.diagnostics:
        return show_diagnostics(args.config)

    if args.offset is not None:
        from brightness_sync.config import SettingsStore

        stored = SettingsStore(load_config(args.config)).set_offset(args.offset)
        print(f"Brightness offset set to {stored:+.2f}")
        return 0

    app = BrightnessSyncApp(
        config_path=args.config,
        gui_enabled=not args.no_gui,
    )
    return app.run()


if __name__ == '__main__':
    sys.exit(main())
