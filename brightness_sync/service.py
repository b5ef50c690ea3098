"""
Sync Service - Runs the sync engine on its own event loop thread
================================================================
"""

import asyncio
import logging
import threading
from typing import Callable, Optional

from .engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncService:
    """
    Owns the asyncio loop thread the sync engine runs on.

    The engine factory is called on the loop thread with the loop as its only
    argument, so every engine object is created and used on that thread.
    """

    def __init__(self, engine_factory: Callable[[asyncio.AbstractEventLoop], SyncEngine]):
        self._engine_factory = engine_factory
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._started = threading.Event()
        self.engine: Optional[SyncEngine] = None

    @property
    def loop(self) -> Optional[asyncio.AbstractEventLoop]:
        return self._loop

    def start(self, timeout: float = 5.0) -> bool:
        """Start the loop thread and the engine. Returns True once running."""
        if self._thread is not None:
            return True
        self._loop = asyncio.new_event_loop()
        self._loop.set_exception_handler(self._handle_loop_exception)
        self._thread = threading.Thread(target=self._run_loop, name="brightness-sync", daemon=True)
        self._thread.start()
        if not self._started.wait(timeout=timeout):
            logger.error("Sync engine did not start in time")
            return False
        return self.engine is not None

    def stop(self, timeout: float = 2.0):
        """Stop the engine and the loop thread."""
        if self._loop is None or self._thread is None:
            return
        if self._loop.is_running():
            try:
                self._loop.call_soon_threadsafe(self._shutdown)
            except RuntimeError:
                pass  # Loop closed while we were checking
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Sync service stopped")

    def call(self, callback: Callable, *args):
        """Run callback on the engine thread."""
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(callback, *args)

    def _run_loop(self):
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._startup)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()

    def _startup(self):
        try:
            self.engine = self._engine_factory(self._loop)
            self.engine.start()
        except Exception:
            logger.exception("Failed to start sync engine")
            self.engine = None
            self._loop.stop()
        finally:
            self._started.set()

    def _shutdown(self):
        if self.engine is not None:
            self.engine.stop()
        self._loop.stop()

    @staticmethod
    def _handle_loop_exception(loop, context):
        # A failing callback must not take the loop down
        exception = context.get('exception')
        message = context.get('message', 'Unhandled error')
        if exception is not None:
            logger.error(f"{message}: {exception!r}", exc_info=exception)
        else:
            logger.error(message)
