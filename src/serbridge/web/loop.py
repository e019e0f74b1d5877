"""
Background event loop for the WSGI side of the bridge.

Flask handles each request on its own thread while all device state lives on
a single asyncio loop. Request handlers submit coroutines to that loop and
wait for their results.
"""

import asyncio
import logging
import threading
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)


class LoopThread:
    """Runs an asyncio event loop on a daemon thread."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the loop thread."""
        if self.is_running:
            raise RuntimeError("Loop thread already running")
        self._thread = threading.Thread(
            target=self._run, name="serbridge-loop", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def call(self, coro: Coroutine, timeout: Optional[float] = None) -> Any:
        """
        Run a coroutine on the loop and wait for its result.

        Exceptions raised by the coroutine propagate to the caller.
        """
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout)

    def stop(self) -> None:
        """Stop the loop and wait for the thread to exit."""
        if not self.is_running:
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5.0)
        self._thread = None
        self.loop.close()
        logger.debug("Event loop stopped")
