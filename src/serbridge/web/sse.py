"""
Server-Sent Event framing and the queue-backed sink used by read streams.
"""

import logging
import queue
import threading
from typing import Callable, Iterator, Optional

from serbridge.serial.session import Sink, StreamEvent

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ":\n\n"


def encode_event(event: StreamEvent) -> str:
    """Frame an event for a text/event-stream response."""
    if event.comment:
        return KEEPALIVE_FRAME
    frame = "data: " + event.data.replace("\n", "\ndata: ")
    if event.event:
        frame = f"event: {event.event}\n" + frame
    return frame + "\n\n"


class QueueSink(Sink):
    """
    Sink feeding a streaming HTTP response.

    The event loop pushes frames into a thread-safe queue; the response
    generator, running on the request thread, drains it. Closing the
    generator (client gone) fires the disconnect callbacks.
    """

    def __init__(self):
        self._queue: queue.Queue[Optional[str]] = queue.Queue()
        self._callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()
        self._disconnected = False

    def push(self, event: StreamEvent) -> None:
        self._queue.put(encode_event(event))

    def end(self) -> None:
        self._queue.put(None)

    def add_disconnect_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._disconnected:
                self._callbacks.append(callback)
                return
        callback()

    def disconnect(self) -> None:
        """Run the disconnect callbacks once."""
        with self._lock:
            if self._disconnected:
                return
            self._disconnected = True
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def stream(self) -> Iterator[str]:
        """Yield frames until the stream is ended or the client goes away."""
        try:
            while True:
                frame = self._queue.get()
                if frame is None:
                    return
                yield frame
        finally:
            self.disconnect()
