"""
Frame Loop Module - Cancelable Per-Frame Task
=============================================
Runs a step function once per frame until cancelled. A failing step is
logged and recorded, and the loop moves on to the next frame.
"""

import logging
import threading
import time
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class FrameLoop:
    """
    Repeating task with an external cancellation flag.

    ``run()`` blocks the calling thread (use it for the GUI thread, since
    OpenCV windows must be driven from there); ``start()`` runs the same
    loop on a daemon thread.

    Attributes:
        error: Message of the most recent failed step (sticky until cleared)
        iterations: Number of steps attempted
    """

    def __init__(
        self,
        step: Callable[[], None],
        interval: float = 1.0 / 30,
        name: str = "frame-loop"
    ):
        """
        Args:
            step: Work for one frame
            interval: Seconds to wait between steps
            name: Thread name when started in the background
        """
        self._step = step
        self.interval = interval
        self.name = name

        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.error: Optional[str] = None
        self.iterations = 0
        self.failures = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self):
        """Run until cancel() is called."""
        logger.debug("%s started", self.name)
        while not self._cancelled.is_set():
            started = time.monotonic()
            self.iterations += 1
            try:
                self._step()
            except Exception as e:
                self.failures += 1
                self.error = str(e) or e.__class__.__name__
                logger.exception("%s: step failed", self.name)

            remaining = self.interval - (time.monotonic() - started)
            if remaining > 0:
                self._cancelled.wait(remaining)
        logger.debug("%s stopped after %d iterations", self.name, self.iterations)

    def start(self) -> threading.Thread:
        """Run the loop on a background thread."""
        if self.running:
            raise RuntimeError(f"{self.name} is already running")
        self._cancelled.clear()
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()
        return self._thread

    def cancel(self, timeout: Optional[float] = 1.0):
        """Stop scheduling further steps and wait for a background thread."""
        self._cancelled.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            self._thread = None

    def clear_error(self):
        self.error = None
