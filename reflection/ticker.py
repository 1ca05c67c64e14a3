"""Background 1 Hz driver for the reflection countdown."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ReflectionTicker:
    """
    Calls `tick` once per interval on a daemon thread until stopped.

    stop() sets the event first, so no tick runs after it returns (other
    than one already in progress on the ticker thread).
    """

    def __init__(self, tick: Callable[[], object], interval: float = 1.0, name: str = "reflection-ticker"):
        self._tick = tick
        self.interval = interval
        self.name = name
        self.should_stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self.should_stop.is_set()

    def start(self) -> None:
        if self._thread is not None or self.should_stop.is_set():
            return
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.debug(f"{self.name} started ({self.interval}s interval)")

    def stop(self) -> None:
        """Stop ticking and wait briefly for the thread to exit."""
        self.should_stop.set()
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        if thread.is_alive():
            thread.join(timeout=2.0)
            if thread.is_alive():
                logger.warning(f"{self.name} did not stop within timeout")

    def _loop(self) -> None:
        while not self.should_stop.wait(self.interval):
            try:
                self._tick()
            except Exception as e:
                logger.error(f"{self.name} tick error: {e}")
        logger.debug(f"{self.name} stopped")
