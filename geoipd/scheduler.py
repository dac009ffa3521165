"""
Background refresh scheduler
"""

import logging
import threading
from typing import Optional

from .errors import RefreshError

logger = logging.getLogger("geoipd.scheduler")


class RefreshScheduler:
    """Calls manager.refresh() every `interval` seconds on a daemon thread.

    Failures are logged and the loop keeps going. stop() prevents any new
    refresh from starting and waits a bounded time for an in-flight one.
    """

    def __init__(self, manager, interval: float):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.manager = manager
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("scheduler already running", extra={"component": "scheduler",
                                                               "event": "already_running"})
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="geoipd-refresh", daemon=True)
        self._thread.start()
        logger.info("refresh scheduler started", extra={"component": "scheduler", "event": "started",
                                                        "interval_sec": self.interval})

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            if self._stop.is_set():
                break
            logger.info("checking for GeoIP database updates",
                        extra={"component": "scheduler", "event": "tick"})
            self.run_once()

    def run_once(self) -> None:
        self.runs += 1
        try:
            self.manager.refresh()
        except RefreshError:
            # Already logged by the manager; keep serving the last good database
            self.failures += 1
        except Exception:
            self.failures += 1
            logger.exception("unexpected error during scheduled refresh",
                             extra={"component": "scheduler", "event": "error"})

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Request stop and wait up to timeout seconds. Returns True if the thread exited."""
        self._stop.set()
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        stopped = not thread.is_alive()
        if stopped:
            self._thread = None
            logger.info("refresh scheduler stopped", extra={"component": "scheduler", "event": "stopped"})
        else:
            logger.warning("refresh still in progress, not waiting for it",
                           extra={"component": "scheduler", "event": "stop_timeout", "timeout_sec": timeout})
        return stopped
