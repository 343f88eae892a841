"""Periodic eviction of expired checkout sessions.

Runs in a daemon thread so it never blocks request handling. Read-time
eviction already hides expired sessions; the sweep only bounds memory for
orders that are never polled again.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class SessionSweeper:
    def __init__(self, app, interval_seconds):
        self.app = app
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread = None

    def run_once(self):
        """Sweep with a single consistent "now". Returns the eviction count."""
        with self.app.app_context():
            store = self.app.extensions["session_store"]
            return store.sweep(store.clock())

    def _loop(self):
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception as e:
                # Keep the thread alive; the next tick retries.
                logger.error(f"Session sweep failed: {e}", exc_info=True)

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._loop, name="session-sweeper", daemon=True
        )
        self._thread.start()
        logger.info(f"Session sweeper started (every {self.interval_seconds}s)")

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
