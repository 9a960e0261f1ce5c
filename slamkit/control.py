"""Stop, release and finish handshake between a worker thread and its owner."""

from __future__ import annotations

import threading


class StopFinishControl:
    """Thread-safe flags for pausing and terminating a worker loop."""

    def __init__(self, stopped=True, finished=True):
        self._stop_lock = threading.Lock()
        self._finish_lock = threading.Lock()
        self._stopped = bool(stopped)
        self._stop_requested = False
        self._finished = bool(finished)
        self._finish_requested = False

    def request_stop(self):
        """Ask the worker to pause; ignored while it is already stopped."""
        with self._stop_lock:
            if not self._stopped:
                self._stop_requested = True

    def stop(self):
        """Called by the worker: pause if asked to, unless finishing was requested.

        Returns True when the worker has entered the stopped state.
        """
        with self._stop_lock, self._finish_lock:
            if self._finish_requested:
                return False
            if self._stop_requested:
                self._stopped = True
                self._stop_requested = False
                return True
            return False

    def release(self):
        """Let a stopped worker resume."""
        with self._stop_lock:
            self._stopped = False

    def is_stopped(self):
        with self._stop_lock:
            return self._stopped

    def request_finish(self):
        """Ask the worker to leave its loop."""
        with self._finish_lock:
            self._finish_requested = True

    def check_finish(self):
        """Return whether finishing was requested."""
        with self._finish_lock:
            return self._finish_requested

    def set_finish(self):
        """Called by the worker once it has left its loop."""
        with self._finish_lock:
            self._finished = True

    def is_finished(self):
        with self._finish_lock:
            return self._finished