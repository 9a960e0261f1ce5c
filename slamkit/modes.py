"""Thread-safe requests for localization mode, resets and map changes."""

from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass(frozen=True)
class ModeChange:
    """Pending localization-mode transitions taken from a ModeRequests."""

    activate: bool = False
    deactivate: bool = False

    def __bool__(self):
        return self.activate or self.deactivate


class ModeRequests:
    """Flags set by the user and consumed by the tracking loop."""

    def __init__(self):
        self._mode_lock = threading.Lock()
        self._reset_lock = threading.Lock()
        self._activate = False
        self._deactivate = False
        self._reset = False

    def activate_localization_mode(self):
        """Ask to stop map building and only track the camera."""
        with self._mode_lock:
            self._activate = True

    def deactivate_localization_mode(self):
        """Ask to resume map building."""
        with self._mode_lock:
            self._deactivate = True

    def request_reset(self):
        """Ask for the map to be cleared before the next frame."""
        with self._reset_lock:
            self._reset = True

    def take_mode_change(self):
        """Return the pending mode change and clear it."""
        with self._mode_lock:
            change = ModeChange(activate=self._activate, deactivate=self._deactivate)
            self._activate = False
            self._deactivate = False
        return change

    def take_reset(self):
        """Return whether a reset was requested, clearing the request."""
        with self._reset_lock:
            requested = self._reset
            self._reset = False
        return requested


class MapChangeWatcher:
    """Reports whether the map's big-change index moved since the last call."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last = 0

    def changed(self, current_index):
        """Return True if ``current_index`` is newer than the last one seen."""
        with self._lock:
            if self._last < current_index:
                self._last = current_index
                return True
            return False