"""Do-not-disturb state machine driven by manual toggles and time windows."""

import logging
import threading
from datetime import datetime
from typing import Callable

from PySide6.QtCore import Property, QObject, QSettings, QTimer, Signal, Slot

from tidings.types.config import ConfigSnapshot
from tidings.types.dnd import DndMode, DndWindow

logger = logging.getLogger(__name__)

TICK_INTERVAL_MS = 30_000
MANUAL_KEY = "dnd/manual"


class DndScheduler(QObject):
    """Owns the DND mode.

    A manual "on" is sticky and beats the schedule. Turning DND off while a
    manual override is active hands control back to the schedule; turning it
    off while a window holds it on skips the rest of that window.
    """

    mode_changed = Signal(str)

    def __init__(
        self,
        windows: tuple[DndWindow, ...] = (),
        dnd_default: bool = False,
        settings: QSettings | None = None,
        clock: Callable[[], datetime] = datetime.now,
        tick_ms: int = TICK_INTERVAL_MS,
        parent=None,
    ):
        super().__init__(parent)
        self._windows = tuple(windows)
        self._settings = settings
        self._clock = clock
        self._lock = threading.RLock()
        self._manual_on = self._load_manual(dnd_default)
        self._skip_until: datetime | None = None

        self._tick = QTimer(self)
        self._tick.setInterval(tick_ms)
        self._tick.timeout.connect(self.evaluate)

        self._mode = self._compute(self._clock())

    def start(self):
        self._tick.start()

    def stop(self):
        self._tick.stop()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def mode(self) -> DndMode:
        return self._mode

    def is_active(self) -> bool:
        return self._mode.active

    def _get_active(self) -> bool:
        return self._mode.active

    active = Property(bool, _get_active, notify=mode_changed)

    def windows(self) -> tuple[DndWindow, ...]:
        return self._windows

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @Slot()
    def toggle(self) -> DndMode:
        with self._lock:
            enabled = not self._mode.active
        return self.set_enabled(enabled)

    @Slot(bool)
    def set_enabled(self, enabled: bool) -> DndMode:
        now = self._clock()
        with self._lock:
            if enabled:
                self._manual_on = True
                self._skip_until = None
            else:
                was_scheduled = self._mode is DndMode.SCHEDULED_ON
                self._manual_on = False
                if was_scheduled:
                    self._skip_until = self._current_window_end(now)
            self._save_manual()
        return self._update(now)

    @Slot()
    def evaluate(self, now: datetime | None = None) -> DndMode:
        """Recompute the mode for `now` (defaults to the clock)."""
        return self._update(self._clock() if now is None else now)

    def apply_config(self, snapshot: ConfigSnapshot):
        with self._lock:
            if snapshot.dnd.windows != self._windows:
                # A skip belongs to a window that may no longer exist
                self._skip_until = None
            self._windows = snapshot.dnd.windows
        self.evaluate()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _update(self, now: datetime) -> DndMode:
        with self._lock:
            previous = self._mode
            mode = self._compute(now)
            self._mode = mode
        if mode is not previous:
            logger.info("DND %s -> %s", previous.value, mode.value)
            self.mode_changed.emit(mode.value)
        return mode

    def _compute(self, now: datetime) -> DndMode:
        if self._manual_on:
            return DndMode.MANUAL_ON
        if self._skip_until is not None:
            if now < self._skip_until:
                return DndMode.OFF
            self._skip_until = None
        if self._current_window_end(now) is not None:
            return DndMode.SCHEDULED_ON
        return DndMode.OFF

    def _current_window_end(self, now: datetime) -> datetime | None:
        ends = []
        for window in self._windows:
            occurrence = window.occurrence_containing(now)
            if occurrence is not None:
                ends.append(occurrence[1])
        return max(ends) if ends else None

    def _load_manual(self, default: bool) -> bool:
        if self._settings is None:
            return default
        value = self._settings.value(MANUAL_KEY, default)
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes")
        return bool(value)

    def _save_manual(self):
        if self._settings is not None:
            self._settings.setValue(MANUAL_KEY, self._manual_on)
