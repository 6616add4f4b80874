"""Per-notification expiry timers keyed by notification id."""

import logging

from PySide6.QtCore import QObject, QTimer, Signal, Slot

logger = logging.getLogger(__name__)

# QTimer intervals are signed 32-bit milliseconds
MAX_TIMER_MS = 2**31 - 1


class ExpiryScheduler(QObject):
    """Owns one single-shot QTimer per pending expiry.

    schedule() and cancel() may be called from any thread; the requests are
    marshalled onto the thread that owns this object, which also owns the
    timers. Timers are never deleted while the scheduler lives: a fired or
    cancelled timer goes back to an idle pool and is reused for the next id.
    """

    expired = Signal(object)  # notification id

    _schedule_requested = Signal(object, int)
    _cancel_requested = Signal(object)
    _cancel_all_requested = Signal()

    def __init__(self, parent=None):
        super().__init__(parent)
        self._timers: dict[int, QTimer] = {}
        self._owners: dict[int, int] = {}     # id(timer) -> notification id
        self._idle: list[QTimer] = []
        self._schedule_requested.connect(self._arm)
        self._cancel_requested.connect(self._disarm)
        self._cancel_all_requested.connect(self._disarm_all)

    def schedule(self, notification_id: int, timeout_ms: int | None):
        """Arm (or re-arm) the expiry for an id. None cancels it."""
        if timeout_ms is None:
            self._cancel_requested.emit(notification_id)
        else:
            self._schedule_requested.emit(notification_id, min(max(0, int(timeout_ms)), MAX_TIMER_MS))

    def cancel(self, notification_id: int):
        self._cancel_requested.emit(notification_id)

    def cancel_all(self):
        self._cancel_all_requested.emit()

    def is_scheduled(self, notification_id: int) -> bool:
        return notification_id in self._timers

    def pending_ids(self) -> list[int]:
        return list(self._timers)

    @Slot(object, int)
    def _arm(self, notification_id: int, timeout_ms: int):
        timer = self._timers.get(notification_id)
        if timer is None:
            timer = self._idle.pop() if self._idle else self._new_timer()
            self._timers[notification_id] = timer
            self._owners[id(timer)] = notification_id
        timer.start(timeout_ms)

    @Slot(object)
    def _disarm(self, notification_id: int):
        timer = self._timers.pop(notification_id, None)
        if timer is not None:
            self._release(timer)

    @Slot()
    def _disarm_all(self):
        for timer in self._timers.values():
            self._release(timer)
        self._timers.clear()

    def _new_timer(self) -> QTimer:
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.timeout.connect(self._on_timeout)
        return timer

    def _release(self, timer: QTimer):
        timer.stop()
        self._owners.pop(id(timer), None)
        self._idle.append(timer)

    @Slot()
    def _on_timeout(self):
        self._fire(self.sender())

    def _fire(self, timer: QTimer):
        notification_id = self._owners.get(id(timer))
        if notification_id is None or self._timers.get(notification_id) is not timer:
            return
        del self._timers[notification_id]
        self._release(timer)
        logger.debug("notification %d expired", notification_id)
        self.expired.emit(notification_id)
