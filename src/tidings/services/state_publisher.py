"""Coalesced state-change feed for the panel and popup collaborators."""

import logging

from PySide6.QtCore import QObject, QTimer, Signal, Slot

logger = logging.getLogger(__name__)

COALESCE_MS = 30


class StatePublisher(QObject):
    """Folds bursts of history, DND, watcher and config changes into one event.

    Sources may emit from any thread; their signals are queued onto the
    publisher's thread, where a single-shot timer batches them.
    """

    state_changed = Signal(dict)

    def __init__(self, control, coalesce_ms: int = COALESCE_MS, parent=None):
        super().__init__(parent)
        self._control = control
        self._pending: set[str] = set()
        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setInterval(coalesce_ms)
        self._timer.timeout.connect(self._publish)

    def attach(self, store=None, dnd=None, watchers=None, config=None):
        if store is not None:
            store.changed.connect(self._on_history_changed)
        if dnd is not None:
            dnd.mode_changed.connect(self._on_dnd_changed)
        if watchers is not None:
            watchers.result_changed.connect(self._on_watcher_changed)
        if config is not None:
            config.config_reloaded.connect(self._on_config_reloaded)
            config.theme_changed.connect(self._on_theme_changed)

    @Slot(dict)
    def _on_history_changed(self, _event: dict):
        self.mark("history")

    @Slot(str)
    def _on_dnd_changed(self, _mode: str):
        self.mark("dnd")

    @Slot(str)
    def _on_watcher_changed(self, _name: str):
        self.mark("watchers")

    @Slot(object)
    def _on_config_reloaded(self, _snapshot):
        self.mark("config")

    @Slot(str)
    def _on_theme_changed(self, _path: str):
        self.mark("theme")

    def mark(self, kind: str):
        """Record a change; must run on the publisher's thread."""
        self._pending.add(kind)
        if not self._timer.isActive():
            self._timer.start()

    def flush(self):
        """Publish pending changes now instead of waiting for the timer."""
        if self._pending:
            self._timer.stop()
            self._publish()

    @Slot()
    def _publish(self):
        kinds = sorted(self._pending)
        self._pending.clear()
        if not kinds:
            return
        event = {"kinds": kinds, "state": self._control.state()}
        logger.debug("state changed: %s", ", ".join(kinds))
        self.state_changed.emit(event)
