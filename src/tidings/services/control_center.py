"""Control surface used by the CLI and the panel collaborator."""

import logging
from enum import IntEnum

from PySide6.QtCore import Property, QObject, Signal, Slot

from tidings.types.config import ConfigSnapshot
from tidings.types.dnd import DndMode
from tidings.types.notifications import HistoryFilter

logger = logging.getLogger(__name__)


class PanelRequest(IntEnum):
    OPEN = 0
    CLOSE = 1
    TOGGLE = 2


class ControlCenter(QObject):
    """Routes control commands to the component that owns the state.

    Panel visibility changes are marshalled onto the owning Qt thread,
    since resuming watchers starts timers there.
    """

    panel_requested = Signal(int)          # PanelRequest
    panel_visibility_changed = Signal(bool)

    _visibility_requested = Signal(bool)

    def __init__(self, service, store, dnd, watchers=None, icons=None, config=None, parent=None):
        super().__init__(parent)
        self._service = service
        self._store = store
        self._dnd = dnd
        self._watchers = watchers
        self._icons = icons
        self._config = config or ConfigSnapshot
        self._stylesheets: dict[str, str] = {}
        self._panel_visible = False
        self._visibility_requested.connect(self._apply_visibility)

    # ------------------------------------------------------------------
    # Panel
    # ------------------------------------------------------------------

    @Slot()
    def open_panel(self):
        self.panel_requested.emit(int(PanelRequest.OPEN))

    @Slot()
    def close_panel(self):
        self.panel_requested.emit(int(PanelRequest.CLOSE))

    @Slot()
    def toggle_panel(self):
        self.panel_requested.emit(int(PanelRequest.TOGGLE))

    def set_panel_visible(self, visible: bool):
        """Reported by the panel when it is shown or hidden."""
        self._visibility_requested.emit(visible)

    @Slot(bool)
    def _apply_visibility(self, visible: bool):
        if visible == self._panel_visible:
            return
        self._panel_visible = visible
        if self._watchers is not None:
            if visible:
                self._watchers.resume()
            else:
                self._watchers.pause()
        if visible:
            self._store.mark_all_read()
        logger.debug("panel %s", "shown" if visible else "hidden")
        self.panel_visibility_changed.emit(visible)

    def _get_panel_visible(self) -> bool:
        return self._panel_visible

    panelVisible = Property(bool, _get_panel_visible, notify=panel_visibility_changed)

    # ------------------------------------------------------------------
    # DND and history
    # ------------------------------------------------------------------

    def toggle_dnd(self) -> DndMode:
        return self._dnd.toggle()

    def set_dnd(self, enabled: bool) -> DndMode:
        return self._dnd.set_enabled(enabled)

    def clear_history(self) -> int:
        return self._service.clear_all()

    def dismiss(self, notification_id: int) -> bool:
        return self._service.dismiss(notification_id)

    def invoke_action(self, notification_id: int, action_key: str) -> bool:
        return self._service.invoke_action(notification_id, action_key)

    def run_toggle(self, name: str, on: bool):
        return self._watchers.run_toggle(name, on)

    # ------------------------------------------------------------------
    # Pull queries
    # ------------------------------------------------------------------

    def list_active(self, full: bool = False) -> list[dict]:
        return [n.to_view(full) for n in self._store.list(HistoryFilter.ACTIVE)]

    def list_history(self, full: bool = True) -> list[dict]:
        return [n.to_view(full) for n in self._store.list(HistoryFilter.ALL)]

    def watcher_snapshot(self) -> dict[str, dict]:
        return self._watchers.snapshot() if self._watchers is not None else {}

    def set_stylesheets(self, stylesheets: dict[str, str]):
        """Latest validated stylesheet per role, as loaded by the theme cache."""
        self._stylesheets = dict(stylesheets)

    def stylesheets(self) -> dict[str, str]:
        return dict(self._stylesheets)

    def icon(self, handle: str):
        """Decoded RGBA bitmap for a view's iconKey, or None if not cached."""
        if self._icons is None or not handle:
            return None
        return self._icons.lookup(handle)

    def state(self) -> dict:
        mode = self._dnd.mode()
        return {
            "dnd": mode.value,
            "dndActive": mode.active,
            "panelVisible": self._panel_visible,
            "counts": self._store.counts(),
            "watchers": self.watcher_snapshot(),
            "popups": {"maxVisible": self._config().popups.max_visible},
        }
