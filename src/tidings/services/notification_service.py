"""Notification service core: the request pipeline behind org.freedesktop.Notifications."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from PySide6.QtCore import QObject, Signal, Slot

from tidings.services import rule_engine
from tidings.services.dnd_scheduler import DndScheduler
from tidings.services.expiry_scheduler import ExpiryScheduler
from tidings.services.history_store import MAX_ID, HistoryStore
from tidings.types.config import ConfigSnapshot
from tidings.types.errors import ProtocolError
from tidings.types.notifications import Action, CloseReason, Notification, Urgency
from tidings.utils.hints import (
    DND_BYPASS_HINT,
    hint_bool,
    hint_str,
    image_from_hints,
    strip_desktop_suffix,
    urgency_from_hints,
)
from tidings.utils.redaction import log_snippet

logger = logging.getLogger(__name__)

SERVER_NAME = "Tidings"
SERVER_VENDOR = "Tidings"
SERVER_VERSION = "0.1.0"
PROTOCOL_VERSION = "1.2"

BASE_CAPABILITIES = ("actions", "body", "body-markup", "icon-static")


@dataclass
class NotificationRequest:
    """Arguments of a Notify call, as plain Python values."""

    app_name: str = ""
    replaces_id: int = 0
    app_icon: str = ""
    summary: str = ""
    body: str = ""
    actions: list[str] = field(default_factory=list)
    hints: dict[str, Any] = field(default_factory=dict)
    expire_timeout: int = -1

    def validate(self):
        if len(self.actions) % 2:
            raise ProtocolError("actions must be a list of key/label pairs")
        if self.expire_timeout < -1:
            raise ProtocolError(f"invalid expire_timeout {self.expire_timeout}")
        if not 0 <= self.replaces_id <= MAX_ID:
            raise ProtocolError(f"invalid replaces_id {self.replaces_id}")

    def build(self) -> Notification:
        hints = dict(self.hints)
        return Notification(
            id=0,
            app_name=self.app_name or "Unknown",
            summary=self.summary,
            body=self.body,
            app_icon=self.app_icon,
            urgency=urgency_from_hints(hints),
            category=hint_str(hints, "category"),
            actions=[Action(key, label) for key, label in zip(self.actions[0::2], self.actions[1::2])],
            hints=hints,
            expire_timeout=self.expire_timeout,
            transient=bool(hint_bool(hints, "transient")),
            resident=bool(hint_bool(hints, "resident")),
            desktop_entry=strip_desktop_suffix(hint_str(hints, "desktop-entry")),
            sound_file=hint_str(hints, "sound-file"),
            sound_name=hint_str(hints, "sound-name"),
            image=image_from_hints(self.app_name, self.app_icon, hints),
        )


def resolve_expiry_ms(notification: Notification, snapshot: ConfigSnapshot) -> int | None:
    """Milliseconds until the notification expires, or None if it never does."""
    if notification.expire_timeout == 0 or notification.resident:
        return None
    if notification.expire_timeout > 0:
        return notification.expire_timeout
    if notification.urgency == Urgency.CRITICAL:
        timeout = snapshot.popups.critical_timeout_ms
    else:
        timeout = snapshot.popups.default_timeout_ms
    return timeout or None


class NotificationService(QObject):
    """Accepts notification requests and owns their lifecycle.

    All methods are safe to call from the D-Bus thread. The pipeline runs
    under one lock so id allocation, dedup and insertion are atomic with
    respect to each other; signals are emitted after the lock is released.
    """

    notification_added = Signal(dict, bool)      # view, show_popup
    notification_updated = Signal(dict, bool)    # view, show_popup
    notification_closed = Signal(object, int)    # id, reason
    action_invoked = Signal(object, str)         # id, action key

    def __init__(
        self,
        store: HistoryStore,
        expiry: ExpiryScheduler,
        dnd: DndScheduler,
        config: Callable[[], ConfigSnapshot],
        sound=None,
        icons=None,
        parent=None,
    ):
        super().__init__(parent)
        self._store = store
        self._expiry = expiry
        self._dnd = dnd
        self._config = config
        self._sound = sound
        self._icons = icons
        self._lock = threading.RLock()

        snapshot = config()
        capabilities = list(BASE_CAPABILITIES)
        if snapshot.history.persist:
            capabilities.append("persistence")
        if sound is not None and sound.supported:
            capabilities.append("sound")
        # Fixed for the life of the process
        self._capabilities = tuple(capabilities)

        self._expiry.expired.connect(self._on_expired)

    # ------------------------------------------------------------------
    # Protocol methods
    # ------------------------------------------------------------------

    def get_capabilities(self) -> list[str]:
        return list(self._capabilities)

    def get_server_information(self) -> tuple[str, str, str, str]:
        return (SERVER_NAME, SERVER_VENDOR, SERVER_VERSION, PROTOCOL_VERSION)

    def notify(self, request: NotificationRequest) -> int:
        """Run a request through the pipeline and return its id.

        Suppressed and DND-blocked notifications still get a valid id; they
        just never reach the store or any display signal.
        """
        request.validate()
        snapshot = self._config()
        notification = request.build()
        dnd_mode = self._dnd.mode()

        verdict = rule_engine.evaluate(notification, snapshot, dnd_mode)
        rule_engine.apply_mutations(notification, verdict.mutations)

        logger.debug(
            "notify app=%s summary=%s replaces=%d rules=%s",
            notification.app_name, log_snippet(notification.summary),
            request.replaces_id, verdict.matched,
        )

        emit = []
        with self._lock:
            notification_id = self._accept(request, notification, verdict, dnd_mode, snapshot, emit)
        self._flush(emit)
        return notification_id

    def close_notification(self, notification_id: int) -> bool:
        """CloseNotification: unknown or already-closed ids are a no-op."""
        return self._close(notification_id, CloseReason.CLOSED_BY_REQUEST)

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    def dismiss(self, notification_id: int) -> bool:
        """User dismissal. Closes an open entry; drops a closed one from history."""
        if self._close(notification_id, CloseReason.DISMISSED):
            return True
        return self._store.remove(notification_id) is not None

    def invoke_action(self, notification_id: int, action_key: str) -> bool:
        entry = self._store.get(notification_id)
        if entry is None or entry.closed:
            logger.debug("action on unknown notification %d ignored", notification_id)
            return False
        if action_key != "default" and action_key not in {a.key for a in entry.actions}:
            logger.debug("unknown action key on notification %d ignored", notification_id)
            return False
        self.action_invoked.emit(notification_id, action_key)
        if not entry.resident:
            self._close(notification_id, CloseReason.DISMISSED)
        return True

    def clear_all(self) -> int:
        """Close every open notification and empty the history."""
        emit = []
        with self._lock, self._store.batch():
            for entry in self._store.list():
                if not entry.closed and self._store.close(entry.id, CloseReason.DISMISSED):
                    emit.append((self.notification_closed, entry.id, int(CloseReason.DISMISSED)))
            removed = self._store.clear()
        self._flush(emit)
        return len(removed)

    def apply_config(self, snapshot: ConfigSnapshot):
        self._store.set_transient_to_history(snapshot.history.transient_to_history)
        for entry in self._store.set_max_active(snapshot.history.max_active):
            self.notification_closed.emit(entry.id, int(CloseReason.UNDEFINED))
        evicted = self._store.set_capacity(snapshot.history.capacity)
        for entry in evicted:
            if not entry.closed:
                self.notification_closed.emit(entry.id, int(CloseReason.UNDEFINED))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _accept(self, request, notification, verdict, dnd_mode, snapshot, emit: list) -> int:
        replacing = request.replaces_id != 0 and self._store.contains(request.replaces_id)

        if verdict.suppress:
            logger.debug("notification suppressed by rule")
            return request.replaces_id if replacing else self._store.allocate_id()
        bypass = verdict.dnd_exempt or hint_bool(notification.hints, DND_BYPASS_HINT)
        if dnd_mode.active and not bypass:
            logger.debug("notification held back by do-not-disturb")
            return request.replaces_id if replacing else self._store.allocate_id()

        if not replacing:
            duplicate = self._store.find_duplicate(notification, snapshot.history.dedup_window_ms)
            if duplicate is not None:
                bumped = self._store.bump_repeat(duplicate)
                self._expiry.schedule(duplicate, resolve_expiry_ms(bumped, snapshot))
                logger.debug("notification %d repeated (%d)", duplicate, bumped.repeat_count)
                emit.append((self.notification_updated, bumped.to_view(), not verdict.no_popup))
                return duplicate

        notification.id = request.replaces_id if replacing else self._store.allocate_id()
        if self._icons is not None:
            self._icons.load(notification.image)

        outcome = self._store.insert_or_replace(notification)
        self._expiry.schedule(notification.id, resolve_expiry_ms(notification, snapshot))

        if self._sound is not None and not verdict.mute_sound:
            self._sound.play_for(notification)

        signal = self.notification_updated if outcome.replaced else self.notification_added
        emit.append((signal, outcome.notification.to_view(), not verdict.no_popup))
        for retired in outcome.retired:
            emit.append((self.notification_closed, retired.id, int(CloseReason.UNDEFINED)))
        for evicted in outcome.evicted:
            if not evicted.closed:
                emit.append((self.notification_closed, evicted.id, int(CloseReason.UNDEFINED)))
        return notification.id

    def _close(self, notification_id: int, reason: CloseReason) -> bool:
        closed = self._store.close(notification_id, reason)
        if closed is None:
            logger.debug("close of unknown notification %d ignored", notification_id)
            return False
        logger.debug("notification %d closed (%s)", notification_id, reason.name.lower())
        self.notification_closed.emit(notification_id, int(reason))
        return True

    @Slot(object)
    def _on_expired(self, notification_id: int):
        self._close(notification_id, CloseReason.EXPIRED)

    @staticmethod
    def _flush(emit: list):
        for signal, *args in emit:
            signal.emit(*args)
        emit.clear()
