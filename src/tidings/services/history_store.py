"""Bounded notification history with eviction and coalesced change events."""

import builtins
import copy
import json
import logging
import os
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from PySide6.QtCore import QObject, Signal

from tidings.types.notifications import (
    Action,
    CloseReason,
    HistoryFilter,
    Notification,
    NotificationImage,
    Urgency,
)

logger = logging.getLogger(__name__)

MAX_ID = 2**32 - 1


def default_history_file() -> Path:
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return base / "tidings" / "history.json"


@dataclass
class InsertOutcome:
    notification: Notification
    replaced: bool
    evicted: list[Notification] = field(default_factory=list)
    retired: list[Notification] = field(default_factory=list)   # closed by the active limit


class HistoryStore(QObject):
    """Single owner of every Notification entry.

    Entries are kept in recency order (oldest first). All writes are
    serialized by one lock; readers receive copies. Each logical operation
    publishes exactly one `changed` event, and operations wrapped in
    `batch()` publish one event between them.
    """

    changed = Signal(dict)

    def __init__(
        self,
        capacity: int = 200,
        max_active: int = 0,
        expiry=None,
        transient_to_history: bool = False,
        history_file: Path | None = None,
        parent=None,
    ):
        super().__init__(parent)
        self._entries: OrderedDict[int, Notification] = OrderedDict()
        self._capacity = max(1, capacity)
        self._max_active = max(0, max_active)
        self._expiry = expiry
        self._transient_to_history = transient_to_history
        self._history_file = history_file
        self._next_id = 1
        self._lock = threading.RLock()
        self._batch_depth = 0
        self._pending_ops: list[str] = []
        self._pending_ids: set[int] = set()

        if self._history_file is not None:
            self._load_history()

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def allocate_id(self) -> int:
        """Next free identifier: never zero, wraps at 2**32-1, skips held ids."""
        with self._lock:
            start = max(1, self._next_id)
            candidate = start
            while candidate in self._entries:
                candidate = candidate + 1 if candidate < MAX_ID else 1
                if candidate == start:
                    # Every id is held; reuse the oldest closed one
                    candidate = self._oldest(closed_only=True) or start
                    break
            self._next_id = candidate + 1 if candidate < MAX_ID else 1
            return candidate

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert_or_replace(self, notification: Notification) -> InsertOutcome:
        """Insert a notification, replacing any entry with the same id."""
        with self._lock:
            stored = copy.copy(notification)
            replaced = stored.id in self._entries
            if replaced:
                del self._entries[stored.id]
            self._entries[stored.id] = stored
            self._record("replace" if replaced else "insert", [stored.id])
            retired = self._retire_locked()
            evicted = self._evict_locked()
            if evicted:
                self._record("evict", [n.id for n in evicted])
            outcome = InsertOutcome(
                notification=copy.copy(stored),
                replaced=replaced,
                evicted=evicted,
                retired=retired,
            )
        self._flush()
        return outcome

    def close(self, notification_id: int, reason: CloseReason) -> Notification | None:
        """Mark an entry closed. Returns None if unknown or already closed."""
        with self._lock:
            entry = self._entries.get(notification_id)
            if entry is None or entry.closed:
                return None
            closed = self._close_locked(entry, reason)
        self._flush()
        return closed

    def remove(self, notification_id: int) -> Notification | None:
        """Drop an entry outright, open or closed."""
        with self._lock:
            entry = self._entries.pop(notification_id, None)
            if entry is None:
                return None
            self._cancel_timer(notification_id)
            self._record("remove", [notification_id])
        self._flush()
        return entry

    def clear(self, predicate: Callable[[Notification], bool] | None = None) -> list[Notification]:
        """Remove every entry matching predicate (all entries when None)."""
        with self._lock:
            removed = [n for n in self._entries.values() if predicate is None or predicate(n)]
            for entry in removed:
                self._cancel_timer(entry.id)
                del self._entries[entry.id]
            if removed:
                self._record("clear", [n.id for n in removed])
        self._flush()
        return removed

    def evict_if_over_capacity(self) -> list[Notification]:
        with self._lock:
            evicted = self._evict_locked()
            if evicted:
                self._record("evict", [n.id for n in evicted])
        self._flush()
        return evicted

    def bump_repeat(self, notification_id: int) -> Notification | None:
        """Count a repeated burst on an existing entry and refresh its recency."""
        with self._lock:
            entry = self._entries.get(notification_id)
            if entry is None:
                return None
            entry.repeat_count += 1
            entry.created_at = time.time()
            entry.read = False
            self._entries.move_to_end(notification_id)
            self._record("repeat", [notification_id])
            bumped = copy.copy(entry)
        self._flush()
        return bumped

    def mark_all_read(self) -> int:
        with self._lock:
            unread = [n for n in self._entries.values() if not n.read]
            for entry in unread:
                entry.read = True
            if unread:
                self._record("read", [n.id for n in unread])
        self._flush()
        return len(unread)

    def set_capacity(self, capacity: int) -> list[Notification]:
        with self._lock:
            self._capacity = max(1, capacity)
        return self.evict_if_over_capacity()

    def set_max_active(self, max_active: int) -> list[Notification]:
        """Change the open-entry limit and close whatever now exceeds it."""
        with self._lock:
            self._max_active = max(0, max_active)
            retired = self._retire_locked()
        self._flush()
        return retired

    def set_transient_to_history(self, enabled: bool):
        with self._lock:
            self._transient_to_history = enabled

    @contextmanager
    def batch(self):
        """Coalesce the change events of nested operations into one."""
        with self._lock:
            self._batch_depth += 1
        try:
            yield self
        finally:
            with self._lock:
                self._batch_depth -= 1
            self._flush()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, notification_id: int) -> Notification | None:
        with self._lock:
            entry = self._entries.get(notification_id)
            return copy.copy(entry) if entry is not None else None

    def contains(self, notification_id: int) -> bool:
        with self._lock:
            return notification_id in self._entries

    def is_open(self, notification_id: int) -> bool:
        with self._lock:
            entry = self._entries.get(notification_id)
            return entry is not None and not entry.closed

    def list(
        self,
        filter: HistoryFilter = HistoryFilter.ALL,
        app_name: str | None = None,
    ) -> list[Notification]:
        """Entries newest first."""
        with self._lock:
            result = []
            for entry in reversed(self._entries.values()):
                if filter is HistoryFilter.ACTIVE and entry.closed:
                    continue
                if filter is HistoryFilter.CLOSED and not entry.closed:
                    continue
                if app_name is not None and entry.app_name != app_name:
                    continue
                result.append(copy.copy(entry))
            return result

    def find_duplicate(self, notification: Notification, window_ms: int, now: float | None = None) -> int | None:
        """Id of an open entry with the same (app, summary, body) inside the window."""
        if window_ms <= 0:
            return None
        now = time.time() if now is None else now
        key = notification.dedup_key
        with self._lock:
            for entry in reversed(self._entries.values()):
                if (now - entry.created_at) * 1000 > window_ms:
                    break
                if not entry.closed and entry.dedup_key == key:
                    return entry.id
        return None

    def counts(self) -> dict:
        with self._lock:
            active = [n for n in self._entries.values() if not n.closed]
            return {
                "total": len(self._entries),
                "active": len(active),
                "closed": len(self._entries) - len(active),
                "unread": sum(1 for n in self._entries.values() if not n.read),
                "criticalActive": sum(1 for n in active if n.urgency == Urgency.CRITICAL),
            }

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _close_locked(self, entry: Notification, reason: CloseReason) -> Notification:
        self._cancel_timer(entry.id)
        entry.closed = True
        entry.close_reason = reason
        closed = copy.copy(entry)
        if entry.transient and not self._transient_to_history:
            del self._entries[entry.id]
            self._record("remove", [entry.id])
        else:
            self._entries[entry.id] = entry.to_history()
            self._record("close", [entry.id])
        return closed

    def _retire_locked(self) -> builtins.list[Notification]:
        """Close the oldest open entries beyond the active limit (0 = no limit)."""
        if not self._max_active:
            return []
        open_entries = [n for n in self._entries.values() if not n.closed]
        excess = open_entries[:max(0, len(open_entries) - self._max_active)]
        retired = [self._close_locked(entry, CloseReason.UNDEFINED) for entry in excess]
        for entry in retired:
            logger.debug("notification %d closed, over the active limit", entry.id)
        return retired

    # The query method above shadows `list` in the class body
    def _evict_locked(self) -> builtins.list[Notification]:
        evicted = []
        while len(self._entries) > self._capacity:
            victim_id = self._oldest(closed_only=True) or self._oldest(closed_only=False)
            if victim_id is None:
                break
            # Cancel before dropping so the timer cannot fire for a missing entry
            self._cancel_timer(victim_id)
            evicted.append(self._entries.pop(victim_id))
            logger.debug("evicted notification %d", victim_id)
        return evicted

    def _oldest(self, closed_only: bool) -> int | None:
        for entry_id, entry in self._entries.items():
            if entry.closed or not closed_only:
                return entry_id
        return None

    def _cancel_timer(self, notification_id: int):
        if self._expiry is not None:
            self._expiry.cancel(notification_id)

    def _record(self, op: str, ids):
        self._pending_ops.append(op)
        self._pending_ids.update(ids)

    def _flush(self):
        with self._lock:
            if self._batch_depth or not self._pending_ops:
                return
            event = {
                "kind": "history",
                "ops": list(dict.fromkeys(self._pending_ops)),
                "ids": sorted(self._pending_ids),
                "counts": self.counts(),
            }
            self._pending_ops.clear()
            self._pending_ids.clear()
            if self._history_file is not None:
                self._save_history()
        self.changed.emit(event)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_history(self):
        """Load persisted entries. Anything open last session is closed now."""
        try:
            records = json.loads(self._history_file.read_text())
        except FileNotFoundError:
            return
        except (json.JSONDecodeError, OSError):
            logger.warning("Failed to load notification history", exc_info=True)
            return

        if not isinstance(records, list):
            return
        for record in records:
            try:
                entry = _from_record(record)
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed history record")
                continue
            self._entries[entry.id] = entry
            self._next_id = max(self._next_id, entry.id + 1)
        while len(self._entries) > self._capacity:
            self._entries.popitem(last=False)

    def _save_history(self):
        try:
            self._history_file.parent.mkdir(parents=True, exist_ok=True)
            records = [_to_record(n) for n in self._entries.values() if not n.transient]
            self._history_file.write_text(json.dumps(records))
        except OSError:
            logger.warning("Failed to save notification history", exc_info=True)


def _to_record(n: Notification) -> dict:
    return {
        "id": n.id,
        "appName": n.app_name,
        "appIcon": n.app_icon,
        "summary": n.summary,
        "body": n.body,
        "urgency": int(n.urgency),
        "category": n.category,
        "actions": [[a.key, a.label] for a in n.actions],
        "resident": n.resident,
        "desktopEntry": n.desktop_entry,
        "imagePath": n.image.image_path,
        "iconName": n.image.icon_name,
        "createdAt": n.created_at,
        "closeReason": int(n.close_reason) if n.close_reason else None,
        "repeatCount": n.repeat_count,
        "read": n.read,
    }


def _from_record(d: dict) -> Notification:
    reason = d.get("closeReason")
    return Notification(
        id=int(d["id"]),
        app_name=d["appName"],
        summary=d["summary"],
        body=d.get("body", ""),
        app_icon=d.get("appIcon", ""),
        urgency=Urgency.from_value(d.get("urgency", 1)),
        category=d.get("category", ""),
        actions=[Action(key, label) for key, label in d.get("actions", [])],
        resident=bool(d.get("resident", False)),
        desktop_entry=d.get("desktopEntry", ""),
        image=NotificationImage(image_path=d.get("imagePath", ""), icon_name=d.get("iconName", "")),
        created_at=float(d.get("createdAt", time.time())),
        closed=True,
        close_reason=CloseReason(reason) if reason else CloseReason.UNDEFINED,
        repeat_count=int(d.get("repeatCount", 1)),
        read=bool(d.get("read", True)),
    )
