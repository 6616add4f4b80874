"""Notification record, image payload and close reasons."""

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any


class Urgency(IntEnum):
    LOW = 0
    NORMAL = 1
    CRITICAL = 2

    @classmethod
    def from_value(cls, value: Any) -> "Urgency":
        """Map a hint or config value to an urgency, defaulting to NORMAL."""
        if isinstance(value, str):
            name = value.strip().upper()
            if name in cls.__members__:
                return cls[name]
            if name.isdigit():
                value = int(name)
            else:
                return cls.NORMAL
        if isinstance(value, bool) or not isinstance(value, int):
            return cls.NORMAL
        if value == 0:
            return cls.LOW
        if value == 2:
            return cls.CRITICAL
        return cls.NORMAL


class CloseReason(IntEnum):
    """Reason codes defined by the freedesktop notification protocol."""

    EXPIRED = 1
    DISMISSED = 2
    CLOSED_BY_REQUEST = 3
    UNDEFINED = 4


class HistoryFilter(str, Enum):
    ALL = "all"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True)
class Action:
    key: str
    label: str


@dataclass(frozen=True)
class ImageData:
    width: int
    height: int
    rowstride: int
    has_alpha: bool
    bits_per_sample: int
    channels: int
    data: bytes = b""

    @property
    def nbytes(self) -> int:
        return len(self.data)


def format_icon_key(key: tuple) -> str:
    """Flatten an icon cache key into the handle clients pass back to fetch it."""
    return "|".join(str(part) for part in key)


def parse_icon_key(handle: str) -> tuple | None:
    kind, _, rest = handle.partition("|")
    try:
        if kind == "data":
            digest, width, height = rest.split("|")
            return ("data", digest, int(width), int(height))
        if kind == "path":
            path, _, mtime_ns = rest.rpartition("|")
            return ("path", path, int(mtime_ns)) if path else None
    except ValueError:
        return None
    return None


@dataclass
class NotificationImage:
    image_data: ImageData | None = None
    image_path: str = ""
    icon_name: str = ""
    cache_key: tuple | None = None   # Set once the decoded bitmap is cached

    def to_dict(self, include_data: bool = True) -> dict:
        result = {
            "imagePath": self.image_path,
            "iconName": self.icon_name,
            "hasImageData": self.image_data is not None,
            "iconKey": format_icon_key(self.cache_key) if self.cache_key else None,
        }
        if include_data and self.image_data is not None:
            result["imageData"] = {
                "width": self.image_data.width,
                "height": self.image_data.height,
                "rowstride": self.image_data.rowstride,
                "hasAlpha": self.image_data.has_alpha,
                "channels": self.image_data.channels,
                "data": self.image_data.data.hex(),
            }
        return result


@dataclass
class Notification:
    id: int
    app_name: str
    summary: str
    body: str = ""
    app_icon: str = ""
    urgency: Urgency = Urgency.NORMAL
    category: str = ""
    actions: list[Action] = field(default_factory=list)
    hints: dict[str, Any] = field(default_factory=dict)
    expire_timeout: int = -1    # -1 = server default, 0 = never
    transient: bool = False
    resident: bool = False
    desktop_entry: str = ""
    sound_file: str = ""
    sound_name: str = ""
    image: NotificationImage = field(default_factory=NotificationImage)
    created_at: float = field(default_factory=time.time)
    closed: bool = False
    close_reason: CloseReason | None = None
    repeat_count: int = 1
    read: bool = False

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        return (self.app_name, self.summary, self.body)

    def to_view(self, full: bool = True) -> dict:
        """Serializable view consumed by the panel and popup surfaces."""
        view = {
            "id": self.id,
            "appName": self.app_name,
            "appIcon": self.app_icon,
            "summary": self.summary,
            "urgency": int(self.urgency),
            "category": self.category,
            "actions": [{"key": a.key, "label": a.label} for a in self.actions],
            "transient": self.transient,
            "resident": self.resident,
            "desktopEntry": self.desktop_entry,
            "createdAtMs": int(self.created_at * 1000),
            "closed": self.closed,
            "closeReason": int(self.close_reason) if self.close_reason else None,
            "repeatCount": self.repeat_count,
            "read": self.read,
            "image": self.image.to_dict(include_data=full),
        }
        if full:
            view["body"] = self.body
        return view

    def to_history(self) -> "Notification":
        """Copy suitable for long-term retention: raw hints and redundant pixels dropped."""
        image = self.image
        if image.image_data is not None and (image.image_path or image.icon_name):
            image = NotificationImage(
                image_path=image.image_path,
                icon_name=image.icon_name,
                cache_key=image.cache_key,
            )
        return Notification(
            id=self.id,
            app_name=self.app_name,
            summary=self.summary,
            body=self.body,
            app_icon=self.app_icon,
            urgency=self.urgency,
            category=self.category,
            actions=list(self.actions),
            expire_timeout=self.expire_timeout,
            transient=self.transient,
            resident=self.resident,
            desktop_entry=self.desktop_entry,
            image=image,
            created_at=self.created_at,
            closed=self.closed,
            close_reason=self.close_reason,
            repeat_count=self.repeat_count,
            read=self.read,
        )
