"""Interpretation of freedesktop notification hints.

Hints arrive as plain Python values (the D-Bus layer unwraps variants).
"""

from typing import Any

from tidings.types.notifications import ImageData, NotificationImage, Urgency

MAX_IMAGE_BYTES = 1024 * 1024
MAX_IMAGE_DIMENSION = 512

_IMAGE_DATA_KEYS = ("image-data", "image_data", "icon_data")
_IMAGE_PATH_KEYS = ("image-path", "image_path")

# Non-standard hint that lets a sender ask to bypass do-not-disturb
DND_BYPASS_HINT = "x-tidings-dnd-bypass"


def hint_bool(hints: dict[str, Any], key: str) -> bool | None:
    value = hints.get(key)
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    return None


def hint_str(hints: dict[str, Any], key: str) -> str:
    value = hints.get(key)
    return value if isinstance(value, str) else ""


def urgency_from_hints(hints: dict[str, Any]) -> Urgency:
    if "urgency" not in hints:
        return Urgency.NORMAL
    return Urgency.from_value(hints["urgency"])


def strip_desktop_suffix(value: str) -> str:
    return value[: -len(".desktop")] if value.endswith(".desktop") else value


def parse_image_data(value: Any) -> ImageData | None:
    """Parse an (iiibiiay) image-data struct. Returns None if unusable."""
    if not isinstance(value, (list, tuple)) or len(value) != 7:
        return None
    width, height, rowstride, has_alpha, bits_per_sample, channels, data = value
    try:
        width, height, rowstride = int(width), int(height), int(rowstride)
        bits_per_sample, channels = int(bits_per_sample), int(channels)
    except (TypeError, ValueError):
        return None
    if isinstance(data, (list, tuple)):
        try:
            data = bytes(data)
        except (TypeError, ValueError):
            return None
    if not isinstance(data, (bytes, bytearray)):
        return None

    image = ImageData(
        width=width,
        height=height,
        rowstride=rowstride,
        has_alpha=bool(has_alpha),
        bits_per_sample=bits_per_sample,
        channels=channels,
        data=bytes(data),
    )
    if not is_image_usable(image):
        return None
    return image


def is_image_usable(image: ImageData) -> bool:
    if image.width <= 0 or image.height <= 0:
        return False
    if image.width > MAX_IMAGE_DIMENSION or image.height > MAX_IMAGE_DIMENSION:
        return False
    return len(image.data) <= MAX_IMAGE_BYTES


def image_from_hints(app_name: str, app_icon: str, hints: dict[str, Any]) -> NotificationImage:
    """Resolve where a notification's image comes from.

    image-data wins over image-path, which wins over app_icon. Icon names
    fall back to the desktop entry and then the app name.
    """
    image_data = None
    for key in _IMAGE_DATA_KEYS:
        if key in hints:
            image_data = parse_image_data(hints[key])
            if image_data is not None:
                break

    image_path = ""
    for key in _IMAGE_PATH_KEYS:
        image_path = hint_str(hints, key)
        if image_path:
            break

    icon_is_path = app_icon.startswith("/") or app_icon.startswith("file://")
    if not image_path and icon_is_path:
        image_path = app_icon
    if image_path.startswith("file://"):
        image_path = image_path[len("file://"):]

    desktop_entry = strip_desktop_suffix(hint_str(hints, "desktop-entry"))
    if icon_is_path:
        icon_name = ""
    elif app_icon:
        icon_name = strip_desktop_suffix(app_icon)
    elif desktop_entry:
        icon_name = desktop_entry
    else:
        icon_name = app_name

    return NotificationImage(
        image_data=image_data,
        image_path=image_path,
        icon_name=icon_name,
    )
