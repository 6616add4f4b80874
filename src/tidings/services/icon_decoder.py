"""Decode notification images into RGBA bitmaps and cache them by fingerprint."""

import hashlib
import logging
import os
from dataclasses import dataclass
from functools import partial

from PySide6.QtCore import Qt
from PySide6.QtGui import QImage

from tidings.services.asset_cache import AssetCache
from tidings.types.errors import CacheComputeError
from tidings.types.notifications import ImageData, NotificationImage, parse_icon_key
from tidings.utils.hints import MAX_IMAGE_DIMENSION

logger = logging.getLogger(__name__)

# Refuse to read anything larger from an untrusted icon path
MAX_ICON_FILE_BYTES = 16 * 1024 * 1024


@dataclass(frozen=True)
class DecodedIcon:
    width: int
    height: int
    data: bytes     # tightly packed RGBA8888

    @property
    def nbytes(self) -> int:
        return len(self.data)


def image_data_key(image: ImageData) -> tuple:
    digest = hashlib.blake2b(image.data, digest_size=16).hexdigest()
    return ("data", digest, image.width, image.height)


def path_key(path: str) -> tuple | None:
    try:
        mtime_ns = os.stat(path).st_mtime_ns
    except OSError:
        return None
    return ("path", path, mtime_ns)


def expand_to_rgba(image: ImageData) -> DecodedIcon:
    """Convert a raw image-data hint into packed RGBA."""
    if image.bits_per_sample != 8 or image.channels not in (3, 4):
        raise CacheComputeError(
            f"unsupported pixel layout: {image.bits_per_sample} bits, {image.channels} channels"
        )
    row_bytes = image.width * image.channels
    if image.rowstride < row_bytes:
        raise CacheComputeError("rowstride shorter than a row")
    needed = image.rowstride * (image.height - 1) + row_bytes
    if len(image.data) < needed:
        raise CacheComputeError(f"image data truncated: {len(image.data)} < {needed} bytes")

    out = bytearray(image.width * image.height * 4)
    for y in range(image.height):
        row = image.data[y * image.rowstride:y * image.rowstride + row_bytes]
        base = y * image.width * 4
        if image.channels == 4:
            out[base:base + len(row)] = row
            continue
        out[base + 0:base + image.width * 4:4] = row[0::3]
        out[base + 1:base + image.width * 4:4] = row[1::3]
        out[base + 2:base + image.width * 4:4] = row[2::3]
        out[base + 3:base + image.width * 4:4] = b"\xff" * image.width
    return DecodedIcon(image.width, image.height, bytes(out))


def decode_file(path: str) -> DecodedIcon:
    """Load an image file with QImage, downscaled to the display limit."""
    try:
        size = os.path.getsize(path)
    except OSError as e:
        raise CacheComputeError(f"cannot stat icon: {e}") from e
    if size > MAX_ICON_FILE_BYTES:
        raise CacheComputeError(f"icon file too large: {size} bytes")

    image = QImage(path)
    if image.isNull():
        raise CacheComputeError("unreadable image file")
    if image.width() > MAX_IMAGE_DIMENSION or image.height() > MAX_IMAGE_DIMENSION:
        image = image.scaled(
            MAX_IMAGE_DIMENSION, MAX_IMAGE_DIMENSION,
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.SmoothTransformation,
        )
    image = image.convertToFormat(QImage.Format.Format_RGBA8888)

    width, height = image.width(), image.height()
    stride = image.bytesPerLine()
    raw = bytes(image.constBits())[:stride * height]
    row_bytes = width * 4
    if stride == row_bytes:
        return DecodedIcon(width, height, raw)
    packed = b"".join(raw[y * stride:y * stride + row_bytes] for y in range(height))
    return DecodedIcon(width, height, packed)


class IconCache:
    """Resolves a NotificationImage to a cached RGBA bitmap.

    Named theme icons are left to the rendering side; only inline pixel
    data and image files are decoded here.
    """

    def __init__(self, budget_bytes: int):
        self._cache = AssetCache(budget_bytes, name="icons")

    @property
    def cache(self) -> AssetCache:
        return self._cache

    def set_budget(self, budget_bytes: int):
        self._cache.set_budget(budget_bytes)

    def key_for(self, image: NotificationImage) -> tuple | None:
        if image.image_data is not None:
            return image_data_key(image.image_data)
        if image.image_path:
            return path_key(image.image_path)
        return None

    def load(self, image: NotificationImage) -> DecodedIcon | None:
        """Decode (or fetch) the bitmap and record its cache key on the image."""
        key = self.key_for(image)
        if key is None:
            return None
        image.cache_key = key
        if key[0] == "data":
            compute = partial(expand_to_rgba, image.image_data)
        else:
            compute = partial(decode_file, image.image_path)
        return self._cache.get_or_compute(key, compute)

    def lookup(self, handle: str) -> DecodedIcon | None:
        """Cached bitmap for an iconKey handle. Never decodes anything new."""
        key = parse_icon_key(handle)
        return self._cache.get(key) if key is not None else None
