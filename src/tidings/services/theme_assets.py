"""Theme stylesheet files: defaults, structural validation and caching."""

import logging
import os
from pathlib import Path

from tidings.services.asset_cache import AssetCache
from tidings.types.config import ThemeConfig
from tidings.types.errors import CacheComputeError

logger = logging.getLogger(__name__)

MAX_STYLESHEET_BYTES = 512 * 1024

DEFAULT_BASE_CSS = """\
* {
  font-family: sans-serif;
  font-size: 10pt;
}

.tidings-surface {
  background-color: rgba(30, 30, 36, 0.94);
  color: #e6e6eb;
  border-radius: 12px;
}
"""

DEFAULT_POPUP_CSS = """\
.tidings-popup {
  padding: 10px 12px;
  margin: 6px;
  border: 1px solid rgba(255, 255, 255, 0.08);
}

.tidings-popup.critical {
  border-color: #e05561;
}

.tidings-popup .summary {
  font-weight: bold;
}
"""

DEFAULT_PANEL_CSS = """\
.tidings-panel {
  padding: 12px;
  min-width: 380px;
}

.tidings-panel .group-header {
  opacity: 0.7;
  margin-top: 8px;
}
"""

DEFAULT_WIDGETS_CSS = """\
.tidings-widget {
  padding: 6px 10px;
  border-radius: 8px;
  background-color: rgba(255, 255, 255, 0.05);
}

.tidings-widget.stale {
  opacity: 0.5;
}
"""

DEFAULT_STYLESHEETS = {
    "base": DEFAULT_BASE_CSS,
    "popup": DEFAULT_POPUP_CSS,
    "panel": DEFAULT_PANEL_CSS,
    "widgets": DEFAULT_WIDGETS_CSS,
}


def theme_paths(config_dir: Path, theme: ThemeConfig) -> dict[str, Path]:
    """Stylesheet path per role. Relative names resolve against the config dir."""
    return {role: config_dir / filename for role, filename in theme.filenames().items()}


def ensure_theme_files(config_dir: Path, theme: ThemeConfig) -> list[Path]:
    """Write built-in defaults for any stylesheet that does not exist yet."""
    created = []
    for role, path in theme_paths(config_dir, theme).items():
        if path.exists():
            continue
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(DEFAULT_STYLESHEETS[role], encoding="utf-8")
        except OSError:
            logger.warning("Failed to create default %s stylesheet at %s", role, path, exc_info=True)
            continue
        created.append(path)
    if created:
        logger.info("Created default theme files: %s", ", ".join(p.name for p in created))
    return created


def validate_stylesheet(raw: bytes) -> str:
    """Structural checks only: size, encoding, comments and brace balance."""
    if len(raw) > MAX_STYLESHEET_BYTES:
        raise CacheComputeError(f"stylesheet too large: {len(raw)} bytes")
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CacheComputeError(f"stylesheet is not valid UTF-8: {e}") from e

    depth = 0
    i = 0
    quote = None
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end < 0:
                raise CacheComputeError("unterminated comment")
            i = end + 2
            continue
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth < 0:
                raise CacheComputeError(f"unexpected '}}' at offset {i}")
        i += 1

    if quote:
        raise CacheComputeError("unterminated string")
    if depth:
        raise CacheComputeError(f"{depth} unclosed '{{'")
    return text


def _read_stylesheet(path: Path) -> str:
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise CacheComputeError(f"cannot read stylesheet: {e}") from e
    return validate_stylesheet(raw)


class ThemeCache:
    """Validated stylesheet text keyed by (path, mtime).

    A file that fails validation yields the built-in default for its role,
    so a half-saved stylesheet never blanks the surfaces.
    """

    def __init__(self, budget_bytes: int):
        self._cache = AssetCache(budget_bytes, name="theme")

    @property
    def cache(self) -> AssetCache:
        return self._cache

    def set_budget(self, budget_bytes: int):
        self._cache.set_budget(budget_bytes)

    def load(self, path: Path) -> str | None:
        try:
            mtime_ns = os.stat(path).st_mtime_ns
        except OSError:
            return None
        return self._cache.get_or_compute((str(path), mtime_ns), lambda: _read_stylesheet(path))

    def load_all(self, config_dir: Path, theme: ThemeConfig) -> dict[str, str]:
        stylesheets = {}
        for role, path in theme_paths(config_dir, theme).items():
            text = self.load(path)
            if text is None:
                logger.warning("Using built-in %s stylesheet; %s is missing or invalid", role, path.name)
                text = DEFAULT_STYLESHEETS[role]
            stylesheets[role] = text
        return stylesheets

    def invalidate(self, path: Path) -> int:
        """Drop every cached version of a stylesheet."""
        target = str(path)
        return self._cache.invalidate_where(lambda key: key[0] == target)
