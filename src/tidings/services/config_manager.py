"""Live configuration: owns the current snapshot and hot-reloads it."""

import logging
import threading
from pathlib import Path
from typing import Callable

from PySide6.QtCore import QObject, Signal, Slot

from tidings.services.config_loader import default_config_path, load_config
from tidings.services.file_watcher import FileWatcher
from tidings.services.theme_assets import ensure_theme_files, theme_paths
from tidings.types.config import ConfigSnapshot
from tidings.types.errors import ConfigError, StartupError
from tidings.utils.logging_setup import apply_level

logger = logging.getLogger(__name__)


class ConfigManager(QObject):
    """Holds the live ConfigSnapshot.

    Readers call current() and keep the snapshot they got for as long as
    they need it; a reload swaps the reference and never mutates the old
    one. A reload that fails to parse leaves the previous snapshot live.
    """

    config_reloaded = Signal(object)   # ConfigSnapshot
    reload_failed = Signal(str)        # error message
    theme_changed = Signal(str)        # stylesheet path

    def __init__(self, config_path: Path | None = None, parent=None):
        super().__init__(parent)
        self._path = Path(config_path) if config_path else default_config_path()
        self._snapshot = ConfigSnapshot()
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[ConfigSnapshot], None]] = []
        self._watcher = FileWatcher(self)
        self._watcher.config_changed.connect(self.reload)
        self._watcher.theme_changed.connect(self.theme_changed)

    @property
    def config_path(self) -> Path:
        return self._path

    @property
    def config_dir(self) -> Path:
        return self._path.parent

    @property
    def watcher(self) -> FileWatcher:
        return self._watcher

    def current(self) -> ConfigSnapshot:
        with self._lock:
            return self._snapshot

    def subscribe(self, callback: Callable[[ConfigSnapshot], None]):
        """Register a callback run with each newly applied snapshot."""
        self._subscribers.append(callback)

    def load(self) -> ConfigSnapshot:
        """Initial load. Raises ConfigError; the caller decides whether to fall back."""
        snapshot = load_config(self._path)
        with self._lock:
            self._snapshot = snapshot
        return snapshot

    @Slot()
    def reload(self) -> bool:
        try:
            snapshot = load_config(self._path)
        except ConfigError as e:
            logger.error("Config reload rejected, keeping previous settings: %s", e)
            self.reload_failed.emit(str(e))
            return False

        with self._lock:
            self._snapshot = snapshot
        apply_level(snapshot.general.log_level)

        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Config subscriber %r failed", callback)

        self._watcher.set_theme_paths([str(p) for p in self.theme_paths().values()])
        logger.info("Configuration reloaded")
        self.config_reloaded.emit(snapshot)
        return True

    def theme_paths(self) -> dict[str, Path]:
        return theme_paths(self.config_dir, self.current().theme)

    def ensure_config_dir(self):
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StartupError(f"cannot create config directory {self.config_dir}: {e}") from e

    def ensure_theme_files(self) -> list[Path]:
        self.ensure_config_dir()
        return ensure_theme_files(self.config_dir, self.current().theme)

    def start_watching(self):
        self._watcher.start(str(self._path), [str(p) for p in self.theme_paths().values()])

    def stop_watching(self):
        self._watcher.stop()
