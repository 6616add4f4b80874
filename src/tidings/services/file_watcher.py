"""Config and theme file watcher with debounced change signals."""

import logging
import os

from PySide6.QtCore import QFileSystemWatcher, QObject, QTimer, Signal

logger = logging.getLogger(__name__)

DEBOUNCE_MS = 150


def _mtime_ns(path: str) -> int | None:
    try:
        return os.stat(path).st_mtime_ns
    except OSError:
        return None


class FileWatcher(QObject):
    """Watches the config file, the theme stylesheets and their directory.

    Editors that save by writing a temp file and renaming it over the
    original make Qt drop the path from the watcher; the containing
    directory is watched too so the path can be re-added and the change
    still reported.
    """

    config_changed = Signal()
    theme_changed = Signal(str)   # stylesheet path

    def __init__(self, parent=None):
        super().__init__(parent)
        self._watcher = QFileSystemWatcher(self)
        self._debounce_timers: dict[str, QTimer] = {}
        self._config_path = ""
        self._theme_paths: set[str] = set()
        self._mtimes: dict[str, int | None] = {}

        self._watcher.fileChanged.connect(self._on_file_changed)
        self._watcher.directoryChanged.connect(self._on_directory_changed)

    def start(self, config_path: str, theme_paths: list[str]):
        """Start watching; replaces any previous watch set."""
        self.stop()
        self._config_path = config_path
        self._theme_paths = set(theme_paths)

        directories = {os.path.dirname(p) for p in self.tracked_paths()}
        for directory in directories:
            if os.path.isdir(directory):
                self._watcher.addPath(directory)
        for path in self.tracked_paths():
            self._mtimes[path] = _mtime_ns(path)
            if os.path.exists(path):
                self._watcher.addPath(path)
        logger.debug("watching %d files in %d directories", len(self.tracked_paths()), len(directories))

    def set_theme_paths(self, theme_paths: list[str]):
        """Swap the watched stylesheets after their filenames changed in config."""
        if set(theme_paths) == self._theme_paths:
            return
        self.start(self._config_path, theme_paths)

    def stop(self):
        if self._watcher.files():
            self._watcher.removePaths(self._watcher.files())
        if self._watcher.directories():
            self._watcher.removePaths(self._watcher.directories())
        for timer in self._debounce_timers.values():
            timer.stop()
        self._debounce_timers.clear()
        self._mtimes.clear()
        self._config_path = ""
        self._theme_paths = set()

    def tracked_paths(self) -> list[str]:
        paths = sorted(self._theme_paths)
        if self._config_path:
            paths.insert(0, self._config_path)
        return paths

    def watched_files(self) -> list[str]:
        return self._watcher.files()

    def _on_file_changed(self, path: str):
        self._debounce(path)

    def _on_directory_changed(self, directory: str):
        # A rename inside the directory shows up here rather than as fileChanged
        for path in self.tracked_paths():
            if os.path.dirname(path) == directory and _mtime_ns(path) != self._mtimes.get(path):
                self._debounce(path)

    def _debounce(self, path: str):
        timer = self._debounce_timers.get(path)
        if timer is None:
            timer = QTimer(self)
            timer.setSingleShot(True)
            timer.timeout.connect(lambda p=path: self._emit_changed(p))
            self._debounce_timers[path] = timer
        timer.start(DEBOUNCE_MS)

    def _emit_changed(self, path: str):
        """Re-add the path (Qt drops it after a replace) and report the change."""
        if os.path.exists(path) and path not in self._watcher.files():
            self._watcher.addPath(path)
        mtime = _mtime_ns(path)
        if mtime == self._mtimes.get(path) and mtime is not None:
            return
        self._mtimes[path] = mtime

        if path == self._config_path:
            logger.debug("config file changed")
            self.config_changed.emit()
        elif path in self._theme_paths:
            logger.debug("stylesheet changed: %s", os.path.basename(path))
            self.theme_changed.emit(path)
