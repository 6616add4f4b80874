"""Tests for tidings.services.file_watcher."""

import os

import pytest

from helpers import process_events_until
from tidings.services.file_watcher import FileWatcher


def _touch_later(path, text):
    """Rewrite a file and push its mtime forward so the change is visible."""
    path.write_text(text)
    stat = os.stat(path)
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 2_000_000_000))


@pytest.fixture
def watcher(qapp):
    w = FileWatcher()
    yield w
    w.stop()


@pytest.fixture
def files(tmp_path):
    config = tmp_path / "config.toml"
    config.write_text("")
    theme = tmp_path / "popup.css"
    theme.write_text(".a { }")
    return config, theme


class TestFileWatcherStartStop:
    def test_start_watches_files_and_directory(self, watcher, files, tmp_path):
        config, theme = files
        watcher.start(str(config), [str(theme)])
        assert str(tmp_path) in watcher._watcher.directories()
        assert sorted(watcher.watched_files()) == sorted([str(config), str(theme)])
        assert watcher.tracked_paths()[0] == str(config)

    def test_stop_clears_everything(self, watcher, files):
        config, theme = files
        watcher.start(str(config), [str(theme)])
        watcher.stop()
        assert watcher._watcher.directories() == []
        assert watcher.watched_files() == []
        assert watcher.tracked_paths() == []

    def test_missing_config_still_tracked(self, watcher, tmp_path):
        watcher.start(str(tmp_path / "config.toml"), [])
        assert watcher.tracked_paths() == [str(tmp_path / "config.toml")]
        assert watcher.watched_files() == []


class TestFileWatcherSignals:
    def test_config_change_emitted_once(self, watcher, files):
        config, theme = files
        watcher.start(str(config), [str(theme)])
        received = []
        watcher.config_changed.connect(lambda: received.append("config"))

        _touch_later(config, "[history]\ncapacity = 3\n")
        assert process_events_until(lambda: received, 3000)
        assert received == ["config"]

    def test_theme_change_reports_path(self, watcher, files):
        config, theme = files
        watcher.start(str(config), [str(theme)])
        received = []
        watcher.theme_changed.connect(lambda path: received.append(path))

        _touch_later(theme, ".b { }")
        assert process_events_until(lambda: received, 3000)
        assert received[0] == str(theme)

    def test_atomic_replace_detected_and_rewatched(self, watcher, files, tmp_path):
        config, theme = files
        watcher.start(str(config), [str(theme)])
        received = []
        watcher.config_changed.connect(lambda: received.append("config"))

        replacement = tmp_path / "config.toml.tmp"
        _touch_later(replacement, "[history]\ncapacity = 9\n")
        os.replace(replacement, config)

        assert process_events_until(lambda: received, 3000)
        assert str(config) in watcher.watched_files()

    def test_file_created_after_start(self, watcher, tmp_path):
        config = tmp_path / "config.toml"
        watcher.start(str(config), [])
        received = []
        watcher.config_changed.connect(lambda: received.append("config"))

        config.write_text("")
        assert process_events_until(lambda: received, 3000)
