"""Application entry point: builds the daemon components and runs the event loop."""

import argparse
import logging
import signal
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QSettings, QTimer

from tidings.services.command_runner import CommandRunner
from tidings.services.config_loader import default_config_path, load_config
from tidings.services.config_manager import ConfigManager
from tidings.services.control_center import ControlCenter
from tidings.services.dbus_bridge import DbusBridge
from tidings.services.dnd_scheduler import DndScheduler
from tidings.services.expiry_scheduler import ExpiryScheduler
from tidings.services.history_store import HistoryStore, default_history_file
from tidings.services.icon_decoder import IconCache
from tidings.services.notification_service import NotificationService
from tidings.services.sound import SoundPlayer
from tidings.services.state_publisher import StatePublisher
from tidings.services.status_watchers import WatcherManager
from tidings.services.theme_assets import ThemeCache
from tidings.types.config import ConfigSnapshot
from tidings.types.errors import ConfigError, StartupError
from tidings.utils.logging_setup import configure_logging

logger = logging.getLogger(__name__)

# Lets the interpreter run Python signal handlers while Qt's loop is idle
SIGNAL_POLL_MS = 250


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tidings", description="Desktop notification daemon")
    parser.add_argument("--config", type=Path, default=None, help="path to config.toml")
    parser.add_argument("--check", action="store_true", help="validate the config file and exit")
    return parser.parse_args(argv)


def check_config(path: Path) -> int:
    try:
        load_config(path)
    except ConfigError as e:
        print(f"{path}: {e}", file=sys.stderr)
        return 1
    print(f"{path}: ok")
    return 0


class Daemon:
    """The wired-up set of components for one daemon process."""

    def __init__(self, config: ConfigManager, settings: QSettings | None = None):
        self.config = config
        snapshot = config.current()

        self.expiry = ExpiryScheduler()
        self.store = HistoryStore(
            capacity=snapshot.history.capacity,
            max_active=snapshot.history.max_active,
            expiry=self.expiry,
            transient_to_history=snapshot.history.transient_to_history,
            history_file=default_history_file() if snapshot.history.persist else None,
        )
        self.dnd = DndScheduler(
            windows=snapshot.dnd.windows,
            dnd_default=snapshot.general.dnd_default,
            settings=settings,
        )
        self.runner = CommandRunner(snapshot.widgets.max_concurrent)
        self.watchers = WatcherManager(self.runner, snapshot.widgets)
        self.sound = SoundPlayer(self.runner, snapshot.sound, config.config_dir)
        self.icons = IconCache(snapshot.cache.icon_budget_bytes)
        self.themes = ThemeCache(snapshot.cache.theme_budget_bytes)
        self.service = NotificationService(
            self.store, self.expiry, self.dnd, config.current,
            sound=self.sound, icons=self.icons,
        )
        self.control = ControlCenter(
            self.service, self.store, self.dnd, self.watchers,
            icons=self.icons, config=config.current,
        )
        self.publisher = StatePublisher(self.control)
        self.publisher.attach(self.store, self.dnd, self.watchers, config)
        self.bridge = DbusBridge(self.service, self.control, self.publisher)

        config.subscribe(self.apply_config)
        config.theme_changed.connect(self._on_theme_changed)

    def apply_config(self, snapshot: ConfigSnapshot):
        self.service.apply_config(snapshot)
        self.dnd.apply_config(snapshot)
        self.watchers.apply_config(snapshot)
        self.icons.set_budget(snapshot.cache.icon_budget_bytes)
        self.themes.set_budget(snapshot.cache.theme_budget_bytes)
        self.sound.apply_config(snapshot.sound, self.config.config_dir)
        self.reload_theme()

    def _on_theme_changed(self, path: str):
        dropped = self.themes.invalidate(Path(path))
        logger.info("Stylesheet changed: %s", Path(path).name)
        logger.debug("dropped %d cached stylesheet version(s)", dropped)
        self.reload_theme()

    def reload_theme(self):
        sheets = self.themes.load_all(self.config.config_dir, self.config.current().theme)
        self.control.set_stylesheets(sheets)

    def start(self):
        """Start timers and watchers, then claim the bus names. Raises StartupError."""
        self.dnd.start()
        self.config.start_watching()
        self.reload_theme()
        self.bridge.start()

    def stop(self):
        self.bridge.stop()
        self.watchers.pause()
        self.config.stop_watching()
        self.dnd.stop()
        self.expiry.cancel_all()


def run(argv: list[str] | None = None) -> int:
    """Launch the daemon and return its exit code."""
    args = parse_args(sys.argv[1:] if argv is None else argv)
    config_path = args.config or default_config_path()

    if args.check:
        configure_logging()
        return check_config(config_path)

    app = QCoreApplication(sys.argv[:1])
    app.setApplicationName("tidings")
    app.setOrganizationName("tidings")

    config = ConfigManager(config_path)
    try:
        snapshot = config.load()
    except ConfigError as e:
        configure_logging()
        logger.error("Invalid configuration, starting with defaults: %s", e)
    else:
        configure_logging(snapshot.general.log_level)

    try:
        created = config.ensure_theme_files()
    except StartupError as e:
        logger.error("%s", e)
        return 1
    for path in created:
        logger.info("Wrote default stylesheet %s", path)

    daemon = Daemon(config, QSettings("tidings", "tidings"))
    try:
        daemon.start()
    except StartupError as e:
        logger.error("Startup failed: %s", e)
        daemon.stop()
        return 1

    signal.signal(signal.SIGINT, lambda *_: app.quit())
    signal.signal(signal.SIGTERM, lambda *_: app.quit())
    wakeup = QTimer()
    wakeup.timeout.connect(lambda: None)
    wakeup.start(SIGNAL_POLL_MS)

    logger.info("tidings running (config %s)", config_path)
    ret = app.exec()
    wakeup.stop()
    daemon.stop()
    logger.info("tidings stopped")
    return ret
