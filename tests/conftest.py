"""Shared test fixtures for Tidings."""

import os
import sys
from datetime import datetime

import pytest

from tidings.services.config_loader import parse_config
from tidings.types.config import ConfigSnapshot
from tidings.types.notifications import Notification


@pytest.fixture(scope="session")
def qapp():
    """Create a QCoreApplication for tests that need Qt."""
    os.environ["QT_QPA_PLATFORM"] = "offscreen"
    from PySide6.QtCore import QCoreApplication

    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication(sys.argv or ["test"])
    yield app


@pytest.fixture(autouse=True)
def quiet_env(monkeypatch):
    """Keep the developer's environment from leaking into log behaviour."""
    monkeypatch.delenv("TIDINGS_LOG", raising=False)
    monkeypatch.delenv("TIDINGS_DIAGNOSTIC", raising=False)
    monkeypatch.delenv("TIDINGS_LOG_LIMIT", raising=False)


@pytest.fixture
def settings(qapp, tmp_path):
    """A QSettings backed by an ini file under tmp_path."""
    from PySide6.QtCore import QSettings
    return QSettings(str(tmp_path / "settings.ini"), QSettings.IniFormat)


@pytest.fixture
def make_notification():
    """Factory for Notification records with sensible defaults."""

    def _make(id=0, app_name="mail", summary="New message", body="hello", **kwargs):
        return Notification(id=id, app_name=app_name, summary=summary, body=body, **kwargs)

    return _make


@pytest.fixture
def snapshot_from():
    """Factory that parses a TOML string into a ConfigSnapshot."""

    def _parse(text: str = "") -> ConfigSnapshot:
        return parse_config(text)

    return _parse


class FixedClock:
    """Settable wall clock for DND tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def fixed_clock():
    # 2026-03-04 is a Wednesday
    return FixedClock(datetime(2026, 3, 4, 12, 0))


@pytest.fixture
def core(qapp, settings):
    """Store, expiry, DND and notification service wired as in the daemon."""
    from tidings.services.dnd_scheduler import DndScheduler
    from tidings.services.expiry_scheduler import ExpiryScheduler
    from tidings.services.history_store import HistoryStore
    from tidings.services.notification_service import NotificationService

    class Core:
        pass

    c = Core()
    c.config = ConfigSnapshot()
    c.expiry = ExpiryScheduler()
    c.store = HistoryStore(capacity=c.config.history.capacity, expiry=c.expiry)
    c.dnd = DndScheduler(settings=settings)
    c.service = NotificationService(c.store, c.expiry, c.dnd, lambda: c.config)
    yield c
    c.expiry.cancel_all()


