"""Shared test helpers."""

import time

from PySide6.QtCore import QCoreApplication


def process_events_until(predicate, timeout_ms: int = 2000) -> bool:
    """Spin the Qt event loop until predicate() is true or the timeout passes."""
    deadline = time.monotonic() + timeout_ms / 1000
    while time.monotonic() < deadline:
        QCoreApplication.processEvents()
        if predicate():
            return True
        time.sleep(0.005)
    QCoreApplication.processEvents()
    return predicate()


def process_events_for(ms: int):
    """Run the event loop for a fixed time."""
    process_events_until(lambda: False, ms)
