"""Services for Tidings."""

from tidings.services.config_manager import ConfigManager
from tidings.services.file_watcher import FileWatcher
from tidings.services.notification_service import NotificationService
from tidings.services.history_store import HistoryStore
from tidings.services.expiry_scheduler import ExpiryScheduler
from tidings.services.dnd_scheduler import DndScheduler
from tidings.services.command_runner import CommandRunner
from tidings.services.status_watchers import WatcherManager
from tidings.services.asset_cache import AssetCache
from tidings.services.control_center import ControlCenter
from tidings.services.state_publisher import StatePublisher

__all__ = [
    "ConfigManager",
    "FileWatcher",
    "NotificationService",
    "HistoryStore",
    "ExpiryScheduler",
    "DndScheduler",
    "CommandRunner",
    "WatcherManager",
    "AssetCache",
    "ControlCenter",
    "StatePublisher",
]
