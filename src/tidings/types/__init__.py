"""Type definitions for Tidings."""

from tidings.types.notifications import (
    Action,
    CloseReason,
    HistoryFilter,
    ImageData,
    Notification,
    NotificationImage,
    Urgency,
)
from tidings.types.rules import (
    ActionKind,
    FieldMatcher,
    MatchMode,
    Mutation,
    Predicate,
    Rule,
    RuleAction,
    Verdict,
)
from tidings.types.dnd import DndMode, DndWindow
from tidings.types.watchers import (
    CommandKind,
    CommandResult,
    CommandSpec,
    ConcurrencyRejected,
    TimedOut,
    WatcherResult,
)
from tidings.types.config import ConfigSnapshot, WatcherConfig
from tidings.types.errors import (
    CacheComputeError,
    ConfigError,
    NotFound,
    ProtocolError,
    StartupError,
    TidingsError,
    WatcherError,
)

__all__ = [
    "Action",
    "CloseReason",
    "HistoryFilter",
    "ImageData",
    "Notification",
    "NotificationImage",
    "Urgency",
    "ActionKind",
    "FieldMatcher",
    "MatchMode",
    "Mutation",
    "Predicate",
    "Rule",
    "RuleAction",
    "Verdict",
    "DndMode",
    "DndWindow",
    "CommandKind",
    "CommandResult",
    "CommandSpec",
    "ConcurrencyRejected",
    "TimedOut",
    "WatcherResult",
    "ConfigSnapshot",
    "WatcherConfig",
    "CacheComputeError",
    "ConfigError",
    "NotFound",
    "ProtocolError",
    "StartupError",
    "TidingsError",
    "WatcherError",
]
