"""Immutable configuration snapshot.

A snapshot is never mutated after loading; reloads build a new one and the
config manager swaps its reference.
"""

from dataclasses import dataclass, field
from pathlib import Path

from tidings.types.dnd import DndWindow
from tidings.types.rules import Predicate, Rule

MIB = 1024 * 1024


@dataclass(frozen=True)
class GeneralConfig:
    log_level: str | None = None
    dnd_default: bool = False


@dataclass(frozen=True)
class PopupConfig:
    default_timeout_ms: int = 5000
    critical_timeout_ms: int = 0    # 0 = critical notifications never expire
    max_visible: int = 4


@dataclass(frozen=True)
class HistoryConfig:
    capacity: int = 200
    max_active: int = 500           # open entries; 0 = unlimited
    transient_to_history: bool = False
    persist: bool = False
    dedup_window_ms: int = 2000


@dataclass(frozen=True)
class DndConfig:
    allow_critical: bool = True
    windows: tuple[DndWindow, ...] = ()
    exempt: tuple[Predicate, ...] = ()


@dataclass(frozen=True)
class SoundConfig:
    enabled: bool = True
    default_name: str | None = "message-new-instant"
    default_file: str | None = None


@dataclass(frozen=True)
class CacheConfig:
    icon_budget_bytes: int = 16 * MIB
    theme_budget_bytes: int = 2 * MIB


@dataclass(frozen=True)
class WatcherConfig:
    name: str
    cmd: str
    enabled: bool = True
    interval_ms: int = 3000
    timeout_ms: int = 0             # 0 = derive from the command kind
    jitter_ms: int | None = None    # None = use [widgets] jitter_ms
    watch_cmd: str | None = None
    on_cmd: str | None = None
    off_cmd: str | None = None


@dataclass(frozen=True)
class WidgetsConfig:
    enabled: bool = True
    max_concurrent: int = 2
    jitter_ms: int = 200
    watchers: tuple[WatcherConfig, ...] | None = None   # None = runtime defaults


@dataclass(frozen=True)
class ThemeConfig:
    base_css: str = "base.css"
    popup_css: str = "popup.css"
    panel_css: str = "panel.css"
    widgets_css: str = "widgets.css"

    def filenames(self) -> dict[str, str]:
        return {
            "base": self.base_css,
            "popup": self.popup_css,
            "panel": self.panel_css,
            "widgets": self.widgets_css,
        }


@dataclass(frozen=True)
class ConfigSnapshot:
    general: GeneralConfig = field(default_factory=GeneralConfig)
    popups: PopupConfig = field(default_factory=PopupConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    dnd: DndConfig = field(default_factory=DndConfig)
    sound: SoundConfig = field(default_factory=SoundConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    widgets: WidgetsConfig = field(default_factory=WidgetsConfig)
    theme: ThemeConfig = field(default_factory=ThemeConfig)
    rules: tuple[Rule, ...] = ()
    source: Path | None = None   # None when built from defaults
