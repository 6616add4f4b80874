"""Parse and validate config.toml into an immutable ConfigSnapshot."""

import logging
import os
import tomllib
from datetime import time
from pathlib import Path
from typing import Any

from tidings.types.config import (
    CacheConfig,
    ConfigSnapshot,
    DndConfig,
    GeneralConfig,
    HistoryConfig,
    PopupConfig,
    SoundConfig,
    ThemeConfig,
    WatcherConfig,
    WidgetsConfig,
)
from tidings.types.dnd import WEEKDAYS, DndWindow
from tidings.types.errors import ConfigError
from tidings.types.notifications import Urgency
from tidings.types.rules import (
    TEXT_FIELDS,
    ActionKind,
    FieldMatcher,
    MatchMode,
    Predicate,
    Rule,
    RuleAction,
)
from tidings.utils.pattern_validator import compile_pattern, validate_pattern

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.toml"
APP_DIR_NAME = "tidings"

# Predicate keys in config map onto notification fields
_PREDICATE_FIELDS = {
    "app": "app_name",
    "summary": "summary",
    "body": "body",
    "category": "category",
}


def default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return Path.home() / ".config" / APP_DIR_NAME


def default_config_path() -> Path:
    return default_config_dir() / CONFIG_FILENAME


def load_config(path: Path) -> ConfigSnapshot:
    """Load a snapshot from disk. A missing file yields the defaults."""
    if not path.exists():
        return ConfigSnapshot()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"failed to read config file: {e}") from e
    return parse_config(text, source=path)


def parse_config(text: str, source: Path | None = None) -> ConfigSnapshot:
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"failed to parse config: {e}") from e

    return ConfigSnapshot(
        general=_parse_general(_table(raw, "general")),
        popups=_parse_popups(_table(raw, "popups")),
        history=_parse_history(_table(raw, "history")),
        dnd=_parse_dnd(_table(raw, "dnd")),
        sound=_parse_sound(_table(raw, "sound")),
        cache=_parse_cache(_table(raw, "cache")),
        widgets=_parse_widgets(_table(raw, "widgets")),
        theme=_parse_theme(_table(raw, "theme")),
        rules=_parse_rules(raw.get("rules", []), "rules"),
        source=source,
    )


# ----------------------------------------------------------------------
# Sections
# ----------------------------------------------------------------------

def _parse_general(t: dict) -> GeneralConfig:
    return GeneralConfig(
        log_level=_opt_str(t, "log_level", "general"),
        dnd_default=_bool(t, "dnd_default", False, "general"),
    )


def _parse_popups(t: dict) -> PopupConfig:
    return PopupConfig(
        default_timeout_ms=_int(t, "default_timeout_ms", 5000, "popups", minimum=0),
        critical_timeout_ms=_int(t, "critical_timeout_ms", 0, "popups", minimum=0),
        max_visible=_int(t, "max_visible", 4, "popups", minimum=1),
    )


def _parse_history(t: dict) -> HistoryConfig:
    return HistoryConfig(
        capacity=_int(t, "capacity", 200, "history", minimum=1),
        max_active=_int(t, "max_active", 500, "history", minimum=0),
        transient_to_history=_bool(t, "transient_to_history", False, "history"),
        persist=_bool(t, "persist", False, "history"),
        dedup_window_ms=_int(t, "dedup_window_ms", 2000, "history", minimum=0),
    )


def _parse_dnd(t: dict) -> DndConfig:
    windows = []
    for i, item in enumerate(_list(t, "windows", "dnd")):
        key = f"dnd.windows[{i}]"
        if not isinstance(item, dict):
            raise ConfigError("expected a table", key)
        windows.append(_parse_window(item, key))

    exempt = []
    for i, item in enumerate(_list(t, "exempt", "dnd")):
        key = f"dnd.exempt[{i}]"
        if not isinstance(item, dict):
            raise ConfigError("expected a table", key)
        exempt.append(_parse_predicate(item, key))

    return DndConfig(
        allow_critical=_bool(t, "allow_critical", True, "dnd"),
        windows=tuple(windows),
        exempt=tuple(exempt),
    )


def _parse_window(t: dict, key: str) -> DndWindow:
    start = _parse_clock(t.get("start"), f"{key}.start")
    end = _parse_clock(t.get("end"), f"{key}.end")
    raw_days = t.get("days", [])
    if not isinstance(raw_days, list):
        raise ConfigError("expected a list of weekday names", f"{key}.days")
    days = set()
    for name in raw_days:
        if not isinstance(name, str) or name.strip().lower()[:3] not in WEEKDAYS:
            raise ConfigError(f"unknown weekday {name!r}", f"{key}.days")
        days.add(WEEKDAYS.index(name.strip().lower()[:3]))
    return DndWindow(start=start, end=end, days=frozenset(days) if days else frozenset(range(7)))


def _parse_clock(value: Any, key: str) -> time:
    if not isinstance(value, str):
        raise ConfigError("expected a time string like \"22:30\"", key)
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except ValueError as e:
        raise ConfigError(f"invalid time {value!r}", key) from e


def _parse_sound(t: dict) -> SoundConfig:
    return SoundConfig(
        enabled=_bool(t, "enabled", True, "sound"),
        default_name=_opt_str(t, "default_name", "sound", default="message-new-instant"),
        default_file=_opt_str(t, "default_file", "sound"),
    )


def _parse_cache(t: dict) -> CacheConfig:
    defaults = CacheConfig()
    return CacheConfig(
        icon_budget_bytes=_int(t, "icon_budget_bytes", defaults.icon_budget_bytes, "cache", minimum=0),
        theme_budget_bytes=_int(t, "theme_budget_bytes", defaults.theme_budget_bytes, "cache", minimum=0),
    )


def _parse_widgets(t: dict) -> WidgetsConfig:
    watchers = None
    if "watchers" in t:
        parsed = []
        names = set()
        for i, item in enumerate(_list(t, "watchers", "widgets")):
            key = f"widgets.watchers[{i}]"
            if not isinstance(item, dict):
                raise ConfigError("expected a table", key)
            watcher = _parse_watcher(item, key)
            if watcher.name in names:
                raise ConfigError(f"duplicate watcher name {watcher.name!r}", key)
            names.add(watcher.name)
            parsed.append(watcher)
        watchers = tuple(parsed)

    return WidgetsConfig(
        enabled=_bool(t, "enabled", True, "widgets"),
        max_concurrent=_int(t, "max_concurrent", 2, "widgets", minimum=1),
        jitter_ms=_int(t, "jitter_ms", 200, "widgets", minimum=0),
        watchers=watchers,
    )


def _parse_watcher(t: dict, key: str) -> WatcherConfig:
    name = _opt_str(t, "name", key)
    cmd = _opt_str(t, "cmd", key)
    if not name:
        raise ConfigError("watcher needs a name", key)
    if not cmd:
        raise ConfigError("watcher needs a cmd", key)
    jitter = t.get("jitter_ms")
    if jitter is not None:
        jitter = _int(t, "jitter_ms", 0, key, minimum=0)
    return WatcherConfig(
        name=name,
        cmd=cmd,
        enabled=_bool(t, "enabled", True, key),
        interval_ms=_int(t, "interval_ms", 3000, key, minimum=100),
        timeout_ms=_int(t, "timeout_ms", 0, key, minimum=0),
        jitter_ms=jitter,
        watch_cmd=_opt_str(t, "watch_cmd", key),
        on_cmd=_opt_str(t, "on_cmd", key),
        off_cmd=_opt_str(t, "off_cmd", key),
    )


def _parse_theme(t: dict) -> ThemeConfig:
    # "style_css" is accepted as an older spelling of base_css
    base = t.get("base_css", t.get("style_css", "base.css"))
    if not isinstance(base, str) or not base:
        raise ConfigError("expected a file name", "theme.base_css")
    return ThemeConfig(
        base_css=base,
        popup_css=_opt_str(t, "popup_css", "theme", default="popup.css"),
        panel_css=_opt_str(t, "panel_css", "theme", default="panel.css"),
        widgets_css=_opt_str(t, "widgets_css", "theme", default="widgets.css"),
    )


# ----------------------------------------------------------------------
# Rules
# ----------------------------------------------------------------------

def _parse_rules(value: Any, key: str) -> tuple[Rule, ...]:
    if not isinstance(value, list):
        raise ConfigError("expected an array of tables", key)
    rules = []
    for i, item in enumerate(value):
        rule_key = f"{key}[{i}]"
        if not isinstance(item, dict):
            raise ConfigError("expected a table", rule_key)
        rules.append(_parse_rule(item, rule_key, i))
    return tuple(rules)


def _parse_rule(t: dict, key: str, index: int) -> Rule:
    name = _opt_str(t, "name", key) or f"rule-{index + 1}"
    predicate = _parse_predicate(t, key)

    raw_actions: list = []
    if "action" in t:
        raw_actions.append(t["action"])
    if "actions" in t:
        if not isinstance(t["actions"], list):
            raise ConfigError("expected a list", f"{key}.actions")
        raw_actions.extend(t["actions"])
    if not raw_actions:
        raise ConfigError("rule has no action", key)

    actions = tuple(
        _parse_action(item, f"{key}.actions[{i}]") for i, item in enumerate(raw_actions)
    )
    return Rule(name=name, predicate=predicate, actions=actions)


def _parse_predicate(t: dict, key: str) -> Predicate:
    raw_mode = t.get("match", MatchMode.SUBSTRING.value)
    try:
        mode = MatchMode(raw_mode)
    except ValueError:
        raise ConfigError(f"unknown match mode {raw_mode!r}", f"{key}.match") from None

    matchers = []
    for config_key, field in _PREDICATE_FIELDS.items():
        if config_key not in t:
            continue
        pattern = t[config_key]
        if not isinstance(pattern, str):
            raise ConfigError("expected a string", f"{key}.{config_key}")
        valid, error = validate_pattern(pattern, mode)
        if not valid:
            raise ConfigError(error, f"{key}.{config_key}")
        matchers.append(FieldMatcher(
            field=field,
            pattern=pattern,
            mode=mode,
            compiled=compile_pattern(pattern, mode),
        ))

    urgency = None
    if "urgency" in t:
        urgency = _parse_urgency(t["urgency"], f"{key}.urgency")
    return Predicate(matchers=tuple(matchers), urgency=urgency)


def _parse_action(value: Any, key: str) -> RuleAction:
    if isinstance(value, str):
        value = {"type": value}
    if not isinstance(value, dict):
        raise ConfigError("expected an action name or table", key)
    try:
        kind = ActionKind(value.get("type"))
    except ValueError:
        raise ConfigError(f"unknown action {value.get('type')!r}", key) from None

    if kind is ActionKind.FORCE_URGENCY:
        if "urgency" not in value:
            raise ConfigError("force-urgency needs an urgency", key)
        return RuleAction(kind=kind, urgency=_parse_urgency(value["urgency"], f"{key}.urgency"))

    if kind is ActionKind.REWRITE:
        field = value.get("field")
        if field == "app":
            field = "app_name"
        if field not in TEXT_FIELDS:
            raise ConfigError(f"cannot rewrite field {field!r}", f"{key}.field")
        new_value = value.get("value")
        if not isinstance(new_value, str):
            raise ConfigError("expected a string", f"{key}.value")
        return RuleAction(kind=kind, field=field, value=new_value)

    if kind is ActionKind.SET_TIMEOUT:
        timeout = value.get("timeout_ms")
        if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout < -1:
            raise ConfigError("expected an integer >= -1", f"{key}.timeout_ms")
        return RuleAction(kind=kind, timeout_ms=timeout)

    return RuleAction(kind=kind)


def _parse_urgency(value: Any, key: str) -> Urgency:
    if isinstance(value, str) and value.strip().upper() in Urgency.__members__:
        return Urgency[value.strip().upper()]
    if isinstance(value, int) and not isinstance(value, bool) and value in (0, 1, 2):
        return Urgency(value)
    raise ConfigError(f"invalid urgency {value!r}", key)


# ----------------------------------------------------------------------
# Typed accessors
# ----------------------------------------------------------------------

def _table(raw: dict, name: str) -> dict:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError("expected a table", name)
    return value


def _list(t: dict, name: str, section: str) -> list:
    value = t.get(name, [])
    if not isinstance(value, list):
        raise ConfigError("expected a list", f"{section}.{name}")
    return value


def _bool(t: dict, name: str, default: bool, section: str) -> bool:
    value = t.get(name, default)
    if not isinstance(value, bool):
        raise ConfigError("expected true or false", f"{section}.{name}")
    return value


def _int(t: dict, name: str, default: int, section: str, minimum: int | None = None) -> int:
    value = t.get(name, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError("expected an integer", f"{section}.{name}")
    if minimum is not None and value < minimum:
        raise ConfigError(f"must be >= {minimum}", f"{section}.{name}")
    return value


def _opt_str(t: dict, name: str, section: str, default: str | None = None) -> str | None:
    value = t.get(name, default)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError("expected a string", f"{section}.{name}")
    return value
