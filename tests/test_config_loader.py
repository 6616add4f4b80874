"""Tests for tidings.services.config_loader."""

from datetime import time

import pytest

from tidings.services.config_loader import (
    default_config_path,
    load_config,
    parse_config,
)
from tidings.types.config import ConfigSnapshot
from tidings.types.errors import ConfigError
from tidings.types.notifications import Urgency
from tidings.types.rules import ActionKind, MatchMode


# ---------------------------------------------------------------------------
# 1. Defaults
# ---------------------------------------------------------------------------

def test_missing_file_yields_defaults(tmp_path):
    """A config path that does not exist produces the default snapshot."""
    snapshot = load_config(tmp_path / "nope.toml")
    assert snapshot == ConfigSnapshot()
    assert snapshot.history.capacity == 200
    assert snapshot.popups.default_timeout_ms == 5000
    assert snapshot.widgets.watchers is None


def test_empty_text_yields_defaults():
    snapshot = parse_config("")
    assert snapshot.history.dedup_window_ms == 2000
    assert snapshot.history.max_active == 500
    assert snapshot.popups.max_visible == 4
    assert snapshot.dnd.allow_critical is True
    assert snapshot.rules == ()


def test_default_path_honours_xdg(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    assert default_config_path() == tmp_path / "tidings" / "config.toml"


def test_source_recorded(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("[history]\ncapacity = 5\n")
    snapshot = load_config(path)
    assert snapshot.source == path
    assert snapshot.history.capacity == 5


# ---------------------------------------------------------------------------
# 2. Section parsing
# ---------------------------------------------------------------------------

def test_sections_parsed():
    snapshot = parse_config("""
[general]
log_level = "debug"
dnd_default = true

[popups]
default_timeout_ms = 8000
critical_timeout_ms = 30000
max_visible = 3

[history]
capacity = 50
max_active = 20
transient_to_history = true
persist = true
dedup_window_ms = 0

[sound]
enabled = false
default_file = "ding.oga"

[cache]
icon_budget_bytes = 1024
theme_budget_bytes = 2048
""")
    assert snapshot.general.log_level == "debug"
    assert snapshot.general.dnd_default is True
    assert snapshot.popups.critical_timeout_ms == 30000
    assert snapshot.history.capacity == 50
    assert snapshot.history.max_active == 20
    assert snapshot.popups.max_visible == 3
    assert snapshot.history.transient_to_history is True
    assert snapshot.history.persist is True
    assert snapshot.history.dedup_window_ms == 0
    assert snapshot.sound.enabled is False
    assert snapshot.sound.default_file == "ding.oga"
    assert snapshot.cache.icon_budget_bytes == 1024


def test_unknown_keys_ignored():
    snapshot = parse_config("[history]\nshiny = 1\n[mystery]\nkey = 2\n")
    assert snapshot.history.capacity == 200


def test_dnd_windows():
    snapshot = parse_config("""
[dnd]
allow_critical = false
windows = [
  { start = "22:00", end = "07:30", days = ["fri", "saturday"] },
  { start = "12:00", end = "13:00" },
]
""")
    first, second = snapshot.dnd.windows
    assert first.start == time(22, 0)
    assert first.end == time(7, 30)
    assert first.days == frozenset({4, 5})
    assert first.overnight
    assert second.days == frozenset(range(7))
    assert snapshot.dnd.allow_critical is False


def test_watchers_parsed():
    snapshot = parse_config("""
[widgets]
max_concurrent = 3

[[widgets.watchers]]
name = "wifi"
cmd = "nmcli radio wifi"
interval_ms = 1000
on_cmd = "nmcli radio wifi on"
""")
    assert snapshot.widgets.max_concurrent == 3
    (watcher,) = snapshot.widgets.watchers
    assert watcher.name == "wifi"
    assert watcher.interval_ms == 1000
    assert watcher.on_cmd == "nmcli radio wifi on"
    assert watcher.off_cmd is None
    assert watcher.jitter_ms is None


def test_empty_watchers_list_disables_defaults():
    snapshot = parse_config("[widgets]\nwatchers = []\n")
    assert snapshot.widgets.watchers == ()


def test_theme_legacy_style_css():
    snapshot = parse_config('[theme]\nstyle_css = "old.css"\n')
    assert snapshot.theme.base_css == "old.css"
    assert snapshot.theme.popup_css == "popup.css"


# ---------------------------------------------------------------------------
# 3. Rules
# ---------------------------------------------------------------------------

def test_rules_parsed():
    snapshot = parse_config("""
[[rules]]
name = "quiet chat"
app = "chat*"
match = "glob"
actions = ["mute-sound", { type = "force-urgency", urgency = "low" }]

[[rules]]
summary = "Build"
action = { type = "rewrite", field = "app", value = "CI" }
""")
    first, second = snapshot.rules
    assert first.name == "quiet chat"
    assert first.predicate.matchers[0].mode is MatchMode.GLOB
    assert first.predicate.matchers[0].compiled is not None
    assert [a.kind for a in first.actions] == [ActionKind.MUTE_SOUND, ActionKind.FORCE_URGENCY]
    assert first.actions[1].urgency is Urgency.LOW
    assert second.name == "rule-2"
    assert second.actions[0].field == "app_name"


def test_rule_without_action_rejected():
    with pytest.raises(ConfigError) as exc:
        parse_config('[[rules]]\napp = "x"\n')
    assert exc.value.key == "rules[0]"


def test_unknown_action_rejected():
    with pytest.raises(ConfigError, match="unknown action"):
        parse_config('[[rules]]\naction = "explode"\n')


def test_invalid_regex_rejected_at_load():
    with pytest.raises(ConfigError) as exc:
        parse_config('[[rules]]\nmatch = "regex"\nbody = "(unclosed"\naction = "suppress"\n')
    assert exc.value.key == "rules[0].body"


def test_set_timeout_requires_integer():
    with pytest.raises(ConfigError):
        parse_config('[[rules]]\naction = { type = "set-timeout", timeout_ms = "soon" }\n')


# ---------------------------------------------------------------------------
# 4. Validation errors carry the dotted key
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("text, key", [
    ("[history]\ncapacity = 0\n", "history.capacity"),
    ("[history]\ncapacity = \"ten\"\n", "history.capacity"),
    ("[general]\ndnd_default = 1\n", "general.dnd_default"),
    ("[dnd]\nwindows = [{ start = \"25:00\", end = \"07:00\" }]\n", "dnd.windows[0].start"),
    ("[dnd]\nwindows = [{ start = \"22:00\", end = \"07:00\", days = [\"funday\"] }]\n", "dnd.windows[0].days"),
    ("[widgets]\nmax_concurrent = 0\n", "widgets.max_concurrent"),
    ("[popups]\nmax_visible = 0\n", "popups.max_visible"),
    ("[history]\nmax_active = -1\n", "history.max_active"),
    ("popups = 3\n", "popups"),
])
def test_bad_values_raise_config_error(text, key):
    with pytest.raises(ConfigError) as exc:
        parse_config(text)
    assert exc.value.key == key


def test_duplicate_watcher_names_rejected():
    with pytest.raises(ConfigError, match="duplicate"):
        parse_config("""
[[widgets.watchers]]
name = "a"
cmd = "true"
[[widgets.watchers]]
name = "a"
cmd = "false"
""")


def test_malformed_toml_raises():
    with pytest.raises(ConfigError, match="parse"):
        parse_config("[history\ncapacity = 1")
