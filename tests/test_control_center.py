"""Tests for tidings.services.control_center."""

import pytest

from tidings.services.control_center import ControlCenter, PanelRequest
from tidings.services.icon_decoder import IconCache
from tidings.services.notification_service import NotificationRequest, NotificationService
from tidings.types.dnd import DndMode


class FakeWatchers:
    def __init__(self):
        self.calls = []

    def pause(self):
        self.calls.append("pause")

    def resume(self):
        self.calls.append("resume")

    def snapshot(self):
        return {"battery": {"value": "87%", "stale": False}}

    def run_toggle(self, name, on):
        self.calls.append((name, on))
        return True


@pytest.fixture
def watchers():
    return FakeWatchers()


@pytest.fixture
def control(core, watchers):
    return ControlCenter(core.service, core.store, core.dnd, watchers)


def _notify(core, summary="New message", **kwargs):
    return core.service.notify(NotificationRequest(app_name="mail", summary=summary, **kwargs))


# ---------------------------------------------------------------------------
# 1. Panel commands
# ---------------------------------------------------------------------------

def test_panel_requests(control):
    requests = []
    control.panel_requested.connect(lambda value: requests.append(value))
    control.open_panel()
    control.close_panel()
    control.toggle_panel()
    assert requests == [PanelRequest.OPEN, PanelRequest.CLOSE, PanelRequest.TOGGLE]


def test_panel_visibility_drives_watchers(control, watchers):
    changes = []
    control.panel_visibility_changed.connect(lambda visible: changes.append(visible))

    control.set_panel_visible(True)
    control.set_panel_visible(True)
    control.set_panel_visible(False)

    assert watchers.calls == ["resume", "pause"]
    assert changes == [True, False]
    assert control.panelVisible is False


def test_showing_panel_marks_read(core, control):
    _notify(core)
    assert core.store.counts()["unread"] == 1
    control.set_panel_visible(True)
    assert core.store.counts()["unread"] == 0


# ---------------------------------------------------------------------------
# 2. DND and history
# ---------------------------------------------------------------------------

def test_toggle_dnd(control):
    assert control.toggle_dnd() is DndMode.MANUAL_ON
    assert control.toggle_dnd() is DndMode.OFF


def test_clear_history(core, control):
    _notify(core, "a")
    _notify(core, "b")
    assert control.clear_history() == 2
    assert control.list_history() == []


def test_dismiss_and_invoke(core, control):
    first = _notify(core, "a", actions=["open", "Open"])
    second = _notify(core, "b")
    assert control.invoke_action(first, "open")
    assert control.dismiss(second)
    assert control.list_active() == []


def test_run_toggle_forwarded(control, watchers):
    assert control.run_toggle("wifi", False)
    assert watchers.calls == [("wifi", False)]


# ---------------------------------------------------------------------------
# 3. Queries
# ---------------------------------------------------------------------------

def test_list_active_excludes_closed(core, control):
    keep = _notify(core, "keep")
    gone = _notify(core, "gone")
    core.service.close_notification(gone)

    assert [v["id"] for v in control.list_active()] == [keep]
    assert [v["id"] for v in control.list_history()] == [gone, keep]


def test_list_active_full_includes_image_bytes(core, control):
    _notify(core, hints={"image-data": [1, 1, 3, False, 8, 3, b"\x01\x02\x03"]})
    assert "imageData" not in control.list_active()[0]["image"]
    assert control.list_active(full=True)[0]["image"]["imageData"]["data"] == "010203"


def test_state_shape(core, control):
    _notify(core)
    state = control.state()
    assert state["dnd"] == "off"
    assert state["dndActive"] is False
    assert state["panelVisible"] is False
    assert state["counts"]["active"] == 1
    assert state["watchers"]["battery"]["value"] == "87%"


def test_state_without_watchers(core):
    control = ControlCenter(core.service, core.store, core.dnd)
    assert control.state()["watchers"] == {}


# ---------------------------------------------------------------------------
# 4. Theme and icon assets
# ---------------------------------------------------------------------------

def test_stylesheets_served_as_last_loaded(control):
    assert control.stylesheets() == {}
    sheets = {"base": "* { color: red; }"}
    control.set_stylesheets(sheets)
    sheets["base"] = "mutated"
    assert control.stylesheets() == {"base": "* { color: red; }"}


def test_icon_served_from_cache(qapp, core, watchers):
    icons = IconCache(1024 * 1024)
    service = NotificationService(core.store, core.expiry, core.dnd, lambda: core.config, icons=icons)
    control = ControlCenter(service, core.store, core.dnd, watchers, icons=icons)
    service.notify(NotificationRequest(
        app_name="mail", summary="pic",
        hints={"image-data": [1, 1, 3, False, 8, 3, b"\x01\x02\x03"]},
    ))

    handle = control.list_active()[0]["image"]["iconKey"]
    icon = control.icon(handle)
    assert (icon.width, icon.height, icon.data) == (1, 1, b"\x01\x02\x03\xff")
    assert control.icon("data|0000|1|1") is None


def test_icon_without_cache(control):
    assert control.icon("data|0000|1|1") is None


def test_state_reports_popup_limit(core, watchers, snapshot_from):
    snapshot = snapshot_from("[popups]\nmax_visible = 2\n")
    control = ControlCenter(core.service, core.store, core.dnd, watchers, config=lambda: snapshot)
    assert control.state()["popups"] == {"maxVisible": 2}
