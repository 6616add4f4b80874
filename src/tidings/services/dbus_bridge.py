"""Session-bus adapter: exports the notification and control interfaces.

dbus-next parses the string annotations on @method and @signal members as
D-Bus type signatures, so this module must not use postponed annotation
evaluation.
"""

import asyncio
import json
import logging
import threading
from concurrent.futures import Future

from dbus_next import BusType, DBusError, Variant
from dbus_next.aio import MessageBus
from dbus_next.constants import ErrorType, NameFlag, RequestNameReply
from dbus_next.service import ServiceInterface, method, signal

from PySide6.QtCore import QObject, Slot

from tidings.services.notification_service import NotificationRequest
from tidings.types.errors import ProtocolError, StartupError, WatcherError
from tidings.types.watchers import CommandResult

logger = logging.getLogger(__name__)

NOTIFICATIONS_NAME = "org.freedesktop.Notifications"
NOTIFICATIONS_PATH = "/org/freedesktop/Notifications"
NOTIFICATIONS_INTERFACE = "org.freedesktop.Notifications"

CONTROL_NAME = "io.tidings.Control"
CONTROL_PATH = "/io/tidings/Control"
CONTROL_INTERFACE = "io.tidings.Control"

STARTUP_TIMEOUT_S = 5.0


def unwrap_variant(value):
    """Strip dbus-next Variants recursively into plain Python values."""
    if isinstance(value, Variant):
        return unwrap_variant(value.value)
    if isinstance(value, dict):
        return {k: unwrap_variant(v) for k, v in value.items()}
    if isinstance(value, list):
        return [unwrap_variant(v) for v in value]
    return value


class NotificationsInterface(ServiceInterface):
    """org.freedesktop.Notifications, version 1.2."""

    def __init__(self, service):
        super().__init__(NOTIFICATIONS_INTERFACE)
        self._service = service

    @method()
    def GetCapabilities(self) -> 'as':
        return self._service.get_capabilities()

    @method()
    async def Notify(self, app_name: 's', replaces_id: 'u', app_icon: 's', summary: 's',
                     body: 's', actions: 'as', hints: 'a{sv}', expire_timeout: 'i') -> 'u':
        request = NotificationRequest(
            app_name=app_name,
            replaces_id=replaces_id,
            app_icon=app_icon,
            summary=summary,
            body=body,
            actions=list(actions),
            hints=unwrap_variant(hints),
            expire_timeout=expire_timeout,
        )
        # Icon decoding can take a while; keep the bus loop free
        return await asyncio.get_running_loop().run_in_executor(None, self.submit, request)

    def submit(self, request: NotificationRequest) -> int:
        try:
            return self._service.notify(request)
        except ProtocolError as e:
            logger.debug("rejected Notify: %s", e)
            raise DBusError(ErrorType.INVALID_ARGS, str(e)) from e

    @method()
    def CloseNotification(self, id: 'u'):
        self._service.close_notification(id)

    @method()
    def GetServerInformation(self) -> 'ssss':
        return list(self._service.get_server_information())

    @signal()
    def NotificationClosed(self, id, reason) -> 'uu':
        return [id, reason]

    @signal()
    def ActionInvoked(self, id, action_key) -> 'us':
        return [id, action_key]


class ControlInterface(ServiceInterface):
    """Control channel for the CLI and panel. Structured replies are JSON strings."""

    def __init__(self, control):
        super().__init__(CONTROL_INTERFACE)
        self._control = control

    @method()
    def OpenPanel(self):
        self._control.open_panel()

    @method()
    def ClosePanel(self):
        self._control.close_panel()

    @method()
    def TogglePanel(self):
        self._control.toggle_panel()

    @method()
    def SetPanelVisible(self, visible: 'b'):
        self._control.set_panel_visible(visible)

    @method()
    def ToggleDnd(self) -> 's':
        return self._control.toggle_dnd().value

    @method()
    def SetDnd(self, enabled: 'b') -> 's':
        return self._control.set_dnd(enabled).value

    @method()
    def ClearHistory(self) -> 'u':
        return self._control.clear_history()

    @method()
    def Dismiss(self, id: 'u') -> 'b':
        return self._control.dismiss(id)

    @method()
    def InvokeAction(self, id: 'u', action_key: 's') -> 'b':
        return self._control.invoke_action(id, action_key)

    @method()
    def ListActive(self, full: 'b') -> 's':
        return json.dumps(self._control.list_active(full))

    @method()
    def ListHistory(self) -> 's':
        return json.dumps(self._control.list_history())

    @method()
    def GetState(self) -> 's':
        return json.dumps(self._control.state())

    @method()
    async def RunToggle(self, name: 's', on: 'b') -> 'b':
        return await asyncio.get_running_loop().run_in_executor(None, self.run_toggle, name, on)

    @method()
    def GetStylesheets(self) -> 's':
        return json.dumps(self._control.stylesheets())

    @method()
    def GetIcon(self, icon_key: 's') -> '(iiay)':
        return self.icon(icon_key)

    def run_toggle(self, name: str, on: bool) -> bool:
        try:
            outcome = self._control.run_toggle(name, on)
        except WatcherError as e:
            raise DBusError(ErrorType.FAILED, str(e)) from e
        return isinstance(outcome, CommandResult) and outcome.ok

    def icon(self, icon_key: str) -> list:
        """(width, height, RGBA bytes); all empty when the key is not cached."""
        icon = self._control.icon(icon_key)
        if icon is None:
            return [0, 0, b""]
        return [icon.width, icon.height, icon.data]

    @signal()
    def PanelRequested(self, request) -> 'u':
        return request

    @signal()
    def StateChanged(self, payload) -> 's':
        return payload

    @signal()
    def NotificationAdded(self, view, show_popup) -> 'sb':
        return [view, show_popup]

    @signal()
    def NotificationUpdated(self, view, show_popup) -> 'sb':
        return [view, show_popup]

    @signal()
    def NotificationClosed(self, id, reason) -> 'uu':
        return [id, reason]


class DbusBridge(QObject):
    """Runs the bus connection on its own asyncio loop thread.

    Method calls arrive on the loop thread. Quick ones go straight to the
    core objects, which are thread-safe; Notify and RunToggle can block on
    image decoding or a subprocess and run in the default executor. Core
    signals are received on the Qt thread and handed to the loop with
    call_soon_threadsafe.
    """

    def __init__(self, service, control, publisher=None, parent=None):
        super().__init__(parent)
        self._notifications = NotificationsInterface(service)
        self._control_iface = ControlInterface(control)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._bus: MessageBus | None = None

        service.notification_closed.connect(self._on_notification_closed)
        service.action_invoked.connect(self._on_action_invoked)
        service.notification_added.connect(self._on_notification_added)
        service.notification_updated.connect(self._on_notification_updated)
        control.panel_requested.connect(self._on_panel_requested)
        if publisher is not None:
            publisher.state_changed.connect(self._on_state_changed)

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    def start(self, timeout: float = STARTUP_TIMEOUT_S):
        """Connect and claim both bus names. Raises StartupError on failure."""
        ready: Future = Future()
        self._thread = threading.Thread(target=self._run, args=(ready,), name="dbus", daemon=True)
        self._thread.start()
        try:
            ready.result(timeout=timeout)
        except StartupError:
            raise
        except Exception as e:
            raise StartupError(f"cannot connect to the session bus: {e}") from e
        logger.info("Serving %s and %s", NOTIFICATIONS_NAME, CONTROL_NAME)

    def stop(self):
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None

    def _run(self, ready: Future):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._connect())
        except Exception as e:
            ready.set_exception(e)
            loop.close()
            return
        self._loop = loop
        ready.set_result(True)
        try:
            loop.run_forever()
        finally:
            self._loop = None
            if self._bus is not None:
                self._bus.disconnect()
            loop.close()

    async def _connect(self):
        bus = await MessageBus(bus_type=BusType.SESSION).connect()
        bus.export(NOTIFICATIONS_PATH, self._notifications)
        bus.export(CONTROL_PATH, self._control_iface)
        for name in (NOTIFICATIONS_NAME, CONTROL_NAME):
            reply = await bus.request_name(name, NameFlag.DO_NOT_QUEUE)
            if reply not in (RequestNameReply.PRIMARY_OWNER, RequestNameReply.ALREADY_OWNER):
                bus.disconnect()
                raise StartupError(f"{name} is owned by another process")
        self._bus = bus

    def _emit(self, signal_fn, *args):
        loop = self._loop
        if loop is None:
            return
        loop.call_soon_threadsafe(signal_fn, *args)

    # ------------------------------------------------------------------
    # Core signal forwarding
    # ------------------------------------------------------------------

    @Slot(object, int)
    def _on_notification_closed(self, notification_id, reason: int):
        self._emit(self._notifications.NotificationClosed, notification_id, reason)
        self._emit(self._control_iface.NotificationClosed, notification_id, reason)

    @Slot(object, str)
    def _on_action_invoked(self, notification_id, action_key: str):
        self._emit(self._notifications.ActionInvoked, notification_id, action_key)

    @Slot(dict, bool)
    def _on_notification_added(self, view: dict, show_popup: bool):
        self._emit(self._control_iface.NotificationAdded, json.dumps(view), show_popup)

    @Slot(dict, bool)
    def _on_notification_updated(self, view: dict, show_popup: bool):
        self._emit(self._control_iface.NotificationUpdated, json.dumps(view), show_popup)

    @Slot(int)
    def _on_panel_requested(self, request: int):
        self._emit(self._control_iface.PanelRequested, request)

    @Slot(dict)
    def _on_state_changed(self, event: dict):
        self._emit(self._control_iface.StateChanged, json.dumps(event))
