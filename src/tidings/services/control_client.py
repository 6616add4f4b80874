"""Client side of the control channel: sends one command to a running daemon."""

import asyncio
import logging
import sys

from dbus_next import DBusError
from dbus_next.aio import MessageBus
from dbus_next.errors import InvalidAddressError

from tidings.services.dbus_bridge import CONTROL_INTERFACE, CONTROL_NAME, CONTROL_PATH

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNREACHABLE = 1
EXIT_MALFORMED = 2

CALL_TIMEOUT_S = 3.0

# Command name -> control method
COMMANDS = {
    "open-panel": "OpenPanel",
    "close-panel": "ClosePanel",
    "toggle-panel": "TogglePanel",
    "toggle-dnd": "ToggleDnd",
    "clear-history": "ClearHistory",
    "list-active": "ListActive",
}


def _method_attr(member: str) -> str:
    snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in member).lstrip("_")
    return f"call_{snake}"


async def _call(member: str, args: list):
    bus = await MessageBus().connect()
    try:
        introspection = await bus.introspect(CONTROL_NAME, CONTROL_PATH)
        proxy = bus.get_proxy_object(CONTROL_NAME, CONTROL_PATH, introspection)
        interface = proxy.get_interface(CONTROL_INTERFACE)
        return await getattr(interface, _method_attr(member))(*args)
    finally:
        bus.disconnect()


def send_command(command: str, full: bool = False, out=None) -> int:
    """Send `command` to the daemon and return a process exit code.

    0 on success, 1 when the daemon cannot be reached, 2 when the command
    is malformed. Replies with content (the DND mode, the number of cleared
    entries, the JSON list of active notifications) are printed to `out`.
    """
    out = out if out is not None else sys.stdout
    member = COMMANDS.get(command)
    if member is None:
        logger.error("unknown command %r (expected one of: %s)", command, ", ".join(COMMANDS))
        return EXIT_MALFORMED
    if full and command != "list-active":
        logger.error("--full only applies to list-active")
        return EXIT_MALFORMED

    args = [full] if command == "list-active" else []
    try:
        reply = asyncio.run(asyncio.wait_for(_call(member, args), CALL_TIMEOUT_S))
    except (DBusError, InvalidAddressError, OSError) as e:
        logger.error("daemon unreachable: %s", e)
        return EXIT_UNREACHABLE

    if reply is not None:
        print(reply, file=out)
    return EXIT_OK
