"""Budgeted execution of external commands.

Every external process the daemon starts goes through a CommandRunner. The
runner enforces a hard ceiling on concurrent executions and a per-kind
timeout that kills the whole process group, so a hung command can never hold
a slot indefinitely.
"""

import logging
import os
import shlex
import signal
import subprocess
import threading
import time

from tidings.types.errors import WatcherError
from tidings.types.watchers import (
    CommandKind,
    CommandResult,
    CommandSpec,
    ConcurrencyRejected,
    TimedOut,
)
from tidings.utils.redaction import log_snippet

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 2

# Tools that talk to system daemons and routinely take longer than a fast query
SLOW_TOOLS = (
    "nmcli",
    "bluetoothctl",
    "rfkill",
    "udevadm",
    "upower",
    "playerctl",
    "pactl",
    "wpctl",
    "brightnessctl",
)

_SHELL_META = frozenset("|&;<>$`(){}[]*?~\n\r")


def classify(cmd: str, default: CommandKind = CommandKind.FAST) -> CommandKind:
    """Promote pipelines, sleeps and known slow tools to SLOW.

    ACTION commands keep their kind; they already get the longest timeout.
    """
    if default is CommandKind.ACTION:
        return default
    lower = cmd.lower()
    if any(token in lower for token in ("|", "&&", ";", "sleep")):
        return CommandKind.SLOW
    if any(tool in lower for tool in SLOW_TOOLS):
        return CommandKind.SLOW
    return default


def is_simple_command(cmd: str) -> bool:
    if any(ch in _SHELL_META for ch in cmd):
        return False
    first = cmd.split(maxsplit=1)[0] if cmd.split() else ""
    # VAR=value prefixes need a shell
    if "=" in first and not first.startswith(("/", "./")):
        return False
    return True


def build_argv(cmd: str) -> list[str]:
    """Run simple commands directly; anything needing a shell goes via sh -c."""
    cmd = cmd.strip()
    if is_simple_command(cmd):
        try:
            argv = shlex.split(cmd)
        except ValueError:
            argv = []
        if argv:
            return argv
    return ["sh", "-c", cmd]


def kill_process_group(proc: subprocess.Popen):
    """SIGKILL the process group started for `proc` and reap it."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass
    try:
        proc.kill()
    except ProcessLookupError:
        pass


class CommandRunner:
    """Runs commands under a shared concurrency budget.

    run() is synchronous and safe to call from any thread. When every slot
    is taken the call is rejected immediately instead of queueing, which
    keeps a burst of refreshes from piling up behind slow commands.
    """

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT):
        self._max_concurrent = max(1, max_concurrent)
        self._lock = threading.Lock()
        self._in_flight = 0

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def set_max_concurrent(self, max_concurrent: int):
        """Resize the budget. Runs already in flight count against the new limit."""
        with self._lock:
            self._max_concurrent = max(1, max_concurrent)

    def run(self, spec: CommandSpec) -> CommandResult | TimedOut | ConcurrencyRejected:
        cmd = spec.cmd.strip()
        if not cmd:
            raise WatcherError("command was empty")

        with self._lock:
            in_flight = self._in_flight
            admitted = in_flight < self._max_concurrent
            if admitted:
                self._in_flight += 1
        if not admitted:
            logger.debug("command rejected, budget exhausted: %s", log_snippet(cmd))
            return ConcurrencyRejected(cmd=cmd, in_flight=in_flight)

        try:
            return self._execute(cmd, spec)
        finally:
            with self._lock:
                self._in_flight -= 1

    def spawn_stream(self, cmd: str) -> subprocess.Popen:
        """Start a long-running event stream with line-buffered stdout.

        Streams do not hold a budget slot; the caller owns the process and
        must kill it with kill_process_group().
        """
        cmd = cmd.strip()
        if not cmd:
            raise WatcherError("watch command was empty")
        try:
            return subprocess.Popen(
                build_argv(cmd),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            raise WatcherError(f"watch command failed to start: {e}") from e

    def _execute(self, cmd: str, spec: CommandSpec) -> CommandResult | TimedOut:
        kind = classify(cmd, spec.kind)
        timeout_ms = spec.timeout_ms if spec.timeout_ms > 0 else CommandSpec(cmd, kind).effective_timeout_ms
        started = time.monotonic()
        logger.debug("command start kind=%s cmd=%s", kind.value, log_snippet(cmd))

        try:
            proc = subprocess.Popen(
                build_argv(cmd),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise WatcherError(f"command failed to start: {e}") from e

        try:
            stdout, stderr = proc.communicate(timeout=timeout_ms / 1000)
        except subprocess.TimeoutExpired:
            kill_process_group(proc)
            proc.communicate()
            logger.warning("command timed out after %d ms: %s", timeout_ms, log_snippet(cmd))
            return TimedOut(cmd=cmd, timeout_ms=timeout_ms)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if proc.returncode != 0:
            logger.debug(
                "command failed status=%s elapsed_ms=%d cmd=%s",
                proc.returncode, elapsed_ms, log_snippet(cmd),
            )
        return CommandResult(
            stdout=stdout,
            exit_code=proc.returncode,
            stderr=stderr,
            elapsed_ms=elapsed_ms,
        )
