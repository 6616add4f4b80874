"""Status watchers for network, bluetooth, radio-kill and audio state.

Each StatusWatcher polls one command (or follows an event stream) and
hands its outcome to the WatcherResultStore. Commands run on short-lived
worker threads through the shared CommandRunner; results are delivered
back on the Qt thread that owns the watcher.
"""

import logging
import random
import shutil
import threading

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from tidings.services.command_runner import CommandRunner, kill_process_group
from tidings.types.config import WatcherConfig, WidgetsConfig
from tidings.types.errors import WatcherError
from tidings.types.watchers import (
    CommandKind,
    CommandResult,
    CommandSpec,
    ConcurrencyRejected,
    TimedOut,
    WatcherResult,
)
from tidings.utils.redaction import log_snippet

logger = logging.getLogger(__name__)

WATCH_DEBOUNCE_MS = 120


def default_watchers(which=shutil.which) -> tuple[WatcherConfig, ...]:
    """Built-in watchers for whichever tools are installed."""
    watchers = []
    if which("nmcli"):
        watchers.append(WatcherConfig(
            name="network",
            cmd="nmcli -t -f STATE general",
            watch_cmd="nmcli monitor",
            on_cmd="nmcli networking on",
            off_cmd="nmcli networking off",
        ))
    if which("bluetoothctl"):
        watchers.append(WatcherConfig(
            name="bluetooth",
            cmd="bluetoothctl show",
            interval_ms=5000,
            on_cmd="bluetoothctl power on",
            off_cmd="bluetoothctl power off",
        ))
    if which("rfkill"):
        watchers.append(WatcherConfig(
            name="radio",
            cmd="rfkill -n -o TYPE,SOFT",
            interval_ms=5000,
            watch_cmd="rfkill event",
            on_cmd="rfkill unblock all",
            off_cmd="rfkill block all",
        ))
    if which("wpctl"):
        watchers.append(WatcherConfig(
            name="audio",
            cmd="wpctl get-volume @DEFAULT_AUDIO_SINK@",
            watch_cmd="pactl subscribe" if which("pactl") else None,
            on_cmd="wpctl set-mute @DEFAULT_AUDIO_SINK@ 0",
            off_cmd="wpctl set-mute @DEFAULT_AUDIO_SINK@ 1",
        ))
    elif which("pactl"):
        watchers.append(WatcherConfig(
            name="audio",
            cmd="pactl get-sink-mute @DEFAULT_SINK@",
            watch_cmd="pactl subscribe",
            on_cmd="pactl set-sink-mute @DEFAULT_SINK@ 0",
            off_cmd="pactl set-sink-mute @DEFAULT_SINK@ 1",
        ))
    return tuple(watchers)


# ----------------------------------------------------------------------
# Result store
# ----------------------------------------------------------------------


class WatcherResultStore(QObject):
    """Single writer of the latest result per watcher."""

    result_changed = Signal(str)   # watcher name

    def __init__(self, parent=None):
        super().__init__(parent)
        self._lock = threading.Lock()
        self._results: dict[str, WatcherResult] = {}

    def register(self, name: str):
        with self._lock:
            self._results.setdefault(name, WatcherResult(name=name))

    def remove(self, name: str):
        with self._lock:
            self._results.pop(name, None)

    def update(self, name: str, outcome) -> WatcherResult | None:
        """Fold a command outcome into the stored result.

        Failures keep the last good value and mark it stale. A rejection by
        the concurrency budget is not a failure and leaves the result alone.
        """
        if isinstance(outcome, ConcurrencyRejected):
            logger.debug("watcher %s skipped, command budget exhausted", name)
            return None

        with self._lock:
            previous = self._results.get(name) or WatcherResult(name=name)
            if isinstance(outcome, CommandResult) and outcome.ok:
                result = WatcherResult(
                    name=name,
                    value=outcome.stdout.strip(),
                    stale=False,
                    exit_code=0,
                )
            elif isinstance(outcome, CommandResult):
                result = WatcherResult(
                    name=name,
                    value=previous.value,
                    stale=True,
                    timestamp=previous.timestamp,
                    error=f"exit status {outcome.exit_code}",
                    exit_code=outcome.exit_code,
                )
            elif isinstance(outcome, TimedOut):
                result = WatcherResult(
                    name=name,
                    value=previous.value,
                    stale=True,
                    timestamp=previous.timestamp,
                    error=f"timed out after {outcome.timeout_ms} ms",
                )
            else:
                result = WatcherResult(
                    name=name,
                    value=previous.value,
                    stale=True,
                    timestamp=previous.timestamp,
                    error=str(outcome),
                )
            self._results[name] = result

        self.result_changed.emit(name)
        return result

    def get(self, name: str) -> WatcherResult | None:
        with self._lock:
            return self._results.get(name)

    def snapshot(self) -> dict[str, dict]:
        with self._lock:
            return {name: result.to_dict() for name, result in self._results.items()}


# ----------------------------------------------------------------------
# Watcher
# ----------------------------------------------------------------------


class StatusWatcher(QObject):
    """One polled or stream-driven status source.

    At most one execution is in flight per watcher. Pausing bumps a
    generation counter so an execution that finishes after the pause is
    discarded rather than reported.
    """

    finished = Signal(str, object)   # name, outcome

    _completed = Signal(int, object)    # generation, outcome
    _stream_event = Signal(int)
    _stream_ended = Signal(int)

    def __init__(
        self,
        config: WatcherConfig,
        runner: CommandRunner,
        default_jitter_ms: int = 200,
        parent=None,
    ):
        super().__init__(parent)
        self._config = config
        self._runner = runner
        self._jitter_ms = config.jitter_ms if config.jitter_ms is not None else default_jitter_ms
        self._generation = 0
        self._in_flight = False
        self._paused = True
        self._stream = None

        self._poll_timer = QTimer(self)
        self._poll_timer.setSingleShot(True)
        self._poll_timer.timeout.connect(self.refresh)

        self._debounce_timer = QTimer(self)
        self._debounce_timer.setSingleShot(True)
        self._debounce_timer.setInterval(WATCH_DEBOUNCE_MS)
        self._debounce_timer.timeout.connect(self.refresh)

        self._completed.connect(self._on_completed)
        self._stream_event.connect(self._on_stream_event)
        self._stream_ended.connect(self._on_stream_ended)

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> WatcherConfig:
        return self._config

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def streaming(self) -> bool:
        return self._stream is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        if not self._config.enabled or not self._paused:
            return
        self._paused = False
        if self._config.watch_cmd:
            self._start_stream()
        self.refresh()

    def pause(self):
        """Cancel scheduled invocations and discard any in-flight result."""
        if self._paused:
            return
        self._paused = True
        self._generation += 1
        self._poll_timer.stop()
        self._debounce_timer.stop()
        self._stop_stream()

    @Slot()
    def refresh(self) -> bool:
        """Run the command now unless paused or already running."""
        if self._paused or self._in_flight:
            return False
        self._in_flight = True
        generation = self._generation
        spec = CommandSpec(self._config.cmd, CommandKind.FAST, self._config.timeout_ms)
        threading.Thread(
            target=self._run, args=(spec, generation),
            name=f"watcher-{self.name}", daemon=True,
        ).start()
        return True

    def _run(self, spec: CommandSpec, generation: int):
        try:
            outcome = self._runner.run(spec)
        except WatcherError as e:
            logger.warning("watcher %s failed: %s", self.name, e)
            outcome = e
        self._completed.emit(generation, outcome)

    @Slot(int, object)
    def _on_completed(self, generation: int, outcome):
        self._in_flight = False
        if generation != self._generation or self._paused:
            logger.debug("watcher %s result discarded after pause", self.name)
            if not self._paused:
                # resumed while this run was in flight; start() could not refresh
                self.refresh()
            return
        self.finished.emit(self.name, outcome)
        if self._stream is None:
            self._schedule_poll()

    def _schedule_poll(self):
        delay = self._config.interval_ms
        if self._jitter_ms > 0:
            delay += random.randint(0, self._jitter_ms)
        self._poll_timer.start(delay)

    # ------------------------------------------------------------------
    # Event stream
    # ------------------------------------------------------------------

    def _start_stream(self):
        try:
            proc = self._runner.spawn_stream(self._config.watch_cmd)
        except WatcherError as e:
            logger.warning("watcher %s stream unavailable, polling instead: %s", self.name, e)
            return
        self._stream = proc
        self._poll_timer.stop()
        generation = self._generation
        threading.Thread(
            target=self._read_stream, args=(proc, generation),
            name=f"watch-stream-{self.name}", daemon=True,
        ).start()
        logger.debug("watcher %s following %s", self.name, log_snippet(self._config.watch_cmd))

    def _read_stream(self, proc, generation: int):
        for _line in proc.stdout:
            self._stream_event.emit(generation)
        proc.wait()
        self._stream_ended.emit(generation)

    def _stop_stream(self):
        proc, self._stream = self._stream, None
        if proc is not None:
            kill_process_group(proc)

    @Slot(int)
    def _on_stream_event(self, generation: int):
        if generation == self._generation and not self._paused:
            self._debounce_timer.start()

    @Slot(int)
    def _on_stream_ended(self, generation: int):
        if generation != self._generation or self._paused:
            return
        logger.info("watcher %s stream ended, falling back to polling", self.name)
        self._stream = None
        if not self._in_flight:
            self._schedule_poll()


# ----------------------------------------------------------------------
# Manager
# ----------------------------------------------------------------------


class WatcherManager(QObject):
    """Owns the watchers, their results and the pause state.

    Watchers start paused; the panel resumes them while it is visible.
    """

    result_changed = Signal(str)   # watcher name

    _refresh_requested = Signal(str)

    def __init__(
        self,
        runner: CommandRunner,
        widgets: WidgetsConfig | None = None,
        which=shutil.which,
        parent=None,
    ):
        super().__init__(parent)
        self._runner = runner
        self._which = which
        self._widgets = widgets or WidgetsConfig()
        self._watchers: dict[str, StatusWatcher] = {}
        self._paused = True
        self._results = WatcherResultStore(self)
        self._results.result_changed.connect(self.result_changed)
        self._refresh_requested.connect(self._on_refresh_requested)
        self._build(self._widgets)

    @property
    def results(self) -> WatcherResultStore:
        return self._results

    @property
    def paused(self) -> bool:
        return self._paused

    def names(self) -> list[str]:
        return list(self._watchers)

    def watcher(self, name: str) -> StatusWatcher | None:
        return self._watchers.get(name)

    def snapshot(self) -> dict[str, dict]:
        return self._results.snapshot()

    # ------------------------------------------------------------------
    # Pause / resume
    # ------------------------------------------------------------------

    @Slot()
    def pause(self):
        if self._paused:
            return
        self._paused = True
        for watcher in self._watchers.values():
            watcher.pause()
        logger.debug("watchers paused")

    @Slot()
    def resume(self):
        if not self._paused:
            return
        self._paused = False
        for watcher in self._watchers.values():
            watcher.start()
        logger.debug("watchers resumed")

    def refresh(self, name: str):
        """Request an immediate refresh; safe to call from any thread."""
        self._refresh_requested.emit(name)

    @Slot(str)
    def _on_refresh_requested(self, name: str):
        watcher = self._watchers.get(name)
        if watcher is not None:
            watcher.refresh()

    # ------------------------------------------------------------------
    # Toggles
    # ------------------------------------------------------------------

    def run_toggle(self, name: str, on: bool):
        """Run a watcher's on/off command, then refresh its state."""
        watcher = self._watchers.get(name)
        if watcher is None:
            raise WatcherError(f"unknown watcher: {name}")
        cmd = watcher.config.on_cmd if on else watcher.config.off_cmd
        if not cmd:
            raise WatcherError(f"watcher {name} has no {'on' if on else 'off'} command")
        outcome = self._runner.run(CommandSpec(cmd, CommandKind.ACTION))
        if isinstance(outcome, CommandResult) and not outcome.ok:
            logger.warning("toggle for %s returned status %d", name, outcome.exit_code)
        self.refresh(name)
        return outcome

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def apply_config(self, snapshot):
        widgets = snapshot.widgets
        self._runner.set_max_concurrent(widgets.max_concurrent)
        if widgets == self._widgets:
            return
        self._widgets = widgets
        for watcher in self._watchers.values():
            watcher.pause()
            watcher.setParent(None)
        self._watchers.clear()
        self._build(widgets)
        if not self._paused:
            for watcher in self._watchers.values():
                watcher.start()

    def _build(self, widgets: WidgetsConfig):
        configs = () if not widgets.enabled else widgets.watchers
        if configs is None:
            configs = default_watchers(self._which)

        names = {c.name for c in configs}
        for stale in set(self._results.snapshot()) - names:
            self._results.remove(stale)

        for config in configs:
            watcher = StatusWatcher(config, self._runner, widgets.jitter_ms, self)
            watcher.finished.connect(self._on_watcher_finished)
            self._watchers[config.name] = watcher
            self._results.register(config.name)
        logger.debug("watchers configured: %s", ", ".join(self._watchers) or "none")

    @Slot(str, object)
    def _on_watcher_finished(self, name: str, outcome):
        self._results.update(name, outcome)
