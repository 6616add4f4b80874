"""Notification sound selection and playback."""

import logging
import shlex
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlsplit

from tidings.services.command_runner import CommandRunner
from tidings.types.config import SoundConfig
from tidings.types.errors import WatcherError
from tidings.types.notifications import Notification
from tidings.types.watchers import CommandKind, CommandResult, CommandSpec
from tidings.utils.hints import hint_bool

logger = logging.getLogger(__name__)

# Preference order; only canberra understands sound theme names
BACKENDS = ("canberra-gtk-play", "pw-play", "paplay")

MIN_INTERVAL_S = 0.15
SOUND_TIMEOUT_MS = 3000


@dataclass(frozen=True)
class SoundSource:
    kind: str    # "name" or "file"
    value: str


def detect_backend(which=shutil.which) -> str | None:
    for backend in BACKENDS:
        if which(backend):
            return backend
    return None


def decode_file_uri(value: str) -> str | None:
    """Local path for a file:// URI; None for remote hosts or malformed input."""
    parts = urlsplit(value)
    if parts.scheme != "file" or parts.netloc not in ("", "localhost"):
        return None
    path = unquote(parts.path)
    if not path.startswith("/") or "\x00" in path:
        return None
    return path


def resolve_sound_file(value: str) -> str:
    value = value.strip()
    if value.startswith("file://"):
        return decode_file_uri(value) or value
    return value


class SoundPlayer:
    """Plays at most one sound per MIN_INTERVAL_S through the command runner."""

    def __init__(
        self,
        runner: CommandRunner,
        config: SoundConfig | None = None,
        config_dir: Path | None = None,
        which=shutil.which,
        clock=time.monotonic,
    ):
        self._runner = runner
        self._backend = detect_backend(which)
        self._clock = clock
        self._lock = threading.Lock()
        self._last_played: float | None = None
        self._config = config or SoundConfig()
        self._config_dir = config_dir
        logger.debug("sound backend: %s", self._backend or "none")
        if self._config.enabled and self._backend is None:
            logger.warning("Sound enabled but no playback backend found in PATH")

    @property
    def backend(self) -> str | None:
        return self._backend

    @property
    def supported(self) -> bool:
        return self._config.enabled and self._backend is not None

    def apply_config(self, config: SoundConfig, config_dir: Path | None = None):
        self._config = config
        if config_dir is not None:
            self._config_dir = config_dir

    def resolve(self, notification: Notification) -> SoundSource | None:
        if notification.sound_file:
            return SoundSource("file", resolve_sound_file(notification.sound_file))
        if notification.sound_name:
            return SoundSource("name", notification.sound_name)
        if self._config.default_file:
            path = Path(self._config.default_file)
            if not path.is_absolute() and self._config_dir is not None:
                path = self._config_dir / path
            return SoundSource("file", str(path))
        if self._config.default_name:
            return SoundSource("name", self._config.default_name)
        return None

    def command_for(self, source: SoundSource) -> str | None:
        if self._backend == "canberra-gtk-play":
            flag = "-i" if source.kind == "name" else "-f"
            return shlex.join([self._backend, flag, source.value])
        if self._backend and source.kind == "file":
            return shlex.join([self._backend, source.value])
        if self._backend:
            logger.debug("%s cannot play sound names", self._backend)
        return None

    def play_for(self, notification: Notification) -> bool:
        """Start playback for a notification. Returns True if a sound was queued."""
        if not self.supported:
            return False
        if hint_bool(notification.hints, "suppress-sound"):
            return False
        if not self._should_play_now():
            logger.debug("sound skipped, rate limited")
            return False
        source = self.resolve(notification)
        if source is None:
            return False
        cmd = self.command_for(source)
        if cmd is None:
            return False
        threading.Thread(target=self._play, args=(cmd,), name="sound", daemon=True).start()
        return True

    def _should_play_now(self) -> bool:
        now = self._clock()
        with self._lock:
            if self._last_played is not None and now - self._last_played < MIN_INTERVAL_S:
                return False
            self._last_played = now
            return True

    def _play(self, cmd: str):
        try:
            outcome = self._runner.run(CommandSpec(cmd, CommandKind.ACTION, SOUND_TIMEOUT_MS))
        except WatcherError as e:
            logger.warning("Sound playback failed: %s", e)
            return
        if isinstance(outcome, CommandResult) and not outcome.ok:
            logger.warning("Sound command exited with status %d", outcome.exit_code)
        elif not isinstance(outcome, CommandResult):
            logger.debug("Sound command did not complete: %s", type(outcome).__name__)
