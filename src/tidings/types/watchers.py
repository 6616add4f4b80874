"""Command and watcher result types for the command budgeting subsystem."""

import time
from dataclasses import dataclass, field
from enum import Enum


class CommandKind(str, Enum):
    FAST = "fast"
    SLOW = "slow"
    ACTION = "action"


DEFAULT_TIMEOUTS_MS = {
    CommandKind.FAST: 350,
    CommandKind.SLOW: 800,
    CommandKind.ACTION: 1200,
}


@dataclass(frozen=True)
class CommandSpec:
    cmd: str
    kind: CommandKind = CommandKind.FAST
    timeout_ms: int = 0     # 0 = use the kind's default

    @property
    def effective_timeout_ms(self) -> int:
        return self.timeout_ms if self.timeout_ms > 0 else DEFAULT_TIMEOUTS_MS[self.kind]


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    exit_code: int
    stderr: str = ""
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class TimedOut:
    cmd: str
    timeout_ms: int


@dataclass(frozen=True)
class ConcurrencyRejected:
    cmd: str
    in_flight: int


@dataclass
class WatcherResult:
    name: str
    value: str = ""
    timestamp: float = field(default_factory=time.time)
    stale: bool = True
    error: str = ""
    exit_code: int | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "value": self.value,
            "timestamp": self.timestamp,
            "stale": self.stale,
            "error": self.error,
            "exitCode": self.exit_code,
        }
