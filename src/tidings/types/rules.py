"""Rule definitions evaluated by the rules engine.

Actions are tagged variants: a kind plus the few arguments that kind uses.
The engine interprets them in order instead of dispatching to rule objects.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tidings.types.notifications import Urgency


class MatchMode(str, Enum):
    SUBSTRING = "substring"
    EXACT = "exact"
    GLOB = "glob"
    REGEX = "regex"


class ActionKind(str, Enum):
    SUPPRESS = "suppress"
    FORCE_URGENCY = "force-urgency"
    MUTE_SOUND = "mute-sound"
    DND_EXEMPT = "dnd-exempt"
    REWRITE = "rewrite"
    NO_POPUP = "no-popup"
    SET_TIMEOUT = "set-timeout"


# Fields a predicate may test and a rewrite may change
TEXT_FIELDS = ("app_name", "summary", "body", "category")


@dataclass(frozen=True)
class FieldMatcher:
    field: str
    pattern: str
    mode: MatchMode
    compiled: re.Pattern | None = None   # glob and regex modes


@dataclass(frozen=True)
class Predicate:
    matchers: tuple[FieldMatcher, ...] = ()
    urgency: Urgency | None = None


@dataclass(frozen=True)
class RuleAction:
    kind: ActionKind
    urgency: Urgency | None = None
    field: str = ""
    value: str = ""
    timeout_ms: int = -1


@dataclass(frozen=True)
class Rule:
    name: str
    predicate: Predicate
    actions: tuple[RuleAction, ...]


@dataclass(frozen=True)
class Mutation:
    """A single field change produced by a rule."""

    field: str
    value: Any
    rule: str = ""


@dataclass
class Verdict:
    suppress: bool = False
    mutations: list[Mutation] = field(default_factory=list)
    dnd_exempt: bool = False
    mute_sound: bool = False
    no_popup: bool = False
    matched: list[str] = field(default_factory=list)
