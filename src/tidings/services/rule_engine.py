"""Ordered match/action rule evaluation.

`evaluate` is a pure function: it reads the notification, the config
snapshot and the DND mode, and returns a Verdict. It never mutates its
inputs and never raises, since every pattern was validated at load time.
"""

import copy
import logging

from tidings.types.config import ConfigSnapshot
from tidings.types.dnd import DndMode
from tidings.types.notifications import Notification, Urgency
from tidings.types.rules import (
    ActionKind,
    FieldMatcher,
    MatchMode,
    Mutation,
    Predicate,
    Verdict,
)

logger = logging.getLogger(__name__)


def evaluate(notification: Notification, snapshot: ConfigSnapshot, dnd_mode: DndMode) -> Verdict:
    """Run the configured rules against a notification.

    Rules run in declaration order. Each predicate sees the notification as
    rewritten by earlier rules. A suppress action stops evaluation; every
    other action accumulates.
    """
    verdict = Verdict()
    working = copy.copy(notification)

    for rule in snapshot.rules:
        if not predicate_matches(rule.predicate, working):
            continue
        verdict.matched.append(rule.name)

        for action in rule.actions:
            kind = action.kind
            if kind is ActionKind.SUPPRESS:
                verdict.suppress = True
                logger.debug("rule %s suppressed notification", rule.name)
                return verdict
            if kind is ActionKind.FORCE_URGENCY:
                _mutate(verdict, working, "urgency", action.urgency, rule.name)
            elif kind is ActionKind.REWRITE:
                _mutate(verdict, working, action.field, action.value, rule.name)
            elif kind is ActionKind.SET_TIMEOUT:
                _mutate(verdict, working, "expire_timeout", action.timeout_ms, rule.name)
            elif kind is ActionKind.MUTE_SOUND:
                verdict.mute_sound = True
            elif kind is ActionKind.NO_POPUP:
                verdict.no_popup = True
            elif kind is ActionKind.DND_EXEMPT:
                verdict.dnd_exempt = True

    if snapshot.dnd.allow_critical and working.urgency == Urgency.CRITICAL:
        verdict.dnd_exempt = True
    if not verdict.dnd_exempt and dnd_mode.active:
        if any(predicate_matches(p, working) for p in snapshot.dnd.exempt):
            verdict.dnd_exempt = True

    return verdict


def apply_mutations(notification: Notification, mutations: list[Mutation]):
    """Apply a verdict's mutations to the notification in order."""
    for mutation in mutations:
        setattr(notification, mutation.field, mutation.value)


def predicate_matches(predicate: Predicate, notification: Notification) -> bool:
    """All matchers must match. An empty predicate matches everything."""
    if predicate.urgency is not None and notification.urgency != predicate.urgency:
        return False
    for matcher in predicate.matchers:
        if not _field_matches(matcher, getattr(notification, matcher.field, "") or ""):
            return False
    return True


def _field_matches(matcher: FieldMatcher, value: str) -> bool:
    mode = matcher.mode
    if mode is MatchMode.SUBSTRING:
        return matcher.pattern.casefold() in value.casefold()
    if mode is MatchMode.EXACT:
        return matcher.pattern == value
    if mode is MatchMode.GLOB:
        return matcher.compiled.match(value) is not None
    return matcher.compiled.search(value) is not None


def _mutate(verdict: Verdict, working: Notification, field: str, value, rule_name: str):
    verdict.mutations.append(Mutation(field=field, value=value, rule=rule_name))
    setattr(working, field, value)
