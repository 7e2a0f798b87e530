"""
Project: Roadside Dispatch Assistant
File: task_router.py

Deterministic (no-LLM) routing. Maps a raw utterance to an assistant task with an
ordered rule table, and classifies short replies during the confirmation and
work-order-consent phases with fixed lexicons.

Task rules are checked in declaration order and the first rule with any keyword
contained in the utterance wins. Service-request keywords come first, so any
hint of an active roadside problem beats weather, traffic or small talk.

Methods & Classes
- class AssistantTask(str, Enum)
- TaskRule / TaskRoute (frozen dataclasses)
- TASK_RULES: ordered rule table
- _normalize(s) -> str
- _contains_any(haystack, needles) -> str | None (substring containment)
- _mentions_any(haystack, needles) -> str | None (word-boundary containment)
- classify_task(text) -> TaskRoute
- is_affirmative / is_edit_request / is_decline / is_cancel / is_wellness_checkin
- classify_confirmation_reply(text) -> ReplyKind
- classify_consent_reply(text) -> ReplyKind

Dependencies
- Stdlib: re, enum, dataclasses, typing
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence, Tuple


class AssistantTask(str, Enum):
    GENERAL_ASSISTANCE = "GENERAL_ASSISTANCE"
    WEATHER = "WEATHER"
    TRAFFIC = "TRAFFIC"
    NEWS = "NEWS"
    PET_FRIENDLY_REST_STOPS = "PET_FRIENDLY_REST_STOPS"
    WORKOUT_LOCATIONS = "WORKOUT_LOCATIONS"
    PERSONAL_WELLNESS = "PERSONAL_WELLNESS"
    SAFE_PARKING = "SAFE_PARKING"
    VEHICLE_INSPECTION = "VEHICLE_INSPECTION"
    MENTAL_WELLNESS_STRESS_REDUCTION = "MENTAL_WELLNESS_STRESS_REDUCTION"
    SERVICE_REQUEST = "SERVICE_REQUEST"


class ReplyKind(str, Enum):
    CONFIRM = "CONFIRM"
    EDIT = "EDIT"
    CONSENT = "CONSENT"
    DECLINE = "DECLINE"
    AMBIGUOUS = "AMBIGUOUS"


# ------------------------------------------------------------------------------
# Lexicons
# ------------------------------------------------------------------------------

SERVICE_REQUEST_KEYWORDS: Tuple[str, ...] = (
    # breakdowns & towing
    "break down", "broke down", "breakdown", "broken down",
    "tow truck", "towing", "need a tow", "need tow",
    "stranded", "stuck", "can't move", "won't move",
    # tires
    "flat tire", "tire change", "blowout", "tire repair", "tire service",
    "puncture", "tire blew", "tire flat", "tire", "tires", "tire issue",
    "tire problem", "low tire", "bald tire", "spare tire", "tire pressure",
    "blown tire", "tire damage", "wheel", "rim",
    # battery & starting
    "jump start", "battery dead", "won't start", "dead battery",
    "battery died", "car won't start", "truck won't start",
    "battery", "no power", "won't crank", "won't turn over",
    # fuel
    "fuel delivery", "out of fuel", "out of gas", "out of diesel",
    "need fuel", "need gas", "need diesel", "ran out of fuel",
    # lockout
    "locked out", "keys locked", "lost keys", "keys inside",
    # mechanical
    "mechanic", "repair", "mechanical", "engine problem", "engine issue",
    "overheating", "smoking", "leaking", "won't drive",
    "brakes", "brake", "brake issue", "brake problem", "brake failure",
    "transmission", "alignment", "suspension", "steering",
    "oil leak", "coolant", "radiator", "alternator", "starter",
    "check engine", "engine light", "warning light",
    "vibration", "grinding", "squealing", "noise",
    "axle", "differential", "driveshaft", "u-joint",
    "exhaust", "turbo", "air compressor", "air leak",
    "electrical", "wiring", "fuse", "lights out", "no lights",
    # truck / trailer phrasing
    "my truck", "my trailer", "truck needs", "trailer needs",
    "tractor needs", "rig needs", "semi needs",
    "truck problem", "trailer problem", "truck issue", "trailer issue",
    # general
    "emergency", "roadside assistance", "road service", "need service",
    "need help with truck", "need help with trailer",
    "service call", "dispatch", "send someone", "send help",
    "need a tech", "need technician",
)

AFFIRMATIVE_KEYWORDS: Tuple[str, ...] = (
    "yes", "yeah", "yep", "yup", "correct", "right", "good", "looks good",
    "confirm", "that's right", "perfect", "go ahead", "send it", "submit",
    "ok", "okay", "sure",
)

EDIT_KEYWORDS: Tuple[str, ...] = (
    "no", "change", "edit", "wrong", "fix", "update", "actually", "wait", "incorrect",
)

DECLINE_KEYWORDS: Tuple[str, ...] = (
    "no", "nah", "nope", "not now", "skip", "no thanks",
)

CANCEL_KEYWORDS: Tuple[str, ...] = (
    "cancel", "never mind", "nevermind", "forget it", "forget about it", "don't need it",
)

WELLNESS_CHECKIN_KEYWORDS: Tuple[str, ...] = (
    "wellness check-in", "mood check", "check my mood", "how am i doing", "mental check",
)


@dataclass(frozen=True)
class TaskRule:
    keywords: Tuple[str, ...]
    task: AssistantTask
    requires_json: bool = False


@dataclass(frozen=True)
class TaskRoute:
    task: AssistantTask
    requires_json: bool = False
    matched: str | None = None


TASK_RULES: Sequence[TaskRule] = (
    TaskRule(SERVICE_REQUEST_KEYWORDS, AssistantTask.SERVICE_REQUEST),
    TaskRule(("weather", "forecast", "rain", "snow"), AssistantTask.WEATHER),
    TaskRule(("traffic", "road", "jam", "congestion", "backup"), AssistantTask.TRAFFIC),
    TaskRule(("news", "headlines", "updates"), AssistantTask.NEWS),
    TaskRule(("pet", "dog", "cat", "animal"), AssistantTask.PET_FRIENDLY_REST_STOPS),
    TaskRule(("workout", "gym", "exercise", "fitness", "lift"), AssistantTask.WORKOUT_LOCATIONS),
    TaskRule(("wellness", "health", "diet", "food"), AssistantTask.PERSONAL_WELLNESS),
    TaskRule(("stress", "relax", "calm", "breathe", "angry"), AssistantTask.MENTAL_WELLNESS_STRESS_REDUCTION),
    TaskRule(("parking", "spot", "sleep", "lot"), AssistantTask.SAFE_PARKING),
    TaskRule(("inspection", "pre-trip", "post-trip"), AssistantTask.VEHICLE_INSPECTION),
)


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _normalize(s: str) -> str:
    s = (s or "").replace("’", "'").replace("‘", "'")
    return " ".join(s.lower().split())


def _contains_any(haystack: str, needles: Iterable[str]) -> str | None:
    """Return the first needle contained in haystack (plain substring match)."""
    for n in needles:
        if n in haystack:
            return n
    return None


def _mentions_any(haystack: str, needles: Iterable[str]) -> str | None:
    """Like _contains_any, but needles must sit on word boundaries ('no' does not hit 'know')."""
    for n in needles:
        if re.search(rf"(?<![\w']){re.escape(n)}(?![\w'])", haystack):
            return n
    return None


# ------------------------------------------------------------------------------
# Task classification
# ------------------------------------------------------------------------------

def classify_task(text: str) -> TaskRoute:
    t = _normalize(text)
    if not t:
        return TaskRoute(task=AssistantTask.GENERAL_ASSISTANCE)
    for rule in TASK_RULES:
        hit = _contains_any(t, rule.keywords)
        if hit:
            return TaskRoute(task=rule.task, requires_json=rule.requires_json, matched=hit)
    return TaskRoute(task=AssistantTask.GENERAL_ASSISTANCE)


def is_service_request(text: str) -> bool:
    return classify_task(text).task == AssistantTask.SERVICE_REQUEST


def task_requires_json(task: AssistantTask) -> bool:
    for rule in TASK_RULES:
        if rule.task == task:
            return rule.requires_json
    return False


# ------------------------------------------------------------------------------
# Reply classification
# ------------------------------------------------------------------------------

def is_affirmative(text: str) -> bool:
    return _mentions_any(_normalize(text), AFFIRMATIVE_KEYWORDS) is not None


def is_edit_request(text: str) -> bool:
    return _mentions_any(_normalize(text), EDIT_KEYWORDS) is not None


def is_decline(text: str) -> bool:
    return _mentions_any(_normalize(text), DECLINE_KEYWORDS) is not None


def is_cancel(text: str) -> bool:
    return _mentions_any(_normalize(text), CANCEL_KEYWORDS) is not None


def is_wellness_checkin(text: str) -> bool:
    return _contains_any(_normalize(text), WELLNESS_CHECKIN_KEYWORDS) is not None


def classify_confirmation_reply(text: str) -> ReplyKind:
    """Read-back reply: cancel, then edit intent, then affirmative; anything else is ambiguous."""
    if is_cancel(text):
        return ReplyKind.DECLINE
    if is_edit_request(text):
        return ReplyKind.EDIT
    if is_affirmative(text):
        return ReplyKind.CONFIRM
    return ReplyKind.AMBIGUOUS


def classify_consent_reply(text: str) -> ReplyKind:
    """Work-order consent reply: an explicit decline wins over affirmative words."""
    if is_decline(text) or is_cancel(text):
        return ReplyKind.DECLINE
    if is_affirmative(text):
        return ReplyKind.CONSENT
    return ReplyKind.AMBIGUOUS
