# tests/unit/test_task_router.py
"""
Unit tests for the deterministic task router and reply lexicons.

What's covered
--------------
1) Service-request keywords win over every other task (first rule wins).
2) Other task rules and the GENERAL_ASSISTANCE fallback.
3) Confirmation replies: cancel -> DECLINE, edit words -> EDIT, affirmative -> CONFIRM.
4) Consent replies: decline beats affirmative; unknown text is AMBIGUOUS.
5) Reply words match on word boundaries only ("know" is not "no").
"""

import pytest

from dispatch_assistant.task_router import (
    AssistantTask,
    ReplyKind,
    classify_confirmation_reply,
    classify_consent_reply,
    classify_task,
    is_service_request,
    is_wellness_checkin,
    task_requires_json,
)


@pytest.mark.parametrize("text", [
    "I have a flat tire on I-80",
    "My truck won't start",
    "blowout on the trailer, need help",
    "Engine is OVERHEATING near exit 12",
])
def test_service_request_keywords(text):
    route = classify_task(text)
    assert route.task == AssistantTask.SERVICE_REQUEST
    assert route.matched
    assert is_service_request(text)


def test_service_request_beats_weather():
    # "rain" alone would be WEATHER; the tire wins because its rule comes first
    assert classify_task("it's raining and I have a flat tire").task == AssistantTask.SERVICE_REQUEST


def test_inspection_phrases():
    assert classify_task("time for my pre-trip inspection").task == AssistantTask.VEHICLE_INSPECTION
    assert classify_task("walk me through a post-trip").task == AssistantTask.VEHICLE_INSPECTION
    # any mention of a tire is a service request, even in an idiom
    assert classify_task("gonna kick the tires before I roll").task == AssistantTask.SERVICE_REQUEST


@pytest.mark.parametrize("text,task", [
    ("what's the weather in Denver", AssistantTask.WEATHER),
    ("any traffic on the way to Reno", AssistantTask.TRAFFIC),
    ("find me a gym nearby", AssistantTask.WORKOUT_LOCATIONS),
    ("I need to relax", AssistantTask.MENTAL_WELLNESS_STRESS_REDUCTION),
    ("tell me a joke", AssistantTask.GENERAL_ASSISTANCE),
    ("", AssistantTask.GENERAL_ASSISTANCE),
])
def test_other_tasks(text, task):
    assert classify_task(text).task == task


def test_no_task_requires_json_by_default():
    assert task_requires_json(AssistantTask.SERVICE_REQUEST) is False
    assert task_requires_json(AssistantTask.GENERAL_ASSISTANCE) is False


@pytest.mark.parametrize("text,kind", [
    ("yes that's right", ReplyKind.CONFIRM),
    ("Looks good", ReplyKind.CONFIRM),
    ("no, the phone is wrong", ReplyKind.EDIT),
    ("actually it's two tires", ReplyKind.EDIT),
    ("never mind, cancel it", ReplyKind.DECLINE),
    ("hmm", ReplyKind.AMBIGUOUS),
])
def test_confirmation_reply(text, kind):
    assert classify_confirmation_reply(text) == kind


@pytest.mark.parametrize("text,kind", [
    ("yes please", ReplyKind.CONSENT),
    ("sure, go ahead", ReplyKind.CONSENT),
    ("no thanks", ReplyKind.DECLINE),
    ("nah not now", ReplyKind.DECLINE),
    ("yes... actually no", ReplyKind.DECLINE),
    ("what's a work order?", ReplyKind.AMBIGUOUS),
])
def test_consent_reply(text, kind):
    assert classify_consent_reply(text) == kind


def test_word_boundaries():
    assert classify_consent_reply("I know") == ReplyKind.AMBIGUOUS
    assert classify_confirmation_reply("nothing else, you're right") == ReplyKind.CONFIRM


def test_wellness_checkin_phrase():
    assert is_wellness_checkin("can we do a wellness check-in")
    assert not is_wellness_checkin("check the weather")
