# tests/unit/test_extractor.py
"""
Unit tests for ServiceRequestExtractor and partial normalization.

What's covered
--------------
1) The extraction call asks for a JSON object at extraction temperature.
2) Fence-wrapped JSON parses; non-JSON output yields {} (non-fatal) and logs.
3) normalize_partial: invalid enums dropped, aliases coerced, noise removed,
   counts coerced from words, scheduled_appointment kept only for SCHEDULED.
4) extract_driver_name falls back to "Driver" on failure.
"""

from types import SimpleNamespace

import pytest

from dispatch_assistant import config, extractor
from dispatch_assistant.extractor import (
    ServiceRequestExtractor,
    extract_driver_name,
    normalize_partial,
    parse_json_object,
)
from dispatch_assistant.request_state import ServiceRequest, ServiceUrgency


@pytest.fixture()
def record() -> ServiceRequest:
    return ServiceRequest(created_by_id="u", driver_name="Marcus")


def test_extract_calls_model_with_json_format(scripted, record):
    model = scripted(extractions=[{"service_type": "TIRE", "vehicle": {"vehicle_type": "semi"}}])
    captured = {}

    def invoke(messages, **kwargs):
        captured.update(kwargs)
        return model(messages, **kwargs)

    out = ServiceRequestExtractor(invoke=invoke).extract("user: flat tire", record)
    assert out == {"service_type": "TIRE", "vehicle": {"vehicle_type": "TRUCK"}}
    assert captured["response_format"] == {"type": "json_object"}
    assert captured["temperature"] == config.EXTRACTION_TEMPERATURE
    assert captured["max_tokens"] == config.EXTRACTION_MAX_TOKENS


def test_prompt_contains_transcript_and_current_values(record):
    prompt = ServiceRequestExtractor(invoke=lambda *a, **k: {}).build_prompt("user: flat tire", record)
    assert "user: flat tire" in prompt
    assert '"driver_name": "Marcus"' in prompt
    assert "conversation_transcript" not in prompt.split("CURRENT DATA")[1]


def test_fenced_json_is_parsed(scripted, record):
    model = scripted(extractions=['```json\n{"contact_phone": "555-0199"}\n```'])
    assert ServiceRequestExtractor(invoke=model).extract("t", record) == {"contact_phone": "555-0199"}


def test_unparseable_output_is_empty(scripted, record):
    model = scripted(extractions=["Sorry, I can't help with that."])
    assert ServiceRequestExtractor(invoke=model).extract("t", record) == {}


def test_model_exception_propagates(scripted, record):
    model = scripted(extractions=[TimeoutError("upstream timeout")])
    with pytest.raises(TimeoutError):
        ServiceRequestExtractor(invoke=model).extract("t", record)


def test_parse_json_object_rejects_arrays():
    assert parse_json_object("[1, 2]") is None
    assert parse_json_object('{"a": 1}') == {"a": 1}


def test_normalize_drops_invalid_and_noise(record):
    raw = {
        "driver_name": "unknown",
        "fleet_name": "  Blue Line  ",
        "service_type": "BODYWORK",
        "urgency": "emergency",
        "location": {"current_location": "N/A", "is_safe_location": "no"},
        "tire_info": {"requested_service": "replacement", "number_of_tires": "two", "tire_position": ""},
        "status": "submitted",
    }
    out = normalize_partial(raw, record)
    assert out == {
        "fleet_name": "Blue Line",
        "urgency": "ERS",
        "location": {"is_safe_location": False},
        "tire_info": {"requested_service": "REPLACE", "number_of_tires": 2},
    }


@pytest.mark.parametrize("value,expected", [(3, 3), ("4 tires", 4), ("both", 2), ("none", None), (0, None), (True, None)])
def test_tire_count_coercion(record, value, expected):
    out = normalize_partial({"tire_info": {"number_of_tires": value}}, record)
    assert out.get("tire_info", {}).get("number_of_tires") == expected


def test_schedule_only_for_scheduled_urgency(record):
    appt = {"scheduled_appointment": {"scheduled_date": "Tuesday", "scheduled_time": "9am"}}
    assert "scheduled_appointment" not in normalize_partial(appt, record)

    with_urgency = dict(appt, urgency="SCHEDULED")
    assert normalize_partial(with_urgency, record)["scheduled_appointment"]["scheduled_time"] == "9am"

    scheduled = record.model_copy(update={"urgency": ServiceUrgency.SCHEDULED})
    assert "scheduled_appointment" in normalize_partial(appt, scheduled)


def test_extract_driver_name_uses_structured_model():
    calls = []

    def fake_model(prompt, schema):
        calls.append(schema)
        return {"parsed": SimpleNamespace(name=" 'Mike' ")}

    assert extract_driver_name("call me Mike", model=fake_model) == "Mike"
    assert calls[0] is extractor.NameSchema


def test_extract_driver_name_falls_back():
    def broken(prompt, schema):
        raise RuntimeError("no key")

    assert extract_driver_name("whatever", model=broken) == "Driver"
