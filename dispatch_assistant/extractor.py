"""
Project: Roadside Dispatch Assistant
File: extractor.py

Field extractor: one JSON-mode model call over the whole transcript and the
current record, returning a *partial* service request holding only newly
mentioned fields. The raw model output is normalized before it reaches the
merger: unknown roots, noise values and invalid enum values are dropped and
numbers/booleans are coerced.

Unparseable output is not an error: it is a zero-information turn and yields {}.
Model-call exceptions propagate; the coordinator owns the user-facing apology.

Methods & Classes
- EXTRACTION_PROMPT: strict extraction instructions + output schema
- strip_code_fences(text) -> str
- parse_json_object(text) -> dict | None
- normalize_partial(raw, current) -> dict
- class ServiceRequestExtractor:
  - build_prompt(transcript, current) -> str
  - extract(transcript, current) -> dict
- extract_driver_name(reply, *, model=None) -> str

Dependencies
- Internal: models (chatllm_invoke, ModelFactory, NameSchema), request_state,
  error_handler, app_logger, config
- Stdlib: json, re, typing
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, Optional

from dispatch_assistant import app_logger, config
from dispatch_assistant.error_handler import ErrorCode, ErrorOrigin, make_error
from dispatch_assistant.models import ModelFactory, NameSchema, chatllm_invoke
from dispatch_assistant.request_state import (
    ServiceRequest,
    ServiceType,
    ServiceUrgency,
    TireServiceKind,
    VehicleType,
    is_noise,
)

InvokeFn = Callable[..., Dict[str, Any]]

# ------------------------------------------------------------------------------
# Prompt
# ------------------------------------------------------------------------------

EXTRACTION_PROMPT = """You are extracting data from a roadside assistance conversation.

CONVERSATION:
{transcript}

CURRENT DATA (may have empty fields):
{current}

EXTRACTION RULES:
1. Extract only information that is explicitly stated or strongly implied. Never invent values.
2. Infer service_type ONLY from specific problem descriptions:
   - flat tire, blowout, tire blew, tire change, tire repair, puncture -> TIRE
   - engine problem, transmission, overheating, coolant, oil leak, brakes, battery, won't start, electrical -> MECHANICAL
   - Do NOT infer service_type from vague terms like "broke down" alone.
3. Infer urgency carefully:
   - ERS: unsafe location (highway shoulder, blocking a lane, traffic) or the driver says emergency, urgent, ASAP, right now, stranded.
   - DELAYED: the driver says tomorrow, tomorrow morning, next day.
   - SCHEDULED: the driver mentions schedule, appointment, next week or a specific future date.
   - If urgency is unclear, leave it out. Do not guess.
4. Location: any highway number, mile marker, exit, city, street, truck stop or rest area.
5. Phone: any phone or contact number. Fleet: any fleet, carrier or company name.
6. vehicle_type: truck, semi, tractor -> TRUCK; trailer -> TRAILER.
7. Include tire_info ONLY if tire details were mentioned; requested_service is REPLACE or REPAIR.
8. Include mechanical_info ONLY if mechanical details were mentioned.
9. Include scheduled_appointment ONLY when urgency is SCHEDULED.
10. Omit every field you did not find. Never output empty strings, "unknown" or placeholders.

Return a single JSON object using only these keys:
{{
  "driver_name": "string",
  "contact_phone": "string",
  "fleet_name": "string",
  "service_type": "TIRE" | "MECHANICAL",
  "urgency": "ERS" | "DELAYED" | "SCHEDULED",
  "location": {{
    "current_location": "string",
    "highway_or_road": "string",
    "nearest_mile_marker": "string",
    "is_safe_location": true | false
  }},
  "vehicle": {{
    "vehicle_type": "TRUCK" | "TRAILER",
    "make": "string",
    "model": "string",
    "year": "string",
    "license_plate": "string",
    "unit_number": "string"
  }},
  "tire_info": {{
    "requested_service": "REPLACE" | "REPAIR",
    "requested_tire": "string - size or brand",
    "number_of_tires": integer,
    "tire_position": "string"
  }},
  "mechanical_info": {{
    "requested_service": "string",
    "description": "string"
  }},
  "scheduled_appointment": {{
    "scheduled_date": "string",
    "scheduled_time": "string",
    "scheduled_location": "string"
  }}
}}"""

# Record fields the model may never set
_PROMPT_EXCLUDE = {
    "conversation_transcript", "status", "assigned_provider_id", "assigned_provider_name",
    "submitted_at", "accepted_at", "completed_at", "created_by_id", "id", "timestamp",
}

_STRING_ROOTS = ("driver_name", "contact_phone", "fleet_name")

_BLOCK_STRING_FIELDS = {
    "location": ("current_location", "highway_or_road", "nearest_mile_marker"),
    "vehicle": ("make", "model", "year", "license_plate", "unit_number"),
    "tire_info": ("requested_tire", "tire_position"),
    "mechanical_info": ("requested_service", "description"),
    "scheduled_appointment": ("scheduled_date", "scheduled_time", "scheduled_location"),
}

_ENUM_ALIASES = {
    "TIRE_SERVICE": "TIRE",
    "TIRES": "TIRE",
    "MECHANICAL_REPAIR": "MECHANICAL",
    "MECHANIC": "MECHANICAL",
    "EMERGENCY": "ERS",
    "SEMI": "TRUCK",
    "TRACTOR": "TRUCK",
    "REPLACEMENT": "REPLACE",
    "REPLACED": "REPLACE",
    "REPAIRED": "REPAIR",
}

_NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "single": 1, "pair": 2, "both": 2,
}

_FENCE_RE = re.compile(r"^```(\w*)?\s*\n?(.*?)\n?\s*```$", re.S)


# ------------------------------------------------------------------------------
# Parsing & normalization helpers
# ------------------------------------------------------------------------------

def strip_code_fences(text: str) -> str:
    s = (text or "").strip()
    m = _FENCE_RE.match(s)
    if m and m.group(2):
        return m.group(2).strip()
    return s


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse a JSON object out of model text; None when it isn't one."""
    try:
        data = json.loads(strip_code_fences(text))
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def _coerce_enum(value: Any, enum_cls) -> Optional[str]:
    if not isinstance(value, str):
        return None
    key = value.strip().upper().replace(" ", "_").replace("-", "_")
    key = _ENUM_ALIASES.get(key, key)
    try:
        return enum_cls(key).value
    except ValueError:
        return None


def _coerce_count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        n = value
    elif isinstance(value, float) and value.is_integer():
        n = int(value)
    elif isinstance(value, str):
        s = value.strip().lower()
        m = re.search(r"\d+", s)
        if m:
            n = int(m.group(0))
        else:
            words = re.findall(r"[a-z]+", s)
            n = next((_NUMBER_WORDS[w] for w in words if w in _NUMBER_WORDS), 0)
    else:
        return None
    return n if n >= 1 else None


def _coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        s = value.strip().lower()
        if s in {"true", "yes", "y", "safe"}:
            return True
        if s in {"false", "no", "n", "unsafe"}:
            return False
    return None


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or is_noise(value):
        return None
    return value.strip()


def _set_if(out: Dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        out[key] = value


def normalize_partial(raw: Dict[str, Any] | None, current: ServiceRequest) -> Dict[str, Any]:
    """
    Reduce raw model output to a partial the merger can apply safely:
    only extractable keys, no noise, enums coerced (invalid ones dropped),
    empty blocks removed, scheduled_appointment only for SCHEDULED urgency.
    """
    if not isinstance(raw, dict):
        return {}
    out: Dict[str, Any] = {}

    for k in _STRING_ROOTS:
        _set_if(out, k, _clean_str(raw.get(k)))
    _set_if(out, "service_type", _coerce_enum(raw.get("service_type"), ServiceType))
    _set_if(out, "urgency", _coerce_enum(raw.get("urgency"), ServiceUrgency))

    for block, string_fields in _BLOCK_STRING_FIELDS.items():
        src = raw.get(block)
        if not isinstance(src, dict):
            continue
        dst: Dict[str, Any] = {}
        for f in string_fields:
            _set_if(dst, f, _clean_str(src.get(f)))
        if block == "location":
            _set_if(dst, "is_safe_location", _coerce_bool(src.get("is_safe_location")))
        elif block == "vehicle":
            _set_if(dst, "vehicle_type", _coerce_enum(src.get("vehicle_type"), VehicleType))
        elif block == "tire_info":
            _set_if(dst, "requested_service", _coerce_enum(src.get("requested_service"), TireServiceKind))
            _set_if(dst, "number_of_tires", _coerce_count(src.get("number_of_tires")))
        if dst:
            out[block] = dst

    urgency = out.get("urgency") or (current.urgency.value if current.urgency else None)
    if urgency != ServiceUrgency.SCHEDULED.value:
        out.pop("scheduled_appointment", None)

    return out


# ------------------------------------------------------------------------------
# Extractor
# ------------------------------------------------------------------------------

class ServiceRequestExtractor:
    def __init__(self, *, invoke: Optional[InvokeFn] = None, temperature: Optional[float] = None) -> None:
        self._invoke = invoke or chatllm_invoke
        self.temperature = config.EXTRACTION_TEMPERATURE if temperature is None else temperature

    def build_prompt(self, transcript: str, current: ServiceRequest) -> str:
        snapshot = current.model_dump(mode="json", exclude=_PROMPT_EXCLUDE)
        return EXTRACTION_PROMPT.format(
            transcript=transcript or "(empty)",
            current=json.dumps(snapshot, indent=2, ensure_ascii=False),
        )

    def extract(self, transcript: str, current: ServiceRequest, *, correlation_id: Optional[str] = None) -> Dict[str, Any]:
        prompt = self.build_prompt(transcript, current)
        out = self._invoke(
            [{"role": "user", "content": prompt}],
            temperature=self.temperature,
            max_tokens=config.EXTRACTION_MAX_TOKENS,
            response_format={"type": "json_object"},
        )

        raw = out.get("parsed")
        if not isinstance(raw, dict):
            raw = parse_json_object(out.get("text") or "")
        if raw is None:
            err = make_error(
                code=ErrorCode.EXTRACTOR_FAILURE,
                origin=ErrorOrigin.EXTRACTOR,
                retryable=True,
                dev_message="extraction output was not a JSON object",
                details={"model": out.get("model"), "text": (out.get("text") or "")[:400]},
                context={"request_id": current.id},
                correlation_id=correlation_id,
            )
            app_logger.log_event("Extractor.PARSE_FAILED", err, correlation_id=correlation_id,
                                 request_id=current.id, level=logging.WARNING)
            return {}

        return normalize_partial(raw, current)


def extract_driver_name(reply: str, *, model=None) -> str:
    """
    Ask the structured model which name the driver wants to be called.
    Unclear answers, refusals and model failures all yield "Driver".
    """
    prompt = (
        f'The user was asked "What is your name?". They replied: "{reply}". '
        "Extract the name they want to be called. If it's unclear or they refuse, use \"Driver\"."
    )
    try:
        mdl = model or ModelFactory.get()
        out = mdl(prompt, NameSchema)
        name = (out["parsed"].name or "").strip().strip("'\"")
    except Exception as exc:
        app_logger.log_event("Extractor.NAME_FAILED", {"error": str(exc)}, level=logging.WARNING)
        return "Driver"
    return name or "Driver"
