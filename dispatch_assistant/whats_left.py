"""
Project: Roadside Dispatch Assistant
File: whats_left.py

Completeness validator: which fields still stand between a draft and a
dispatch-ready work order. Pure function of the record's current values.

Rule layers (evaluated independently, results unioned in order):
1. base contact / classification / location / vehicle fields
2. TIRE requests: tire_info and its four sub-fields
3. MECHANICAL requests: mechanical_info and its two sub-fields
4. SCHEDULED urgency: scheduled_appointment date and time

Methods & Classes
- ValidationResult(is_complete, missing_fields)
- validate_service_request(record) -> ValidationResult
- describe_missing(fields) -> str

Dependencies
- Internal: dispatch_assistant.request_state
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Sequence, Tuple

from dispatch_assistant.request_state import ServiceRequest, ServiceType, ServiceUrgency


@dataclass(frozen=True)
class ValidationResult:
    is_complete: bool
    missing_fields: Tuple[str, ...]

    def as_dict(self) -> dict:
        return {"is_complete": self.is_complete, "missing_fields": list(self.missing_fields)}


def _blank(v: Any) -> bool:
    if v is None:
        return True
    if isinstance(v, str):
        return not v.strip()
    return False


def _base_rule(r: ServiceRequest) -> List[str]:
    checks = [
        ("driver_name", r.driver_name),
        ("contact_phone", r.contact_phone),
        ("fleet_name", r.fleet_name),
        ("service_type", r.service_type),
        ("urgency", r.urgency),
        ("location.current_location", r.location.current_location),
        ("vehicle.vehicle_type", r.vehicle.vehicle_type),
    ]
    return [name for name, value in checks if _blank(value)]


def _tire_rule(r: ServiceRequest) -> List[str]:
    if r.service_type != ServiceType.TIRE:
        return []
    t = r.tire_info
    if t is None:
        return ["tire_info"]
    missing = []
    if _blank(t.requested_service):
        missing.append("tire_info.requested_service")
    if _blank(t.requested_tire):
        missing.append("tire_info.requested_tire")
    if t.number_of_tires is None or t.number_of_tires < 1:
        missing.append("tire_info.number_of_tires")
    if _blank(t.tire_position):
        missing.append("tire_info.tire_position")
    return missing


def _mechanical_rule(r: ServiceRequest) -> List[str]:
    if r.service_type != ServiceType.MECHANICAL:
        return []
    m = r.mechanical_info
    if m is None:
        return ["mechanical_info"]
    missing = []
    if _blank(m.requested_service):
        missing.append("mechanical_info.requested_service")
    if _blank(m.description):
        missing.append("mechanical_info.description")
    return missing


def _scheduled_rule(r: ServiceRequest) -> List[str]:
    if r.urgency != ServiceUrgency.SCHEDULED:
        return []
    s = r.scheduled_appointment
    if s is None:
        return ["scheduled_appointment"]
    missing = []
    if _blank(s.scheduled_date):
        missing.append("scheduled_appointment.scheduled_date")
    if _blank(s.scheduled_time):
        missing.append("scheduled_appointment.scheduled_time")
    return missing


RULES: Sequence[Callable[[ServiceRequest], List[str]]] = (
    _base_rule,
    _tire_rule,
    _mechanical_rule,
    _scheduled_rule,
)


def validate_service_request(record: ServiceRequest) -> ValidationResult:
    missing: List[str] = []
    for rule in RULES:
        for name in rule(record):
            if name not in missing:
                missing.append(name)
    return ValidationResult(is_complete=not missing, missing_fields=tuple(missing))


_SPOKEN = {
    "driver_name": "your name",
    "contact_phone": "a phone number",
    "fleet_name": "the fleet or company name",
    "service_type": "whether it's a tire or mechanical issue",
    "urgency": "how soon you need service",
    "location.current_location": "your location",
    "vehicle.vehicle_type": "whether it's a truck or trailer",
    "tire_info": "the tire details",
    "tire_info.requested_service": "repair or replace",
    "tire_info.requested_tire": "the tire size or brand",
    "tire_info.number_of_tires": "how many tires",
    "tire_info.tire_position": "the tire position",
    "mechanical_info": "the mechanical details",
    "mechanical_info.requested_service": "the service you need",
    "mechanical_info.description": "a description of the problem",
    "scheduled_appointment": "when you'd like the appointment",
    "scheduled_appointment.scheduled_date": "the appointment date",
    "scheduled_appointment.scheduled_time": "the appointment time",
}


def describe_missing(fields: Sequence[str]) -> str:
    """'your name, a phone number and the tire position'"""
    words = [_SPOKEN.get(f, f.replace("_", " ")) for f in fields]
    if not words:
        return ""
    if len(words) == 1:
        return words[0]
    return ", ".join(words[:-1]) + " and " + words[-1]
