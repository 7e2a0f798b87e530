#!/usr/bin/env python3
"""
Project: Roadside Dispatch Assistant
File: request_state.py

Canonical service-request record, the counter-proposal / profile / notification
models around it, and the record merger used after every extraction:
- nested blocks (location, vehicle, tire_info, mechanical_info, scheduled_appointment)
  merge key by key,
- an absent key means "no change",
- empty / None / noise values never overwrite a known value.

Methods & Classes
- Enums: ServiceType, ServiceUrgency, VehicleType, TireServiceKind, RequestStatus,
  ProposalStatus, NotificationKind
- Blocks: LocationInfo, VehicleInfo, TireInfo, MechanicalInfo, ScheduledAppointment
- ServiceRequest: the mutable record (append_exchange, model_merge_updates)
- CounterProposal, MoodEntry, FleetProfile, Notification
- create_service_request(owner_id, *, profile=None) -> ServiceRequest
- deep_merge(current, partial) -> dict
- merge_service_request(record, partial) -> MergeResult

Dependencies
- External: pydantic
- Stdlib: uuid, datetime, dataclasses, enum, typing
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# ------------------------------------------------------------------------------
# Constants & simple helpers
# ------------------------------------------------------------------------------

NOISE_STRINGS = {"not provided", "n/a", "na", "none", "none provided", "unknown", "null"}
NESTED_BLOCKS = ("location", "vehicle", "tire_info", "mechanical_info", "scheduled_appointment")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_id() -> str:
    return uuid.uuid4().hex


def is_noise(v: Any) -> bool:
    """Extractor defaults and empty values count as 'not provided'."""
    if v is None:
        return True
    if isinstance(v, str):
        s = v.strip()
        return not s or s.lower() in NOISE_STRINGS
    if isinstance(v, (list, dict)):
        return len(v) == 0
    return False


def _walk_and_collect(prefix: str, obj: Any, out: Dict[str, Any]) -> None:
    if hasattr(obj, "model_dump"):
        obj = obj.model_dump(mode="json")
    if isinstance(obj, dict):
        for k, v in obj.items():
            key = f"{prefix}.{k}" if prefix else k
            _walk_and_collect(key, v, out)
    else:
        out[prefix] = obj


# ------------------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------------------

class ServiceType(str, Enum):
    TIRE = "TIRE"
    MECHANICAL = "MECHANICAL"


class ServiceUrgency(str, Enum):
    ERS = "ERS"              # emergency road service, same day
    DELAYED = "DELAYED"      # next day
    SCHEDULED = "SCHEDULED"  # two or more days out


class VehicleType(str, Enum):
    TRUCK = "TRUCK"
    TRAILER = "TRAILER"


class TireServiceKind(str, Enum):
    REPLACE = "REPLACE"
    REPAIR = "REPAIR"


class RequestStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTER_PROPOSED = "counter_proposed"
    COUNTER_APPROVED = "counter_approved"
    COUNTER_REJECTED = "counter_rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class NotificationKind(str, Enum):
    COUNTER_PROPOSED = "counter_proposed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ------------------------------------------------------------------------------
# Record blocks
# ------------------------------------------------------------------------------

class LocationInfo(BaseModel):
    current_location: Optional[str] = None
    highway_or_road: Optional[str] = None
    nearest_mile_marker: Optional[str] = None
    is_safe_location: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


class VehicleInfo(BaseModel):
    vehicle_type: Optional[VehicleType] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[str] = None
    license_plate: Optional[str] = None
    unit_number: Optional[str] = None

    model_config = ConfigDict(extra="forbid", protected_namespaces=())


class TireInfo(BaseModel):
    requested_service: Optional[TireServiceKind] = None
    requested_tire: Optional[str] = None
    number_of_tires: Optional[int] = Field(default=None, ge=1)
    tire_position: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class MechanicalInfo(BaseModel):
    requested_service: Optional[str] = None
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ScheduledAppointment(BaseModel):
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    scheduled_location: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ServiceRequest(BaseModel):
    # identity
    id: str = Field(default_factory=new_id)
    created_by_id: str = ""
    timestamp: str = Field(default_factory=now_iso)

    # contact
    driver_name: str = ""
    contact_phone: str = ""
    fleet_name: str = ""

    # classification
    service_type: Optional[ServiceType] = None
    urgency: Optional[ServiceUrgency] = None

    location: LocationInfo = Field(default_factory=LocationInfo)
    vehicle: VehicleInfo = Field(default_factory=VehicleInfo)
    tire_info: Optional[TireInfo] = None
    mechanical_info: Optional[MechanicalInfo] = None
    scheduled_appointment: Optional[ScheduledAppointment] = None

    conversation_transcript: str = ""
    status: RequestStatus = RequestStatus.DRAFT

    # provider side
    assigned_provider_id: Optional[str] = None
    assigned_provider_name: Optional[str] = None
    submitted_at: Optional[str] = None
    accepted_at: Optional[str] = None
    completed_at: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    def append_exchange(self, user_text: str, ai_text: str) -> None:
        """Append one user/assistant exchange to the transcript (never rewrites earlier text)."""
        exchange = f"user: {user_text}\nai: {ai_text}"
        if self.conversation_transcript:
            self.conversation_transcript = f"{self.conversation_transcript}\n\n{exchange}"
        else:
            self.conversation_transcript = exchange

    def model_merge_updates(self, partial: Dict[str, Any] | None) -> "MergeResult":
        return merge_service_request(self, partial)


class CounterProposal(BaseModel):
    id: str = Field(default_factory=new_id)
    service_request_id: str
    provider_id: str
    provider_name: str
    proposed_date: str
    proposed_time: str
    message: str = ""
    status: ProposalStatus = ProposalStatus.PENDING
    created_at: str = Field(default_factory=now_iso)
    responded_at: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class MoodEntry(BaseModel):
    timestamp: str = Field(default_factory=now_iso)
    mood_rating: Optional[int] = Field(default=None, ge=1, le=5)
    stress_level: Optional[int] = Field(default=None, ge=1, le=5)
    notes: Optional[str] = None


class FleetProfile(BaseModel):
    user_id: str
    user_name: Optional[str] = None
    language: str = "en-US"
    contact_phone: Optional[str] = None
    fleet_name: Optional[str] = None
    service_requests: List[str] = Field(default_factory=list)
    mood_history: List[MoodEntry] = Field(default_factory=list)


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    owner_id: str
    kind: NotificationKind
    service_request_id: str
    message: str
    created_at: str = Field(default_factory=now_iso)
    read: bool = False


# ------------------------------------------------------------------------------
# Creation & merge
# ------------------------------------------------------------------------------

def create_service_request(owner_id: str, *, profile: Optional[FleetProfile] = None) -> ServiceRequest:
    """Fresh draft owned by `owner_id`, seeded from whatever the profile already knows."""
    rec = ServiceRequest(created_by_id=owner_id)
    if profile is not None:
        if profile.user_name and profile.user_name.strip().lower() != "driver":
            rec.driver_name = profile.user_name.strip()
        if profile.contact_phone:
            rec.contact_phone = profile.contact_phone
        if profile.fleet_name:
            rec.fleet_name = profile.fleet_name
    return rec


def deep_merge(current: Dict[str, Any], partial: Dict[str, Any] | None) -> Dict[str, Any]:
    """
    Recursive merge returning a new dict.

    - key absent from `partial`  -> current value kept
    - dict into dict (or None)   -> merged key by key
    - None / empty / noise value -> ignored
    - scalar onto an existing dict -> ignored (a block is never replaced by a scalar)
    - any other value            -> overwrites
    """
    out = dict(current or {})
    for k, v in (partial or {}).items():
        if isinstance(v, dict):
            base = out.get(k)
            if base is None:
                merged = deep_merge({}, v)
                if merged:
                    out[k] = merged
                continue
            if isinstance(base, dict):
                out[k] = deep_merge(base, v)
            continue
        if is_noise(v):
            continue
        if isinstance(out.get(k), dict):
            continue
        out[k] = v
    return out


@dataclass
class MergeResult:
    record: ServiceRequest
    applied_paths: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.applied_paths)


def merge_service_request(record: ServiceRequest, partial: Dict[str, Any] | None) -> MergeResult:
    """
    Merge an extracted partial into `record` and return a new, validated record
    plus the dotted paths whose values changed. `record` itself is not mutated.
    """
    before = record.model_dump(mode="json")
    merged = deep_merge(before, partial or {})
    new_record = ServiceRequest.model_validate(merged)

    flat_before: Dict[str, Any] = {}
    flat_after: Dict[str, Any] = {}
    _walk_and_collect("", before, flat_before)
    _walk_and_collect("", new_record, flat_after)
    applied = sorted(p for p, v in flat_after.items() if flat_before.get(p) != v)
    return MergeResult(record=new_record, applied_paths=applied)
