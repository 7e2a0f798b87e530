"""
dispatch_assistant.coordinator_agent
dispatch_assistant/coordinator_agent.py
=======================================

Coordinator for one fleet user's conversation with the dispatch assistant.

The Coordinator takes raw user text, decides what the text means in the current
conversation phase, runs the collection pipeline when needed, and returns a
stable **TurnPacket** for the host (FleetChatAgent / CLI) to render and persist.

High-level responsibilities
---------------------------
1) **Route idle utterances**: `task_router.classify_task` decides between a
   service request (starts a DispatchSession), a wellness check-in, or general
   chat with a task persona.

2) **Collection turns**: ChatSession reply → transcript append →
   ServiceRequestExtractor over the full transcript → record merge →
   completeness validation. Incomplete: the model's own follow-up question is
   the reply. Complete: a deterministic read-back summary is the reply.

3) **Phase machine**: one explicit `ConversationPhase` per session, advanced
   only through `next_phase(phase, event)`, a pure table lookup that returns the
   next phase and the effects to perform. Pairs missing from the table raise
   IllegalTransitionError.

       IDLE --START--> COLLECTING
       COLLECTING --USER_TURN--> COLLECTING (run collection turn)
       COLLECTING --TURN_INCOMPLETE--> COLLECTING (speak model text)
       COLLECTING --TURN_COMPLETE--> AWAITING_CONFIRMATION (read back summary)
       AWAITING_CONFIRMATION --CONFIRMED--> AWAITING_WORK_ORDER_CONSENT
       AWAITING_CONFIRMATION --EDIT_REQUESTED--> COLLECTING (same utterance re-processed)
       AWAITING_CONFIRMATION --DECLINED--> DECLINED
       AWAITING_WORK_ORDER_CONSENT --CONSENTED--> (finalize) --FINALIZE_SUCCEEDED--> FINALIZED
       AWAITING_WORK_ORDER_CONSENT --FINALIZE_FAILED--> AWAITING_WORK_ORDER_CONSENT
       AWAITING_WORK_ORDER_CONSENT --DECLINED--> DECLINED
       AWAITING_WORK_ORDER_CONSENT --CONSENT_AMBIGUOUS--> COLLECTING (same utterance re-processed)
       any active phase --MODEL_ERROR--> same phase (apology)

4) **Failure handling**: model-call failures become a fixed apology and the
   phase in effect before the turn is restored. Persistence failures during
   finalization keep the draft and the consent phase. Concurrent turns are
   rejected with TURN_IN_PROGRESS without touching state.

TurnPacket contract (stable output shape)
-----------------------------------------
    {
      "utterance": <str>,
      "task": <AssistantTask value>,
      "phase_before": <ConversationPhase value>,
      "phase": <ConversationPhase value>,     # phase after the turn
      "ok": <bool>,
      "reply": <str>,                         # text to speak / render
      "result": {
        "request_id": <str|None>,
        "applied_paths": [<str>, ...],        # dotted paths changed this turn
        "missing_fields": [<str>, ...],
        "is_complete": <bool|None>,
        "regressed": <bool>,                  # was complete, no longer is
        "work_order": <dict|None>             # WorkOrderResult.as_dict() on finalize
      },
      "error": <error envelope|None>,
      "correlation_id": <str>
    }

Dependencies
- Internal: task_router, chat_session, extractor, request_state, whats_left,
  work_order, error_handler, app_logger, record_locks, config
- Stdlib: threading, dataclasses, enum, re, typing
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from dispatch_assistant import app_logger, config
from dispatch_assistant.chat_session import ChatSession, create_chat_session
from dispatch_assistant.error_handler import (
    APOLOGY_MESSAGE,
    ErrorCode,
    ErrorOrigin,
    PersistenceError,
    illegal_transition,
    make_error,
    new_correlation_id,
)
from dispatch_assistant.extractor import ServiceRequestExtractor
from dispatch_assistant.record_locks import RECORD_LOCKS, RecordLocks
from dispatch_assistant.request_state import (
    FleetProfile,
    MoodEntry,
    ServiceRequest,
    ServiceType,
    ServiceUrgency,
    create_service_request,
    merge_service_request,
    new_id,
)
from dispatch_assistant.task_router import (
    AssistantTask,
    ReplyKind,
    classify_confirmation_reply,
    classify_consent_reply,
    classify_task,
    is_wellness_checkin,
)
from dispatch_assistant.whats_left import describe_missing, validate_service_request

# ------------------------------------------------------------------------------
# Fixed replies
# ------------------------------------------------------------------------------

WORK_ORDER_PROMPT = "Everything checks out. Would you like me to generate a work order for this?"
WORK_ORDER_READY = "Got it, your work order is ready to download."
DECLINE_ACK = (
    "No problem. Your service request has been noted. "
    "If you need a work order later, just let me know."
)

WELLNESS_QUESTIONS: Tuple[Tuple[str, str], ...] = (
    ("mood_rating", "Alright, let's check in. On a scale of 1 to 5 (1 being rough, 5 being great), how you feelin' right now?"),
    ("stress_level", "Copy that. And stress-wise? 1 is chill, 5 is stressed out. What's your number?"),
    ("notes", "Got it. Anything specifically on your mind today? (Optional)"),
)
WELLNESS_DONE = "Thanks for checking in. I've logged that for you. Drive safe out there."

_URGENCY_SPOKEN = {
    ServiceUrgency.ERS: "emergency same-day",
    ServiceUrgency.DELAYED: "next-day",
    ServiceUrgency.SCHEDULED: "scheduled",
}

# ------------------------------------------------------------------------------
# Phase machine
# ------------------------------------------------------------------------------


class ConversationPhase(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_WORK_ORDER_CONSENT = "awaiting_work_order_consent"
    FINALIZED = "finalized"
    DECLINED = "declined"


class PhaseEvent(str, Enum):
    START = "START"
    USER_TURN = "USER_TURN"
    TURN_INCOMPLETE = "TURN_INCOMPLETE"
    TURN_COMPLETE = "TURN_COMPLETE"
    CONFIRMED = "CONFIRMED"
    EDIT_REQUESTED = "EDIT_REQUESTED"
    CONSENTED = "CONSENTED"
    CONSENT_AMBIGUOUS = "CONSENT_AMBIGUOUS"
    DECLINED = "DECLINED"
    FINALIZE_SUCCEEDED = "FINALIZE_SUCCEEDED"
    FINALIZE_FAILED = "FINALIZE_FAILED"
    MODEL_ERROR = "MODEL_ERROR"


class Effect(str, Enum):
    RUN_COLLECTION_TURN = "RUN_COLLECTION_TURN"
    SPEAK_MODEL_TEXT = "SPEAK_MODEL_TEXT"
    READ_BACK_SUMMARY = "READ_BACK_SUMMARY"
    ASK_WORK_ORDER_CONSENT = "ASK_WORK_ORDER_CONSENT"
    FINALIZE_WORK_ORDER = "FINALIZE_WORK_ORDER"
    ANNOUNCE_WORK_ORDER = "ANNOUNCE_WORK_ORDER"
    REPORT_ERROR = "REPORT_ERROR"
    ACKNOWLEDGE_DECLINE = "ACKNOWLEDGE_DECLINE"
    APOLOGIZE = "APOLOGIZE"


@dataclass(frozen=True)
class Transition:
    phase: ConversationPhase
    effects: Tuple[Effect, ...] = ()


P, E, X = ConversationPhase, PhaseEvent, Effect

TRANSITIONS: Dict[Tuple[ConversationPhase, PhaseEvent], Transition] = {
    (P.IDLE, E.START): Transition(P.COLLECTING, (X.RUN_COLLECTION_TURN,)),
    (P.COLLECTING, E.USER_TURN): Transition(P.COLLECTING, (X.RUN_COLLECTION_TURN,)),
    (P.COLLECTING, E.TURN_INCOMPLETE): Transition(P.COLLECTING, (X.SPEAK_MODEL_TEXT,)),
    (P.COLLECTING, E.TURN_COMPLETE): Transition(P.AWAITING_CONFIRMATION, (X.READ_BACK_SUMMARY,)),
    (P.AWAITING_CONFIRMATION, E.CONFIRMED): Transition(P.AWAITING_WORK_ORDER_CONSENT, (X.ASK_WORK_ORDER_CONSENT,)),
    (P.AWAITING_CONFIRMATION, E.EDIT_REQUESTED): Transition(P.COLLECTING, (X.RUN_COLLECTION_TURN,)),
    (P.AWAITING_CONFIRMATION, E.DECLINED): Transition(P.DECLINED, (X.ACKNOWLEDGE_DECLINE,)),
    (P.AWAITING_WORK_ORDER_CONSENT, E.CONSENTED): Transition(P.AWAITING_WORK_ORDER_CONSENT, (X.FINALIZE_WORK_ORDER,)),
    (P.AWAITING_WORK_ORDER_CONSENT, E.FINALIZE_SUCCEEDED): Transition(P.FINALIZED, (X.ANNOUNCE_WORK_ORDER,)),
    (P.AWAITING_WORK_ORDER_CONSENT, E.FINALIZE_FAILED): Transition(P.AWAITING_WORK_ORDER_CONSENT, (X.REPORT_ERROR,)),
    (P.AWAITING_WORK_ORDER_CONSENT, E.DECLINED): Transition(P.DECLINED, (X.ACKNOWLEDGE_DECLINE,)),
    (P.AWAITING_WORK_ORDER_CONSENT, E.CONSENT_AMBIGUOUS): Transition(P.COLLECTING, (X.RUN_COLLECTION_TURN,)),
}
for _phase in (P.IDLE, P.COLLECTING, P.AWAITING_CONFIRMATION, P.AWAITING_WORK_ORDER_CONSENT):
    TRANSITIONS[(_phase, E.MODEL_ERROR)] = Transition(_phase, (X.APOLOGIZE,))

TERMINAL_PHASES = frozenset({P.FINALIZED, P.DECLINED})

_CONFIRMATION_EVENTS = {
    ReplyKind.CONFIRM: E.CONFIRMED,
    ReplyKind.EDIT: E.EDIT_REQUESTED,
    ReplyKind.AMBIGUOUS: E.EDIT_REQUESTED,
    ReplyKind.DECLINE: E.DECLINED,
}
_CONSENT_EVENTS = {
    ReplyKind.CONSENT: E.CONSENTED,
    ReplyKind.DECLINE: E.DECLINED,
    ReplyKind.AMBIGUOUS: E.CONSENT_AMBIGUOUS,
}


def next_phase(phase: ConversationPhase, event: PhaseEvent) -> Transition:
    """Pure transition lookup; unknown (phase, event) pairs are illegal."""
    try:
        return TRANSITIONS[(phase, event)]
    except KeyError:
        raise illegal_transition(
            origin=ErrorOrigin.ORCHESTRATOR,
            action=event.value,
            current=phase.value,
            allowed=[ev.value for (ph, ev) in TRANSITIONS if ph == phase],
        ) from None


# ------------------------------------------------------------------------------
# Read-back summary
# ------------------------------------------------------------------------------

def build_confirmation_summary(record: ServiceRequest) -> str:
    """Deterministic read-back of a complete record; never model-generated."""
    parts = [
        "Alright, let me read this back to you.",
        f"Driver name, {record.driver_name}.",
        f"Phone, {record.contact_phone}.",
        f"Fleet, {record.fleet_name}.",
        f"Location, {record.location.current_location}.",
    ]
    if record.vehicle.vehicle_type:
        parts.append(f"Vehicle type, {record.vehicle.vehicle_type.value.lower()}.")

    if record.service_type == ServiceType.TIRE and record.tire_info:
        t = record.tire_info
        kind = t.requested_service.value.lower() if t.requested_service else ""
        parts.append(f"Service type, tire {kind}.".replace(" .", "."))
        parts.append(f"Tire, {t.requested_tire}.")
        parts.append(f"Quantity, {t.number_of_tires}.")
        parts.append(f"Position, {t.tire_position}.")
    elif record.service_type == ServiceType.MECHANICAL and record.mechanical_info:
        m = record.mechanical_info
        parts.append("Service type, mechanical.")
        parts.append(f"Requested service, {m.requested_service}.")
        parts.append(f"Issue, {m.description}.")

    if record.urgency:
        parts.append(f"Priority, {_URGENCY_SPOKEN[record.urgency]}.")
    if record.urgency == ServiceUrgency.SCHEDULED and record.scheduled_appointment:
        s = record.scheduled_appointment
        parts.append(f"Scheduled for {s.scheduled_date} at {s.scheduled_time}.")

    parts.append("Does everything look right, or do you need to change anything?")
    return " ".join(parts)


# ------------------------------------------------------------------------------
# Session objects
# ------------------------------------------------------------------------------

@dataclass
class DispatchSession:
    """One service-request conversation; lives from the first trigger to Finalized/Declined."""
    record: ServiceRequest
    chat: ChatSession
    phase: ConversationPhase = ConversationPhase.IDLE
    session_id: str = field(default_factory=lambda: f"sess-{new_id()[:12]}")
    was_complete: bool = False


@dataclass
class WellnessCheckin:
    step: int = 0
    entry: MoodEntry = field(default_factory=MoodEntry)


class _ModelCallFailed(Exception):
    def __init__(self, stage: str, exc: Exception):
        super().__init__(f"{stage}: {type(exc).__name__}: {exc}")
        self.stage = stage
        self.exc = exc


@dataclass
class _TurnState:
    """Scratch space filled by effects while one turn runs."""
    text: str
    correlation_id: str
    reply: str = ""
    model_text: str = ""
    ok: bool = True
    error: Optional[Dict[str, Any]] = None
    result: Dict[str, Any] = field(default_factory=lambda: {
        "request_id": None,
        "applied_paths": [],
        "missing_fields": [],
        "is_complete": None,
        "regressed": False,
        "work_order": None,
    })


ChatFactory = Callable[[AssistantTask, str, Optional[str]], ChatSession]


# ------------------------------------------------------------------------------
# Coordinator
# ------------------------------------------------------------------------------

class Coordinator:
    def __init__(
        self,
        profile: FleetProfile,
        *,
        finalizer=None,
        extractor: Optional[ServiceRequestExtractor] = None,
        invoke: Optional[Callable[..., Dict[str, Any]]] = None,
        chat_factory: Optional[ChatFactory] = None,
        locks: RecordLocks = RECORD_LOCKS,
    ) -> None:
        """
        Args:
            profile: the fleet user this conversation belongs to.
            finalizer: WorkOrderFinalizer (or anything with finalize(record, correlation_id=...)).
            extractor: field extractor; defaults to ServiceRequestExtractor(invoke=invoke).
            invoke: chat-model callable shared by default chat sessions and extractor.
            chat_factory: (task, language, user_name) -> ChatSession override.
        """
        self.profile = profile
        self.finalizer = finalizer
        self.extractor = extractor or ServiceRequestExtractor(invoke=invoke)
        self._chat_factory: ChatFactory = chat_factory or (
            lambda task, lang, name: create_chat_session(task, lang, name, invoke=invoke)
        )
        self.locks = locks

        self.session: Optional[DispatchSession] = None
        self.last_record: Optional[ServiceRequest] = None
        self.last_packet: Optional[Dict[str, Any]] = None
        self._general: Optional[Tuple[AssistantTask, ChatSession]] = None
        self._wellness: Optional[WellnessCheckin] = None
        self._turn_lock = threading.Lock()

    # ---------- introspection ----------

    @property
    def phase(self) -> ConversationPhase:
        return self.session.phase if self.session else ConversationPhase.IDLE

    @property
    def record(self) -> Optional[ServiceRequest]:
        return self.session.record if self.session else None

    def reset(self) -> None:
        """Drop the active service-request session (the record is kept as last_record)."""
        if self.session is not None:
            self.last_record = self.session.record
            app_logger.log_coordinator_event("SESSION_RESET", {"session_id": self.session.session_id},
                                             request_id=self.session.record.id)
        self.session = None
        self._wellness = None

    # ---------- public turn API ----------

    def handle_turn(self, user_text: str) -> Dict[str, Any]:
        return self._serialized(user_text, force_service=False)

    def start_service_request(self, user_text: str) -> Dict[str, Any]:
        """Explicit start: the utterance opens a service request regardless of keywords."""
        return self._serialized(user_text, force_service=True)

    # ---------- serialization ----------

    def _serialized(self, user_text: str, *, force_service: bool) -> Dict[str, Any]:
        cid = new_correlation_id()
        if not self._turn_lock.acquire(blocking=False):
            return self._busy_packet(user_text, cid)
        try:
            record_id = self.session.record.id if self.session else None
            if record_id and not self.locks.acquire(record_id, blocking=False):
                return self._busy_packet(user_text, cid)
            try:
                packet = self._dispatch(user_text, cid, force_service=force_service)
            finally:
                if record_id:
                    self.locks.release(record_id)
        finally:
            self._turn_lock.release()

        self.last_packet = packet
        app_logger.log_turn_packet(packet)
        return packet

    def _busy_packet(self, user_text: str, cid: str) -> Dict[str, Any]:
        err = make_error(
            code=ErrorCode.TURN_IN_PROGRESS,
            origin=ErrorOrigin.ORCHESTRATOR,
            retryable=True,
            dev_message="turn rejected: another turn is still running",
            correlation_id=cid,
        )
        app_logger.log_error_event("Coordinator.TURN_REJECTED", err)
        phase = self.phase.value
        st = _TurnState(text=user_text, correlation_id=cid, reply=err["user_message"], ok=False, error=err)
        return self._packet(st, task=None, phase_before=phase, phase=phase)

    # ---------- routing ----------

    def _dispatch(self, text: str, cid: str, *, force_service: bool) -> Dict[str, Any]:
        if self.session is None:
            if self._wellness is not None and not force_service:
                return self._wellness_turn(text, cid)
            route = classify_task(text)
            if force_service or route.task == AssistantTask.SERVICE_REQUEST:
                return self._start(text, cid)
            if is_wellness_checkin(text):
                return self._start_wellness(text, cid)
            return self._general_turn(text, cid, route.task)

        phase = self.session.phase
        if phase == ConversationPhase.COLLECTING:
            event = PhaseEvent.USER_TURN
        elif phase == ConversationPhase.AWAITING_CONFIRMATION:
            event = _CONFIRMATION_EVENTS[classify_confirmation_reply(text)]
        elif phase == ConversationPhase.AWAITING_WORK_ORDER_CONSENT:
            event = _CONSENT_EVENTS[classify_consent_reply(text)]
        else:
            raise illegal_transition(origin=ErrorOrigin.ORCHESTRATOR, action="USER_TURN",
                                     current=phase.value, allowed=[])
        return self._run(event, text, cid)

    def _start(self, text: str, cid: str) -> Dict[str, Any]:
        record = create_service_request(self.profile.user_id, profile=self.profile)
        chat = self._chat_factory(AssistantTask.SERVICE_REQUEST, self.profile.language or config.DEFAULT_LANGUAGE,
                                  self.profile.user_name)
        self.session = DispatchSession(record=record, chat=chat)
        app_logger.log_coordinator_event(
            "SESSION_STARTED",
            {"session_id": self.session.session_id, "seeded_driver_name": bool(record.driver_name)},
            correlation_id=cid,
            request_id=record.id,
        )
        with self.locks.hold(record.id):
            return self._run(PhaseEvent.START, text, cid)

    # ---------- phase machine driver ----------

    def _run(self, event: PhaseEvent, text: str, cid: str) -> Dict[str, Any]:
        session = self.session
        assert session is not None
        phase_before = session.phase
        st = _TurnState(text=text, correlation_id=cid)
        st.result["request_id"] = session.record.id

        pending: List[PhaseEvent] = [event]
        try:
            while pending:
                ev = pending.pop(0)
                tr = next_phase(session.phase, ev)
                self._set_phase(tr.phase, ev, cid)
                for effect in tr.effects:
                    follow = self._perform(effect, st)
                    if follow is not None:
                        pending.append(follow)
        except _ModelCallFailed as failure:
            session.phase = phase_before
            tr = next_phase(phase_before, PhaseEvent.MODEL_ERROR)
            st.ok = False
            st.error = make_error(
                code=ErrorCode.MODEL_CALL_FAILURE,
                origin=ErrorOrigin.CHAT if failure.stage == "chat" else ErrorOrigin.EXTRACTOR,
                retryable=True,
                dev_message=str(failure),
                details={"exception": type(failure.exc).__name__},
                context={"phase": phase_before.value, "request_id": session.record.id},
                correlation_id=cid,
            )
            app_logger.log_error_event("Coordinator.MODEL_CALL_FAILED", st.error, request_id=session.record.id)
            for effect in tr.effects:
                self._perform(effect, st)

        phase_after = session.phase
        packet = self._packet(st, task=AssistantTask.SERVICE_REQUEST.value,
                              phase_before=phase_before.value, phase=phase_after.value)
        if phase_after == ConversationPhase.IDLE:
            # the opening turn failed; nothing was collected, so no session is kept
            self.session = None
        if phase_after in TERMINAL_PHASES:
            self._end_session()
        return packet

    def _set_phase(self, phase: ConversationPhase, event: PhaseEvent, cid: str) -> None:
        session = self.session
        if session.phase != phase:
            app_logger.log_coordinator_event(
                "PHASE_CHANGED",
                {"from": session.phase.value, "to": phase.value, "event": event.value},
                correlation_id=cid,
                request_id=session.record.id,
            )
        session.phase = phase

    def _perform(self, effect: Effect, st: _TurnState) -> Optional[PhaseEvent]:
        session = self.session
        if effect == Effect.RUN_COLLECTION_TURN:
            return self._collection_turn(st)
        if effect == Effect.SPEAK_MODEL_TEXT:
            st.reply = st.model_text
            if st.result["regressed"] and st.result["missing_fields"]:
                st.reply = f"{st.reply} I still need {describe_missing(st.result['missing_fields'])}.".strip()
            return None
        if effect == Effect.READ_BACK_SUMMARY:
            st.reply = build_confirmation_summary(session.record)
            return None
        if effect == Effect.ASK_WORK_ORDER_CONSENT:
            st.reply = WORK_ORDER_PROMPT
            return None
        if effect == Effect.FINALIZE_WORK_ORDER:
            return self._finalize(st)
        if effect == Effect.ANNOUNCE_WORK_ORDER:
            st.reply = WORK_ORDER_READY
            return None
        if effect == Effect.REPORT_ERROR:
            st.ok = False
            st.reply = (st.error or {}).get("user_message") or APOLOGY_MESSAGE
            return None
        if effect == Effect.ACKNOWLEDGE_DECLINE:
            st.reply = DECLINE_ACK
            return None
        if effect == Effect.APOLOGIZE:
            st.reply = APOLOGY_MESSAGE
            return None
        raise ValueError(f"unknown effect {effect}")

    # ---------- effects ----------

    def _collection_turn(self, st: _TurnState) -> PhaseEvent:
        session = self.session
        try:
            chat_out = session.chat.send_message(st.text)
        except Exception as exc:
            raise _ModelCallFailed("chat", exc) from exc
        st.model_text = chat_out.get("text", "")
        session.record.append_exchange(st.text, st.model_text)

        try:
            partial = self.extractor.extract(session.record.conversation_transcript, session.record,
                                             correlation_id=st.correlation_id)
        except Exception as exc:
            raise _ModelCallFailed("extractor", exc) from exc

        merged = merge_service_request(session.record, partial)
        session.record = merged.record
        validation = validate_service_request(session.record)
        regressed = session.was_complete and not validation.is_complete
        session.was_complete = validation.is_complete

        st.result.update(
            applied_paths=merged.applied_paths,
            missing_fields=list(validation.missing_fields),
            is_complete=validation.is_complete,
            regressed=regressed,
        )
        if regressed:
            app_logger.log_coordinator_event(
                "COMPLETENESS_REGRESSED",
                {"missing_fields": list(validation.missing_fields)},
                correlation_id=st.correlation_id,
                request_id=session.record.id,
                level=logging.WARNING,
            )
        return PhaseEvent.TURN_COMPLETE if validation.is_complete else PhaseEvent.TURN_INCOMPLETE

    def _finalize(self, st: _TurnState) -> PhaseEvent:
        session = self.session
        if self.finalizer is None:
            raise RuntimeError("Coordinator has no work-order finalizer configured")
        try:
            result = self.finalizer.finalize(session.record, correlation_id=st.correlation_id)
        except PersistenceError as exc:
            st.error = exc.error
            return PhaseEvent.FINALIZE_FAILED
        session.record = result.record
        st.result["work_order"] = result.as_dict()
        if result.document_error:
            st.error = result.document_error
        return PhaseEvent.FINALIZE_SUCCEEDED

    def _end_session(self) -> None:
        session = self.session
        self.last_record = session.record
        app_logger.log_coordinator_event(
            "SESSION_ENDED",
            {"session_id": session.session_id, "phase": session.phase.value, "status": session.record.status.value},
            request_id=session.record.id,
        )
        self.session = None

    # ---------- non-dispatch conversation ----------

    def _general_turn(self, text: str, cid: str, task: AssistantTask) -> Dict[str, Any]:
        st = _TurnState(text=text, correlation_id=cid)
        if self._general is None or self._general[0] != task:
            chat = self._chat_factory(task, self.profile.language or config.DEFAULT_LANGUAGE, self.profile.user_name)
            self._general = (task, chat)
        try:
            st.reply = self._general[1].send_message(text).get("text", "")
        except Exception as exc:
            st.ok = False
            st.reply = APOLOGY_MESSAGE
            st.error = make_error(
                code=ErrorCode.MODEL_CALL_FAILURE,
                origin=ErrorOrigin.CHAT,
                retryable=True,
                dev_message=f"{type(exc).__name__}: {exc}",
                context={"task": task.value},
                correlation_id=cid,
            )
            app_logger.log_error_event("Coordinator.MODEL_CALL_FAILED", st.error)
        idle = ConversationPhase.IDLE.value
        return self._packet(st, task=task.value, phase_before=idle, phase=idle)

    def _start_wellness(self, text: str, cid: str) -> Dict[str, Any]:
        self._wellness = WellnessCheckin()
        st = _TurnState(text=text, correlation_id=cid, reply=WELLNESS_QUESTIONS[0][1])
        idle = ConversationPhase.IDLE.value
        return self._packet(st, task=AssistantTask.PERSONAL_WELLNESS.value, phase_before=idle, phase=idle)

    def _wellness_turn(self, text: str, cid: str) -> Dict[str, Any]:
        w = self._wellness
        key, _ = WELLNESS_QUESTIONS[w.step]
        if key == "notes":
            w.entry.notes = text.strip() or None
        else:
            m = re.search(r"[1-5]", text)
            setattr(w.entry, key, int(m.group(0)) if m else None)
        w.step += 1

        if w.step < len(WELLNESS_QUESTIONS):
            reply = WELLNESS_QUESTIONS[w.step][1]
        else:
            self.profile.mood_history.append(w.entry)
            self._wellness = None
            reply = WELLNESS_DONE
            app_logger.log_coordinator_event("MOOD_LOGGED", w.entry.model_dump(), correlation_id=cid)

        st = _TurnState(text=text, correlation_id=cid, reply=reply)
        idle = ConversationPhase.IDLE.value
        return self._packet(st, task=AssistantTask.PERSONAL_WELLNESS.value, phase_before=idle, phase=idle)

    # ---------- packet ----------

    @staticmethod
    def _packet(st: _TurnState, *, task: Optional[str], phase_before: str, phase: str) -> Dict[str, Any]:
        return {
            "utterance": st.text,
            "task": task,
            "phase_before": phase_before,
            "phase": phase,
            "ok": st.ok,
            "reply": st.reply,
            "result": st.result,
            "error": st.error,
            "correlation_id": st.correlation_id,
        }
