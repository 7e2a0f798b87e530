"""
Project: Roadside Dispatch Assistant
File: negotiation.py

Provider negotiation workflow over submitted work orders. Every action loads the
record under its per-record lock, checks the current status against STATUS_RULES
and only then mutates and persists. An illegal action raises
IllegalTransitionError and nothing is written. The record is written before
any counter proposal, so a failed write never leaves a resolved proposal next to
an unresolved record.

    submitted / counter_rejected --accept--------------> accepted
    submitted / counter_rejected --reject--------------> rejected
    submitted / counter_rejected --counter_propose-----> counter_proposed   (SCHEDULED only)
    counter_proposed --approve_counter_proposal--------> counter_approved   (schedule overwritten)
    counter_proposed --reject_counter_proposal---------> counter_rejected   (provider cleared)
    accepted / counter_approved --complete-------------> completed
    accepted / counter_approved --cancel---------------> cancelled

counter_rejected records have no assigned provider and are offered to providers again.

Methods & Classes
- STATUS_RULES: action -> (allowed statuses, target status)
- class ProviderNegotiationWorkflow:
  - accept / reject / counter_propose
  - approve_counter_proposal / reject_counter_proposal
  - complete / cancel
  - list_actionable(provider_id, urgency=None) / list_active_jobs(provider_id)
  - pending_proposal(request_id)

Dependencies
- Internal: request_state, error_handler, app_logger, record_locks
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from dispatch_assistant import app_logger
from dispatch_assistant.error_handler import (
    ErrorCode,
    ErrorOrigin,
    PersistenceError,
    RecordNotFoundError,
    illegal_transition,
    make_error,
)
from dispatch_assistant.record_locks import RECORD_LOCKS, RecordLocks
from dispatch_assistant.request_state import (
    CounterProposal,
    NotificationKind,
    ProposalStatus,
    RequestStatus,
    ScheduledAppointment,
    ServiceRequest,
    ServiceUrgency,
    now_iso,
)

S = RequestStatus
_OPEN = (S.SUBMITTED, S.COUNTER_REJECTED)
_ACTIVE = (S.ACCEPTED, S.COUNTER_APPROVED)

STATUS_RULES: Dict[str, Tuple[Tuple[RequestStatus, ...], RequestStatus]] = {
    "accept": (_OPEN, S.ACCEPTED),
    "reject": (_OPEN, S.REJECTED),
    "counter_propose": (_OPEN, S.COUNTER_PROPOSED),
    "approve_counter_proposal": ((S.COUNTER_PROPOSED,), S.COUNTER_APPROVED),
    "reject_counter_proposal": ((S.COUNTER_PROPOSED,), S.COUNTER_REJECTED),
    "complete": (_ACTIVE, S.COMPLETED),
    "cancel": (_ACTIVE, S.CANCELLED),
}

_NOTIFY_MESSAGES = {
    NotificationKind.ACCEPTED: "{provider} accepted your work order.",
    NotificationKind.REJECTED: "A provider declined your work order.",
    NotificationKind.COUNTER_PROPOSED: "{provider} proposed {date} at {time} for your work order.",
    NotificationKind.COMPLETED: "{provider} marked your work order complete.",
    NotificationKind.CANCELLED: "Your work order was cancelled.",
}


class ProviderNegotiationWorkflow:
    def __init__(self, store, notifier=None, *, locks: RecordLocks = RECORD_LOCKS) -> None:
        self.store = store
        self.notifier = notifier
        self.locks = locks

    # ------------------------------- helpers ---------------------------------

    def _load(self, request_id: str) -> ServiceRequest:
        rec = self.store.get(request_id)
        if rec is None:
            raise RecordNotFoundError(
                make_error(
                    code=ErrorCode.NOT_FOUND,
                    origin=ErrorOrigin.NEGOTIATION,
                    retryable=False,
                    dev_message=f"service request {request_id} not found",
                    context={"request_id": request_id},
                )
            )
        return rec

    def _load_proposal(self, proposal_id: str) -> CounterProposal:
        prop = self.store.get_counter_proposal(proposal_id)
        if prop is None:
            raise RecordNotFoundError(
                make_error(
                    code=ErrorCode.NOT_FOUND,
                    origin=ErrorOrigin.NEGOTIATION,
                    retryable=False,
                    dev_message=f"counter proposal {proposal_id} not found",
                    context={"proposal_id": proposal_id},
                )
            )
        return prop

    @staticmethod
    def _gate(action: str, rec: ServiceRequest) -> RequestStatus:
        allowed, target = STATUS_RULES[action]
        if rec.status not in allowed:
            raise illegal_transition(
                origin=ErrorOrigin.NEGOTIATION,
                action=action,
                current=rec.status.value,
                allowed=[s.value for s in allowed],
                request_id=rec.id,
            )
        return target

    def _persist(
        self,
        action: str,
        rec: ServiceRequest,
        previous: ServiceRequest,
        proposal: Optional[CounterProposal] = None,
    ) -> None:
        """Record first, proposal second; a failed proposal write puts the previous record back."""
        try:
            self.store.upsert(rec)
            if proposal is not None:
                try:
                    self.store.save_counter_proposal(proposal)
                except Exception:
                    self._restore(previous)
                    raise
        except Exception as exc:
            err = make_error(
                code=ErrorCode.PERSISTENCE_FAILURE,
                origin=ErrorOrigin.IO,
                retryable=True,
                dev_message=f"{type(exc).__name__}: {exc}",
                details={"operation": action},
                context={"request_id": rec.id},
            )
            app_logger.log_error_event("Negotiation.PERSIST_FAILED", err, request_id=rec.id)
            raise PersistenceError(err) from exc

    def _restore(self, previous: ServiceRequest) -> None:
        try:
            self.store.upsert(previous)
        except Exception as exc:
            app_logger.log_negotiation_event(
                "RESTORE_FAILED", {"status": previous.status.value, "error": f"{type(exc).__name__}: {exc}"},
                request_id=previous.id, level=logging.ERROR,
            )

    def _notify(self, kind: NotificationKind, rec: ServiceRequest, *, provider: str = "", date: str = "", time: str = "") -> None:
        if self.notifier is None or not rec.created_by_id:
            return
        message = _NOTIFY_MESSAGES[kind].format(provider=provider or "A provider", date=date, time=time)
        try:
            self.notifier.notify(rec.created_by_id, kind, rec, message=message)
        except Exception as exc:
            app_logger.log_negotiation_event(
                "NOTIFY_FAILED", {"kind": kind.value, "error": str(exc)}, request_id=rec.id, level=logging.WARNING
            )

    def _transition(
        self,
        action: str,
        request_id: str,
        mutate: Callable[[ServiceRequest], Optional[CounterProposal]],
        *,
        guard: Optional[Callable[[ServiceRequest], None]] = None,
    ) -> Tuple[ServiceRequest, Optional[CounterProposal]]:
        with self.locks.hold(request_id):
            current = self._load(request_id)
            target = self._gate(action, current)
            if guard is not None:
                guard(current)
            updated = current.model_copy(deep=True)
            proposal = mutate(updated)
            updated.status = target
            self._persist(action, updated, current, proposal)
        app_logger.log_negotiation_event(
            action.upper(),
            {"from": current.status.value, "to": target.value, "provider_id": updated.assigned_provider_id},
            request_id=request_id,
        )
        return updated, proposal

    # ------------------------------- provider --------------------------------

    def accept(self, request_id: str, provider_id: str, provider_name: str) -> ServiceRequest:
        def mutate(rec: ServiceRequest) -> None:
            rec.assigned_provider_id = provider_id
            rec.assigned_provider_name = provider_name
            rec.accepted_at = now_iso()

        rec, _ = self._transition("accept", request_id, mutate)
        self._notify(NotificationKind.ACCEPTED, rec, provider=provider_name)
        return rec

    def reject(self, request_id: str, provider_id: str, provider_name: str = "") -> ServiceRequest:
        rec, _ = self._transition("reject", request_id, lambda r: None)
        self._notify(NotificationKind.REJECTED, rec, provider=provider_name)
        return rec

    def counter_propose(
        self,
        request_id: str,
        provider_id: str,
        provider_name: str,
        proposed_date: str,
        proposed_time: str,
        message: str = "",
    ) -> Tuple[ServiceRequest, CounterProposal]:
        if not (proposed_date or "").strip() or not (proposed_time or "").strip():
            raise ValueError("counter proposal needs both a date and a time")

        def guard(rec: ServiceRequest) -> None:
            if rec.urgency != ServiceUrgency.SCHEDULED:
                raise illegal_transition(
                    origin=ErrorOrigin.NEGOTIATION,
                    action="counter_propose",
                    current=f"{rec.status.value}/{rec.urgency.value if rec.urgency else 'none'}",
                    allowed=["SCHEDULED urgency only"],
                    request_id=rec.id,
                )

        def mutate(rec: ServiceRequest) -> CounterProposal:
            rec.assigned_provider_id = provider_id
            rec.assigned_provider_name = provider_name
            return CounterProposal(
                service_request_id=rec.id,
                provider_id=provider_id,
                provider_name=provider_name,
                proposed_date=proposed_date.strip(),
                proposed_time=proposed_time.strip(),
                message=message or "",
            )

        rec, proposal = self._transition("counter_propose", request_id, mutate, guard=guard)
        self._notify(NotificationKind.COUNTER_PROPOSED, rec, provider=provider_name,
                     date=proposal.proposed_date, time=proposal.proposed_time)
        return rec, proposal

    def complete(self, request_id: str, provider_id: str) -> ServiceRequest:
        def guard(rec: ServiceRequest) -> None:
            if rec.assigned_provider_id != provider_id:
                raise illegal_transition(
                    origin=ErrorOrigin.NEGOTIATION,
                    action="complete",
                    current=f"{rec.status.value}/assigned to {rec.assigned_provider_id}",
                    allowed=["assigned provider only"],
                    request_id=rec.id,
                )

        def mutate(rec: ServiceRequest) -> None:
            rec.completed_at = now_iso()

        rec, _ = self._transition("complete", request_id, mutate, guard=guard)
        self._notify(NotificationKind.COMPLETED, rec, provider=rec.assigned_provider_name or "")
        return rec

    def cancel(self, request_id: str, actor_id: str) -> ServiceRequest:
        rec, _ = self._transition("cancel", request_id, lambda r: None)
        app_logger.log_negotiation_event("CANCELLED_BY", {"actor_id": actor_id}, request_id=request_id)
        if actor_id != rec.created_by_id:
            self._notify(NotificationKind.CANCELLED, rec)
        return rec

    # --------------------------------- fleet ---------------------------------

    def _resolve_proposal(self, proposal_id: str, action: str, approved: bool) -> Tuple[ServiceRequest, CounterProposal]:
        proposal = self._load_proposal(proposal_id)

        def guard(rec: ServiceRequest) -> None:
            latest = self._load_proposal(proposal_id)
            if latest.status != ProposalStatus.PENDING:
                raise illegal_transition(
                    origin=ErrorOrigin.NEGOTIATION,
                    action=action,
                    current=f"proposal {latest.status.value}",
                    allowed=[ProposalStatus.PENDING.value],
                    request_id=rec.id,
                )

        def mutate(rec: ServiceRequest) -> CounterProposal:
            resolved = proposal.model_copy(deep=True)
            resolved.responded_at = now_iso()
            if approved:
                resolved.status = ProposalStatus.APPROVED
                appt = rec.scheduled_appointment or ScheduledAppointment()
                appt.scheduled_date = proposal.proposed_date
                appt.scheduled_time = proposal.proposed_time
                rec.scheduled_appointment = appt
            else:
                resolved.status = ProposalStatus.REJECTED
                rec.assigned_provider_id = None
                rec.assigned_provider_name = None
            return resolved

        rec, resolved = self._transition(action, proposal.service_request_id, mutate, guard=guard)
        return rec, resolved  # type: ignore[return-value]

    def approve_counter_proposal(self, proposal_id: str) -> Tuple[ServiceRequest, CounterProposal]:
        return self._resolve_proposal(proposal_id, "approve_counter_proposal", approved=True)

    def reject_counter_proposal(self, proposal_id: str) -> Tuple[ServiceRequest, CounterProposal]:
        return self._resolve_proposal(proposal_id, "reject_counter_proposal", approved=False)

    # -------------------------------- queries --------------------------------

    def list_actionable(self, provider_id: str, urgency: Optional[ServiceUrgency | str] = None) -> List[ServiceRequest]:
        """
        Open work orders a provider can act on: submitted or re-opened, unassigned.

        The queue is shared by every provider, so provider_id does not filter it;
        it is recorded on the query log line only.
        """
        want = ServiceUrgency(urgency) if urgency and str(urgency).upper() != "ALL" else None
        out: List[ServiceRequest] = []
        for status in _OPEN:
            for rec in self.store.list(status=status):
                if rec.assigned_provider_id:
                    continue
                if want is not None and rec.urgency != want:
                    continue
                out.append(rec)
        out.sort(key=lambda r: r.submitted_at or r.timestamp, reverse=True)
        app_logger.log_negotiation_event(
            "LIST_ACTIONABLE",
            {"provider_id": provider_id, "urgency": want.value if want else "ALL", "count": len(out)},
            level=logging.DEBUG,
        )
        return out

    def list_active_jobs(self, provider_id: str) -> List[ServiceRequest]:
        out: List[ServiceRequest] = []
        for status in _ACTIVE:
            out.extend(r for r in self.store.list(status=status) if r.assigned_provider_id == provider_id)
        out.sort(key=lambda r: r.accepted_at or r.submitted_at or r.timestamp, reverse=True)
        return out

    def pending_proposal(self, request_id: str) -> Optional[CounterProposal]:
        for p in self.store.list_counter_proposals(request_id):
            if p.status == ProposalStatus.PENDING:
                return p
        return None

    def proposals(self, request_id: str) -> Sequence[CounterProposal]:
        return self.store.list_counter_proposals(request_id)
