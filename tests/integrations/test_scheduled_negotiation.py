# tests/integrations/test_scheduled_negotiation.py
"""
Provider negotiation against a real LocalStore + Notifier.

What's covered
--------------
1) Submitted records appear in the actionable queue (urgency filter, "ALL").
2) accept -> complete, with notifications to the owner.
3) counter_propose (SCHEDULED only) -> approve rewrites the appointment.
4) counter_propose -> reject re-opens the record to every provider.
5) Proposal resolution is one-shot; list_active_jobs follows the assignment.
"""

import pytest

from dispatch_assistant.error_handler import IllegalTransitionError, RecordNotFoundError
from dispatch_assistant.negotiation import ProviderNegotiationWorkflow
from dispatch_assistant.request_state import (
    NotificationKind,
    ProposalStatus,
    RequestStatus,
    ServiceRequest,
    merge_service_request,
)
from fleet_agent.notifier import Notifier


def _submitted(store, partial, *, when="2026-10-17T10:00:00+00:00"):
    base = ServiceRequest(
        created_by_id="fleet-user-1", driver_name="Marcus", contact_phone="555-0100",
        fleet_name="Blue Line", status=RequestStatus.SUBMITTED, submitted_at=when,
    )
    rec = merge_service_request(base, partial).record
    store.upsert(rec)
    return rec


@pytest.fixture()
def scheduled_partial(tire_partial):
    tire_partial["urgency"] = "SCHEDULED"
    tire_partial["scheduled_appointment"] = {"scheduled_date": "2026-10-22", "scheduled_time": "09:00"}
    return tire_partial


@pytest.fixture()
def notifier(tmp_path):
    return Notifier(tmp_path / "notifications")


@pytest.fixture()
def wf(store, notifier):
    return ProviderNegotiationWorkflow(store, notifier)


def test_actionable_queue_filters(store, wf, tire_partial, scheduled_partial):
    ers = _submitted(store, tire_partial, when="2026-10-17T10:00:00+00:00")
    sched = _submitted(store, scheduled_partial, when="2026-10-17T11:00:00+00:00")
    store.upsert(ServiceRequest(created_by_id="fleet-user-1"))  # draft, never listed

    assert [r.id for r in wf.list_actionable("prov-1")] == [sched.id, ers.id]
    assert [r.id for r in wf.list_actionable("prov-1", "ALL")] == [sched.id, ers.id]
    assert [r.id for r in wf.list_actionable("prov-1", "ERS")] == [ers.id]
    assert [r.id for r in wf.list_actionable("prov-1", "SCHEDULED")] == [sched.id]


def test_accept_then_complete(store, wf, notifier, tire_partial):
    rec = _submitted(store, tire_partial)
    accepted = wf.accept(rec.id, "prov-1", "Rapid Tire Co")
    assert accepted.status == RequestStatus.ACCEPTED
    assert accepted.accepted_at
    assert wf.list_actionable("prov-2") == []
    assert [r.id for r in wf.list_active_jobs("prov-1")] == [rec.id]

    done = wf.complete(rec.id, "prov-1")
    assert done.status == RequestStatus.COMPLETED
    assert store.get(rec.id).completed_at
    assert wf.list_active_jobs("prov-1") == []

    kinds = [n.kind for n in notifier.list("fleet-user-1")]
    assert kinds == [NotificationKind.ACCEPTED, NotificationKind.COMPLETED]
    assert notifier.list("fleet-user-1")[0].message == "Rapid Tire Co accepted your work order."


def test_counter_proposal_approved(store, wf, notifier, scheduled_partial):
    rec = _submitted(store, scheduled_partial)
    updated, prop = wf.counter_propose(rec.id, "prov-1", "Rapid Tire Co", "2026-10-23", "13:30", "booked Wednesday")
    assert updated.status == RequestStatus.COUNTER_PROPOSED
    assert prop.status == ProposalStatus.PENDING
    assert wf.pending_proposal(rec.id).id == prop.id
    assert notifier.list("fleet-user-1")[-1].kind == NotificationKind.COUNTER_PROPOSED

    approved, resolved = wf.approve_counter_proposal(prop.id)
    assert approved.status == RequestStatus.COUNTER_APPROVED
    assert resolved.status == ProposalStatus.APPROVED and resolved.responded_at
    stored = store.get(rec.id)
    assert stored.scheduled_appointment.scheduled_date == "2026-10-23"
    assert stored.scheduled_appointment.scheduled_time == "13:30"
    assert wf.pending_proposal(rec.id) is None
    assert [r.id for r in wf.list_active_jobs("prov-1")] == [rec.id]

    with pytest.raises(IllegalTransitionError):
        wf.reject_counter_proposal(prop.id)


def test_counter_proposal_rejected_reopens(store, wf, scheduled_partial):
    rec = _submitted(store, scheduled_partial)
    _, prop = wf.counter_propose(rec.id, "prov-1", "Rapid Tire Co", "2026-10-23", "13:30")
    assert wf.list_actionable("prov-2") == []

    reopened, resolved = wf.reject_counter_proposal(prop.id)
    assert reopened.status == RequestStatus.COUNTER_REJECTED
    assert reopened.assigned_provider_id is None
    assert resolved.status == ProposalStatus.REJECTED
    # the original appointment is untouched
    assert store.get(rec.id).scheduled_appointment.scheduled_date == "2026-10-22"
    assert [r.id for r in wf.list_actionable("prov-2")] == [rec.id]

    # another provider can take it from here
    assert wf.accept(rec.id, "prov-2", "Interstate Fleet Svc").status == RequestStatus.ACCEPTED
    assert [p.status for p in wf.proposals(rec.id)] == [ProposalStatus.REJECTED]


def test_counter_requires_scheduled_urgency(store, wf, tire_partial):
    rec = _submitted(store, tire_partial)
    with pytest.raises(IllegalTransitionError):
        wf.counter_propose(rec.id, "prov-1", "Rapid Tire Co", "2026-10-23", "13:30")
    assert store.get(rec.id).status == RequestStatus.SUBMITTED


def test_counter_requires_date_and_time(store, wf, scheduled_partial):
    rec = _submitted(store, scheduled_partial)
    with pytest.raises(ValueError):
        wf.counter_propose(rec.id, "prov-1", "Rapid Tire Co", "2026-10-23", "  ")


def test_unknown_ids(wf):
    with pytest.raises(RecordNotFoundError):
        wf.accept("nope", "prov-1", "X")
    with pytest.raises(RecordNotFoundError):
        wf.approve_counter_proposal("nope")


def test_rejected_leaves_the_queue(store, wf, notifier, tire_partial):
    rec = _submitted(store, tire_partial)
    assert wf.reject(rec.id, "prov-1", "Rapid Tire Co").status == RequestStatus.REJECTED
    assert wf.list_actionable("prov-1") == []
    assert wf.list_actionable("prov-2") == []
    assert notifier.list("fleet-user-1")[-1].kind == NotificationKind.REJECTED
    with pytest.raises(IllegalTransitionError):
        wf.accept(rec.id, "prov-1", "Rapid Tire Co")
