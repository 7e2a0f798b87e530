# tests/integrations/test_negotiation_gating.py
import threading

import pytest

from dispatch_assistant.error_handler import IllegalTransitionError, PersistenceError
from dispatch_assistant.negotiation import STATUS_RULES, ProviderNegotiationWorkflow
from dispatch_assistant.request_state import ProposalStatus, RequestStatus, ServiceRequest, ServiceUrgency
from fleet_agent.notifier import Notifier


@pytest.fixture()
def wf(store, tmp_path):
    return ProviderNegotiationWorkflow(store, Notifier(tmp_path / "notes"))


def _failing(message):
    def write(*_args):
        raise OSError(message)
    return write


def _put(store, status, **kw):
    rec = ServiceRequest(created_by_id="fleet-user-1", status=status, **kw)
    store.upsert(rec)
    return rec


@pytest.mark.parametrize("status", [RequestStatus.DRAFT, RequestStatus.SUBMITTED, RequestStatus.COMPLETED])
def test_complete_only_from_active(store, wf, status):
    rec = _put(store, status, assigned_provider_id="prov-1")
    with pytest.raises(IllegalTransitionError) as ei:
        wf.complete(rec.id, "prov-1")
    assert ei.value.error["details"]["allowed"] == ["accepted", "counter_approved"]
    assert store.get(rec.id).status == status


def test_complete_by_other_provider_rejected(store, wf):
    rec = _put(store, RequestStatus.ACCEPTED, assigned_provider_id="prov-1")
    with pytest.raises(IllegalTransitionError):
        wf.complete(rec.id, "prov-2")
    assert store.get(rec.id).status == RequestStatus.ACCEPTED


@pytest.mark.parametrize("status", [RequestStatus.ACCEPTED, RequestStatus.COUNTER_APPROVED])
def test_cancel_from_active(store, wf, status):
    rec = _put(store, status, assigned_provider_id="prov-1")
    assert wf.cancel(rec.id, "prov-1").status == RequestStatus.CANCELLED


def test_cancel_from_submitted_rejected(store, wf):
    rec = _put(store, RequestStatus.SUBMITTED)
    with pytest.raises(IllegalTransitionError):
        wf.cancel(rec.id, "fleet-user-1")


@pytest.mark.parametrize("action", ["accept", "reject"])
def test_terminal_records_are_final(store, wf, action):
    rec = _put(store, RequestStatus.REJECTED)
    with pytest.raises(IllegalTransitionError):
        getattr(wf, action)(rec.id, "prov-1", "Rapid Tire Co")


def test_status_rules_have_no_draft_exits():
    assert all(RequestStatus.DRAFT not in allowed for allowed, _ in STATUS_RULES.values())


def test_racing_accepts_one_winner(store, wf):
    rec = _put(store, RequestStatus.SUBMITTED)
    winners, losers = [], []

    def take(provider):
        try:
            wf.accept(rec.id, provider, provider)
            winners.append(provider)
        except IllegalTransitionError:
            losers.append(provider)

    threads = [threading.Thread(target=take, args=(f"prov-{i}",)) for i in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(winners) == 1 and len(losers) == 4
    assert store.get(rec.id).assigned_provider_id == winners[0]


def test_persistence_failure_leaves_record(store, wf, monkeypatch):
    rec = _put(store, RequestStatus.SUBMITTED)

    def broken(_record):
        raise OSError("disk full")

    monkeypatch.setattr(store, "upsert", broken)
    with pytest.raises(PersistenceError) as ei:
        wf.accept(rec.id, "prov-1", "Rapid Tire Co")
    assert ei.value.code == "PERSISTENCE_FAILURE"
    monkeypatch.undo()
    assert store.get(rec.id).status == RequestStatus.SUBMITTED


def _pending(store, wf):
    rec = _put(store, RequestStatus.SUBMITTED, urgency=ServiceUrgency.SCHEDULED)
    _, proposal = wf.counter_propose(rec.id, "prov-1", "Rapid Tire Co", "2026-10-20", "09:00")
    return rec, proposal


@pytest.mark.parametrize("action, target", [
    ("approve_counter_proposal", RequestStatus.COUNTER_APPROVED),
    ("reject_counter_proposal", RequestStatus.COUNTER_REJECTED),
])
def test_failed_resolution_can_be_retried(store, wf, monkeypatch, action, target):
    rec, proposal = _pending(store, wf)

    monkeypatch.setattr(store, "upsert", _failing("disk full"))
    with pytest.raises(PersistenceError) as ei:
        getattr(wf, action)(proposal.id)
    assert ei.value.error["details"] == {"operation": action}
    monkeypatch.undo()

    assert store.get(rec.id).status == RequestStatus.COUNTER_PROPOSED
    assert store.get_counter_proposal(proposal.id).status == ProposalStatus.PENDING

    updated, resolved = getattr(wf, action)(proposal.id)
    assert updated.status == target
    assert resolved.status != ProposalStatus.PENDING


def test_failed_proposal_write_restores_record(store, wf, monkeypatch):
    rec, proposal = _pending(store, wf)

    monkeypatch.setattr(store, "save_counter_proposal", _failing("proposal dir gone"))
    with pytest.raises(PersistenceError):
        wf.approve_counter_proposal(proposal.id)
    monkeypatch.undo()

    assert store.get(rec.id).status == RequestStatus.COUNTER_PROPOSED
    assert wf.pending_proposal(rec.id).id == proposal.id
    assert wf.approve_counter_proposal(proposal.id)[0].status == RequestStatus.COUNTER_APPROVED


def test_failed_counter_proposal_leaves_no_orphan(store, wf, monkeypatch):
    rec = _put(store, RequestStatus.SUBMITTED, urgency=ServiceUrgency.SCHEDULED)

    monkeypatch.setattr(store, "save_counter_proposal", _failing("proposal dir gone"))
    with pytest.raises(PersistenceError):
        wf.counter_propose(rec.id, "prov-1", "Rapid Tire Co", "2026-10-20", "09:00")
    monkeypatch.undo()

    assert store.get(rec.id).status == RequestStatus.SUBMITTED
    assert store.get(rec.id).assigned_provider_id is None
    assert wf.proposals(rec.id) == []
    # every provider still sees it
    assert [r.id for r in wf.list_actionable("prov-1")] == [rec.id]
    assert [r.id for r in wf.list_actionable("prov-2")] == [rec.id]
