# tests/integrations/test_finalizer_persistence.py
"""
Work-order finalization against a real LocalStore.

What's covered
--------------
1) finalize is idempotent (second call reports already_submitted, no new write).
2) A store failure raises PersistenceError and keeps the caller's draft.
   A failed history write rolls the submission back; a retry repairs history.
3) Through the Coordinator, a failed save keeps the consent phase and a retry succeeds.
4) A render failure is reported on the result while the submission stands.
5) Concurrent turns on one conversation are rejected with TURN_IN_PROGRESS.
"""

import threading

import pytest

from dispatch_assistant.coordinator_agent import WORK_ORDER_READY, Coordinator
from dispatch_assistant.error_handler import PersistenceError
from dispatch_assistant.record_locks import RecordLocks
from dispatch_assistant.request_state import RequestStatus, ServiceRequest, merge_service_request
from dispatch_assistant.work_order import WorkOrderFinalizer


def _failing_upsert(message):
    def upsert(_record):
        raise OSError(message)
    return upsert


def _failing_history(message):
    def add_to_history(_user_id, _request_id):
        raise OSError(message)
    return add_to_history


@pytest.fixture()
def draft(tire_partial):
    base = ServiceRequest(created_by_id="fleet-user-1", driver_name="Marcus",
                          contact_phone="555-0100", fleet_name="Blue Line")
    return merge_service_request(base, tire_partial).record


def test_finalize_idempotent(store, draft):
    fin = WorkOrderFinalizer(store, render=False, locks=RecordLocks())
    first = fin.finalize(draft)
    assert first.record.status == RequestStatus.SUBMITTED
    assert draft.status == RequestStatus.DRAFT  # caller's copy untouched

    second = fin.finalize(draft)
    assert second.already_submitted is True
    assert second.record.submitted_at == first.record.submitted_at
    assert store.read_profile("fleet-user-1").service_requests == [draft.id]


def test_store_failure_keeps_draft(store, draft, monkeypatch):
    fin = WorkOrderFinalizer(store, render=False, locks=RecordLocks())
    monkeypatch.setattr(store, "upsert", _failing_upsert("read-only fs"))
    with pytest.raises(PersistenceError) as ei:
        fin.finalize(draft)
    assert ei.value.error["details"] == {"operation": "submit"}
    assert draft.status == RequestStatus.DRAFT
    assert store.get(draft.id) is None
    assert store.read_profile("fleet-user-1") is None


def test_history_failure_rolls_back_submission(store, draft, monkeypatch):
    fin = WorkOrderFinalizer(store, render=False, locks=RecordLocks())

    monkeypatch.setattr(store, "add_to_history", _failing_history("profile locked"))
    with pytest.raises(PersistenceError) as ei:
        fin.finalize(draft)
    assert ei.value.error["details"] == {"operation": "history"}
    assert store.get(draft.id) is None
    assert store.list(status=RequestStatus.SUBMITTED) == []

    monkeypatch.undo()
    res = fin.finalize(draft)
    assert res.already_submitted is False
    assert store.get(draft.id).status == RequestStatus.SUBMITTED
    assert store.read_profile("fleet-user-1").service_requests == [draft.id]


def test_history_failure_restores_stored_draft(store, draft, monkeypatch):
    store.upsert(draft)
    fin = WorkOrderFinalizer(store, render=False, locks=RecordLocks())
    monkeypatch.setattr(store, "add_to_history", _failing_history("nope"))
    with pytest.raises(PersistenceError):
        fin.finalize(draft)
    assert store.get(draft.id).status == RequestStatus.DRAFT


def test_retry_repairs_missing_history(store, draft):
    submitted = draft.model_copy(deep=True)
    submitted.status = RequestStatus.SUBMITTED
    store.upsert(submitted)
    assert store.read_profile("fleet-user-1") is None

    res = WorkOrderFinalizer(store, render=False, locks=RecordLocks()).finalize(draft)
    assert res.already_submitted is True
    assert store.read_profile("fleet-user-1").service_requests == [draft.id]


def test_render_failure_does_not_undo_submission(store, draft):
    class BrokenExporter:
        def write_work_order(self, record):
            raise ValueError("font missing")

    fin = WorkOrderFinalizer(store, BrokenExporter(), render=True, locks=RecordLocks())
    res = fin.finalize(draft)
    assert res.record.status == RequestStatus.SUBMITTED
    assert res.document_path is None
    assert res.document_error["code"] == "DOCUMENT_RENDER_FAILURE"
    assert store.get(draft.id).status == RequestStatus.SUBMITTED


def _consenting_coordinator(store, profile, scripted, tire_partial, locks):
    rest = {k: v for k, v in tire_partial.items() if k != "service_type"}
    model = scripted(chat=["Where?", "Checking."], extractions=[{"service_type": "TIRE"}, rest])
    coord = Coordinator(profile, finalizer=WorkOrderFinalizer(store, render=False, locks=locks),
                        invoke=model, locks=locks)
    coord.handle_turn("flat tire")
    coord.handle_turn("I-80 mile marker 142, left steer, replace it")
    coord.handle_turn("yes")
    return coord


def test_failed_save_keeps_consent_phase(store, profile, scripted, tire_partial, monkeypatch):
    coord = _consenting_coordinator(store, profile, scripted, tire_partial, RecordLocks())
    real_upsert = store.upsert
    monkeypatch.setattr(store, "upsert", _failing_upsert("disk full"))

    p = coord.handle_turn("yes please")
    assert p["ok"] is False
    assert p["phase"] == "awaiting_work_order_consent"
    assert p["error"]["code"] == "PERSISTENCE_FAILURE"
    assert p["reply"] == p["error"]["user_message"]
    assert coord.record.status == RequestStatus.DRAFT

    monkeypatch.setattr(store, "upsert", real_upsert)
    retry = coord.handle_turn("yes")
    assert retry["phase"] == "finalized"
    assert retry["reply"] == WORK_ORDER_READY


def test_concurrent_turn_rejected(store, profile, scripted):
    entered, release = threading.Event(), threading.Event()
    model = scripted(extractions=[{}])

    def slow_invoke(messages, **kw):
        if not kw.get("response_format"):
            entered.set()
            release.wait(5)
            return {"text": "Where are you?", "tokens": {"in": 1, "out": 1}, "model": "fake"}
        return model(messages, **kw)

    coord = Coordinator(profile, finalizer=WorkOrderFinalizer(store, render=False, locks=RecordLocks()),
                        invoke=slow_invoke, locks=RecordLocks())
    results = {}
    t = threading.Thread(target=lambda: results.setdefault("first", coord.handle_turn("flat tire")))
    t.start()
    assert entered.wait(5)

    busy = coord.handle_turn("hello?")
    release.set()
    t.join(5)

    assert busy["ok"] is False
    assert busy["error"]["code"] == "TURN_IN_PROGRESS"
    assert busy["result"]["applied_paths"] == []
    assert results["first"]["ok"] is True
    assert results["first"]["phase"] == "collecting"
    # the rejected utterance never reached the transcript
    assert "hello?" not in coord.record.conversation_transcript
