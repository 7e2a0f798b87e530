# tests/integrations/test_exporter_pdf.py
import pytest

from dispatch_assistant.request_state import RequestStatus, ServiceRequest, merge_service_request
from dispatch_assistant.work_order import WorkOrderFinalizer
from dispatch_assistant.record_locks import RecordLocks
from fleet_agent.exporter import URGENCY_BANNERS, Exporter


@pytest.fixture()
def record(tire_partial):
    base = ServiceRequest(created_by_id="fleet-user-1", driver_name="Marcus <Mack> & Co",
                          contact_phone="555-0100", fleet_name="Blue Line")
    rec = merge_service_request(base, tire_partial).record
    rec.append_exchange("flat tire on I-80", "Where exactly are you?")
    return rec


def test_render_returns_pdf_bytes(tmp_path, record):
    data = Exporter(tmp_path / "outbox").render_work_order(record)
    assert data.startswith(b"%PDF")
    assert len(data) > 1000


def test_mechanical_scheduled_renders(tmp_path):
    rec = merge_service_request(ServiceRequest(created_by_id="u"), {
        "service_type": "MECHANICAL",
        "urgency": "SCHEDULED",
        "mechanical_info": {"requested_service": "PM service", "description": "due for 90-day PM"},
        "scheduled_appointment": {"scheduled_date": "2026-10-22", "scheduled_time": "09:00"},
    }).record
    assert Exporter(tmp_path).render_work_order(rec).startswith(b"%PDF")


def test_write_goes_to_request_dir(tmp_path, record):
    path = Exporter(tmp_path / "outbox").write_work_order(record)
    assert path.startswith(str(tmp_path / "outbox" / record.id))
    assert path.endswith(".pdf")
    with open(path, "rb") as f:
        assert f.read(4) == b"%PDF"


def test_every_urgency_has_a_banner():
    assert {k.value for k in URGENCY_BANNERS} == {"ERS", "DELAYED", "SCHEDULED"}


def test_finalizer_writes_document(store, record):
    fin = WorkOrderFinalizer(store, Exporter(store.outbox_dir), render=True, locks=RecordLocks())
    res = fin.finalize(record)
    assert res.record.status == RequestStatus.SUBMITTED
    assert res.document_error is None
    assert res.document_path and res.document_path.endswith(".pdf")
