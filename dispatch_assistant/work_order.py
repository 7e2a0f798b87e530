"""
Project: Roadside Dispatch Assistant
File: work_order.py

Work order finalizer. Turns a validated draft into a submitted work order:

1) idempotency check (a record already past draft is never submitted twice),
2) submitted copy stamped with status=submitted and submitted_at,
3) record persisted, then added to the owner's history; any store failure
   raises PersistenceError and leaves the caller's draft untouched (a failed
   history write rolls the stored record back, and a retry repairs history),
4) work-order document rendered to the outbox (best effort; a render failure is
   reported on the result, the submission stands).

Once persisted as submitted, the record shows up in provider queues
(ProviderNegotiationWorkflow.list_actionable).

Methods & Classes
- WorkOrderResult
- class WorkOrderFinalizer: finalize(record, *, correlation_id=None) -> WorkOrderResult

Dependencies
- Internal: request_state, error_handler, app_logger, record_locks, config
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dispatch_assistant import app_logger, config
from dispatch_assistant.error_handler import (
    ErrorCode,
    ErrorOrigin,
    PersistenceError,
    make_error,
)
from dispatch_assistant.record_locks import RECORD_LOCKS, RecordLocks
from dispatch_assistant.request_state import RequestStatus, ServiceRequest, now_iso


@dataclass
class WorkOrderResult:
    record: ServiceRequest
    already_submitted: bool = False
    document_path: Optional[str] = None
    document_error: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.record.id,
            "status": self.record.status.value,
            "submitted_at": self.record.submitted_at,
            "already_submitted": self.already_submitted,
            "document_path": self.document_path,
            "document_error": self.document_error,
        }


class WorkOrderFinalizer:
    def __init__(self, store, exporter=None, *, render: Optional[bool] = None, locks: RecordLocks = RECORD_LOCKS) -> None:
        """
        Args:
            store: persistence collaborator (get / upsert / delete / add_to_history).
            exporter: document collaborator exposing write_work_order(record) -> path.
            render: render the PDF on submit (defaults to config.RENDER_PDF).
        """
        self.store = store
        self.exporter = exporter
        self.render = config.RENDER_PDF if render is None else bool(render)
        self.locks = locks

    def finalize(self, record: ServiceRequest, *, correlation_id: Optional[str] = None) -> WorkOrderResult:
        with self.locks.hold(record.id):
            stored = self.store.get(record.id)
            if record.status != RequestStatus.DRAFT or (stored and stored.status != RequestStatus.DRAFT):
                current = stored or record
                app_logger.log_event("WorkOrder.ALREADY_SUBMITTED", {"status": current.status.value},
                                     correlation_id=correlation_id, request_id=record.id)
                try:
                    self.store.add_to_history(current.created_by_id, current.id)
                except Exception as exc:
                    raise self._persist_failed(exc, "history", record.id, correlation_id) from exc
                return WorkOrderResult(record=current, already_submitted=True)

            submitted = record.model_copy(deep=True)
            submitted.status = RequestStatus.SUBMITTED
            submitted.submitted_at = now_iso()

            try:
                self.store.upsert(submitted)
            except Exception as exc:
                raise self._persist_failed(exc, "submit", record.id, correlation_id) from exc
            try:
                self.store.add_to_history(submitted.created_by_id, submitted.id)
            except Exception as exc:
                self._roll_back(stored, record.id, correlation_id)
                raise self._persist_failed(exc, "history", record.id, correlation_id) from exc

        result = WorkOrderResult(record=submitted)
        app_logger.log_event(
            "WorkOrder.SUBMITTED",
            {"urgency": submitted.urgency.value if submitted.urgency else None,
             "service_type": submitted.service_type.value if submitted.service_type else None},
            correlation_id=correlation_id,
            request_id=submitted.id,
        )

        if self.render and self.exporter is not None:
            try:
                result.document_path = self.exporter.write_work_order(submitted)
            except Exception as exc:
                result.document_error = make_error(
                    code=ErrorCode.DOCUMENT_RENDER_FAILURE,
                    origin=ErrorOrigin.IO,
                    retryable=True,
                    dev_message=f"{type(exc).__name__}: {exc}",
                    context={"request_id": submitted.id},
                    correlation_id=correlation_id,
                )
                app_logger.log_event("WorkOrder.RENDER_FAILED", result.document_error,
                                     request_id=submitted.id, level=logging.WARNING)
        return result

    def _roll_back(self, previous: Optional[ServiceRequest], request_id: str, correlation_id: Optional[str]) -> None:
        """Undo a submitted write whose follow-up failed: restore the previous copy, or drop the new one."""
        try:
            if previous is not None:
                self.store.upsert(previous)
            else:
                self.store.delete(request_id)
        except Exception as exc:
            app_logger.log_event("WorkOrder.ROLLBACK_FAILED", {"error": f"{type(exc).__name__}: {exc}"},
                                 correlation_id=correlation_id, request_id=request_id, level=logging.ERROR)

    @staticmethod
    def _persist_failed(exc: Exception, operation: str, request_id: str, correlation_id: Optional[str]) -> PersistenceError:
        err = make_error(
            code=ErrorCode.PERSISTENCE_FAILURE,
            origin=ErrorOrigin.IO,
            retryable=True,
            dev_message=f"{type(exc).__name__}: {exc}",
            details={"operation": operation},
            context={"request_id": request_id},
            correlation_id=correlation_id,
        )
        app_logger.log_error_event("WorkOrder.PERSIST_FAILED", err, request_id=request_id)
        return PersistenceError(err)
