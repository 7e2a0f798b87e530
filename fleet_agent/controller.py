#!/usr/bin/env python3
# fleet_agent/controller.py
from __future__ import annotations

"""
FleetChatAgent: thin, profile-first conversation host around the Coordinator.

Responsibilities
---------------
- Open a fleet user's session (load or create the FleetProfile via LocalStore).
- Run one user turn through Coordinator.handle_turn(user_text).
- Persist effects after each turn: profile (mood history, request history),
  turn-log line, and the record of a declined draft so it stays on file.
- Surface the user's notification inbox.

ProviderDesk: provider-side entry point used by the CLI: actionable queue,
active jobs, and the negotiation actions, each persisted by the workflow.

Non-responsibilities
--------------------
- No filesystem knowledge (paths/layout are entirely LocalStore's concern).
- No routing or phase logic (that lives in the Coordinator).

Public API (used by cli.py)
---------------------------
FleetChatAgent(store, *, exporter=None, notifier=None, invoke=None)

open(user_id, *, defaults=None) -> FleetProfile
set_user_name_from_reply(reply) -> str
handle(user_text) -> dict          # {"packet","reply"}
notifications(unread_only=False) -> list[Notification]
proposals() -> list[CounterProposal]  # pending proposals on the user's requests

ProviderDesk(store, *, notifier=None)
"""

from typing import Any, Callable, Dict, List, Optional

from dispatch_assistant import app_logger
from dispatch_assistant.coordinator_agent import Coordinator, ConversationPhase
from dispatch_assistant.extractor import extract_driver_name
from dispatch_assistant.negotiation import ProviderNegotiationWorkflow
from dispatch_assistant.request_state import (
    CounterProposal,
    FleetProfile,
    Notification,
    ServiceRequest,
)
from dispatch_assistant.work_order import WorkOrderFinalizer
from fleet_agent.exporter import Exporter
from fleet_agent.local_store import LocalStore
from fleet_agent.notifier import Notifier


class FleetChatAgent:
    def __init__(
        self,
        store: LocalStore,
        *,
        exporter: Optional[Exporter] = None,
        notifier: Optional[Notifier] = None,
        invoke: Optional[Callable[..., Dict[str, Any]]] = None,
        name_model=None,
    ) -> None:
        """
        Args:
            store: LocalStore instance.
            exporter: work-order PDF writer; defaults to one rooted at the store outbox.
            notifier: notification inbox; defaults to the store's notifications dir.
            invoke: chat-model callable passed through to the Coordinator.
            name_model: structured model for driver-name extraction (defaults to ModelFactory).
        """
        self.store = store
        self.exporter = exporter or Exporter(store.outbox_dir)
        self.notifier = notifier or Notifier(store.notifications_dir)
        self._invoke = invoke
        self._name_model = name_model

        self.profile: Optional[FleetProfile] = None
        self.coordinator: Optional[Coordinator] = None

    # ---------- Session management ----------

    def open(self, user_id: str, *, defaults: Optional[Dict[str, Any]] = None) -> FleetProfile:
        """
        Load the user's profile (creating it from `defaults` when absent) and
        construct a Coordinator for this session.
        """
        profile = self.store.read_profile(user_id)
        if profile is None:
            payload = dict(defaults or {})
            payload["user_id"] = user_id
            profile = FleetProfile.model_validate(payload)
            self.store.write_profile(profile)
        self.profile = profile
        self.coordinator = Coordinator(
            profile,
            finalizer=WorkOrderFinalizer(self.store, self.exporter),
            invoke=self._invoke,
        )
        app_logger.log_event("FleetChatAgent.OPENED", {"user_id": user_id, "history": len(profile.service_requests)})
        return profile

    def set_user_name_from_reply(self, reply: str) -> str:
        self._require_open()
        name = extract_driver_name(reply, model=self._name_model)
        self.profile.user_name = name
        self.store.write_profile(self.profile)
        return name

    # ---------- Turn handling ----------

    def handle(self, user_text: str) -> Dict[str, Any]:
        """
        Run a single user turn and persist effects.

        Returns:
            {"packet": <TurnPacket dict from Coordinator>, "reply": <string>}
        """
        self._require_open()
        pkt: Dict[str, Any] = self.coordinator.handle_turn(user_text)

        if pkt.get("phase") == ConversationPhase.DECLINED.value and self.coordinator.last_record is not None:
            # declined drafts stay on file so a work order can be requested later
            self.store.upsert(self.coordinator.last_record)

        self._sync_profile()
        self.store.append_turn_log(self.profile.user_id, pkt)
        return {"packet": pkt, "reply": pkt.get("reply", "")}

    def _sync_profile(self) -> None:
        # the finalizer appends to history in the store; keep the in-memory copy in step
        stored = self.store.read_profile(self.profile.user_id)
        if stored is not None:
            for rid in stored.service_requests:
                if rid not in self.profile.service_requests:
                    self.profile.service_requests.append(rid)
        self.store.write_profile(self.profile)

    # ---------- Inbox ----------

    def notifications(self, *, unread_only: bool = False) -> List[Notification]:
        self._require_open()
        return self.notifier.list(self.profile.user_id, unread_only=unread_only)

    def mark_notifications_read(self) -> int:
        self._require_open()
        return self.notifier.mark_read(self.profile.user_id)

    def requests(self) -> List[ServiceRequest]:
        self._require_open()
        return self.store.list(owner_id=self.profile.user_id)

    def proposals(self) -> List[CounterProposal]:
        """Pending counter-proposals on this user's requests."""
        self._require_open()
        wf = ProviderNegotiationWorkflow(self.store, self.notifier)
        out = []
        for rec in self.requests():
            prop = wf.pending_proposal(rec.id)
            if prop is not None:
                out.append(prop)
        return out

    def _require_open(self) -> None:
        if not self.coordinator or not self.profile:
            raise RuntimeError("FleetChatAgent is not open. Call open(user_id) first.")


class ProviderDesk:
    """Provider-side queue and actions; every action goes through ProviderNegotiationWorkflow."""

    def __init__(self, store: LocalStore, *, notifier: Optional[Notifier] = None) -> None:
        self.store = store
        self.notifier = notifier or Notifier(store.notifications_dir)
        self.workflow = ProviderNegotiationWorkflow(store, self.notifier)

    def queue(self, provider_id: str, urgency: Optional[str] = None) -> List[ServiceRequest]:
        return self.workflow.list_actionable(provider_id, urgency)

    def jobs(self, provider_id: str) -> List[ServiceRequest]:
        return self.workflow.list_active_jobs(provider_id)

    def watch(self, on_change: Callable[[ServiceRequest], None]) -> Callable[[], None]:
        """Subscribe to newly actionable records; returns an unsubscribe function."""
        actionable = {"submitted", "counter_rejected"}
        return self.store.subscribe(
            lambda rec: rec.status.value in actionable and not rec.assigned_provider_id,
            on_change,
        )
