# fleet_agent/local_store.py
from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from dispatch_assistant.request_state import (
    CounterProposal,
    FleetProfile,
    RequestStatus,
    ServiceRequest,
)

ChangeFilter = Callable[[ServiceRequest], bool]
ChangeCallback = Callable[[ServiceRequest], None]


@dataclass(frozen=True)
class _Paths:
    root: Path

    @property
    def requests_dir(self) -> Path:
        return self.root / "requests"

    @property
    def proposals_dir(self) -> Path:
        return self.root / "proposals"

    @property
    def profiles_dir(self) -> Path:
        return self.root / "profiles"

    @property
    def turn_logs_dir(self) -> Path:
        return self.root / "turn_logs"

    @property
    def outbox_dir(self) -> Path:
        return self.root / "outbox"

    @property
    def notifications_dir(self) -> Path:
        return self.root / "notifications"

    def request_json(self, request_id: str) -> Path:
        return self.requests_dir / f"{request_id}.json"

    def proposal_json(self, proposal_id: str) -> Path:
        return self.proposals_dir / f"{proposal_id}.json"

    def profile_json(self, user_id: str) -> Path:
        return self.profiles_dir / f"{user_id}.json"

    def turn_log_jsonl(self, user_id: str) -> Path:
        return self.turn_logs_dir / f"{user_id}.jsonl"


class LocalStore:
    """
    Local, record-first storage for the dispatch assistant.

    PUBLIC API:
    -----------
      list(owner_id=None, status=None) -> List[ServiceRequest]   (newest first)
      get(request_id) -> ServiceRequest | None
      upsert(record) -> None                                     (notifies subscribers)
      delete(request_id) -> bool

      save_counter_proposal(proposal) -> None
      get_counter_proposal(proposal_id) -> CounterProposal | None
      list_counter_proposals(request_id) -> List[CounterProposal] (oldest first)

      read_profile(user_id) -> FleetProfile | None
      write_profile(profile) -> None
      add_to_history(user_id, request_id) -> None                (idempotent)

      subscribe(filter, on_change) -> unsubscribe()
      append_turn_log(user_id, packet) -> None
      outbox_dir -> Path

    INTERNALS:
      - On-disk layout is private to LocalStore.
      - Every record/proposal/profile is one JSON file written atomically (tmp + replace).
    """

    def __init__(self, root: str | Path = "local_store") -> None:
        self.root = Path(root)
        self._p = _Paths(root=self.root)
        for d in (self._p.requests_dir, self._p.proposals_dir, self._p.profiles_dir,
                  self._p.turn_logs_dir, self._p.outbox_dir, self._p.notifications_dir):
            d.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._subscribers: Dict[int, tuple[ChangeFilter, ChangeCallback]] = {}
        self._next_sub = 0

    @property
    def outbox_dir(self) -> Path:
        return self._p.outbox_dir

    @property
    def notifications_dir(self) -> Path:
        return self._p.notifications_dir

    # ------------------------------- helpers ---------------------------------

    @staticmethod
    def _read_json(path: Path) -> Dict[str, Any]:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Expected object in {path}, got {type(data)}")
        return data

    @staticmethod
    def _write_json_atomic(path: Path, obj: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(obj, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)

    @staticmethod
    def _append_jsonl(path: Path, obj: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False) + "\n")

    # ---------------------------- service requests -----------------------------

    def get(self, request_id: str) -> Optional[ServiceRequest]:
        path = self._p.request_json(request_id)
        if not path.exists():
            return None
        return ServiceRequest.model_validate(self._read_json(path))

    def list(self, owner_id: Optional[str] = None, status: Optional[RequestStatus | str] = None) -> List[ServiceRequest]:
        want = RequestStatus(status) if status else None
        out: List[ServiceRequest] = []
        for path in self._p.requests_dir.glob("*.json"):
            rec = ServiceRequest.model_validate(self._read_json(path))
            if owner_id and rec.created_by_id != owner_id:
                continue
            if want and rec.status != want:
                continue
            out.append(rec)
        out.sort(key=lambda r: r.timestamp, reverse=True)
        return out

    def upsert(self, record: ServiceRequest) -> None:
        with self._write_lock:
            self._write_json_atomic(self._p.request_json(record.id), record.model_dump(mode="json"))
            subscribers = list(self._subscribers.values())
        for flt, on_change in subscribers:
            if flt(record):
                on_change(record)

    def delete(self, request_id: str) -> bool:
        """Remove a record file; subscribers are not notified. Returns False when it was not there."""
        with self._write_lock:
            path = self._p.request_json(request_id)
            if not path.exists():
                return False
            path.unlink()
            return True

    def subscribe(self, flt: ChangeFilter, on_change: ChangeCallback) -> Callable[[], None]:
        """Register a change callback; returns a function that removes it."""
        with self._write_lock:
            key = self._next_sub
            self._next_sub += 1
            self._subscribers[key] = (flt, on_change)

        def unsubscribe() -> None:
            with self._write_lock:
                self._subscribers.pop(key, None)

        return unsubscribe

    # ---------------------------- counter-proposals -----------------------------

    def save_counter_proposal(self, proposal: CounterProposal) -> None:
        with self._write_lock:
            self._write_json_atomic(self._p.proposal_json(proposal.id), proposal.model_dump(mode="json"))

    def get_counter_proposal(self, proposal_id: str) -> Optional[CounterProposal]:
        path = self._p.proposal_json(proposal_id)
        if not path.exists():
            return None
        return CounterProposal.model_validate(self._read_json(path))

    def list_counter_proposals(self, request_id: str) -> List[CounterProposal]:
        out = []
        for path in self._p.proposals_dir.glob("*.json"):
            prop = CounterProposal.model_validate(self._read_json(path))
            if prop.service_request_id == request_id:
                out.append(prop)
        out.sort(key=lambda p: p.created_at)
        return out

    # --------------------------------- profiles ---------------------------------

    def read_profile(self, user_id: str) -> Optional[FleetProfile]:
        path = self._p.profile_json(user_id)
        if not path.exists():
            return None
        raw = self._read_json(path)
        return FleetProfile.model_validate(raw.get("profile", raw))

    def write_profile(self, profile: FleetProfile) -> None:
        with self._write_lock:
            self._write_json_atomic(self._p.profile_json(profile.user_id), {"profile": profile.model_dump(mode="json")})

    def add_to_history(self, user_id: str, request_id: str) -> None:
        profile = self.read_profile(user_id) or FleetProfile(user_id=user_id)
        if request_id in profile.service_requests:
            return
        profile.service_requests.append(request_id)
        self.write_profile(profile)

    # -------------------------------- turn logs ---------------------------------

    def append_turn_log(self, user_id: str, packet: Dict[str, Any]) -> None:
        pkt = dict(packet)
        pkt.setdefault("timestamp", time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()))
        self._append_jsonl(self._p.turn_log_jsonl(user_id), pkt)

    def read_turn_log(self, user_id: str) -> List[Dict[str, Any]]:
        path = self._p.turn_log_jsonl(user_id)
        if not path.exists():
            return []
        out = []
        with path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    out.append(json.loads(line))
        return out
