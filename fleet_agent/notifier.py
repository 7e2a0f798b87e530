"""
Per-owner notification inbox.

Negotiation outcomes (accepted, rejected, counter-proposed, completed,
cancelled) land here for the fleet user who created the request. One JSONL
file per owner under <root>/; mark_read rewrites the file atomically.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import List, Optional

from dispatch_assistant import app_logger
from dispatch_assistant.request_state import Notification, NotificationKind, ServiceRequest


class Notifier:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, owner_id: str) -> Path:
        return self.root / f"{owner_id}.jsonl"

    def notify(
        self,
        owner_id: str,
        kind: NotificationKind,
        record: ServiceRequest,
        message: Optional[str] = None,
    ) -> Notification:
        note = Notification(
            owner_id=owner_id,
            kind=kind,
            service_request_id=record.id,
            message=message or f"Your service request is now {record.status.value}.",
        )
        with self._lock:
            with self._path(owner_id).open("a", encoding="utf-8") as f:
                f.write(json.dumps(note.model_dump(mode="json"), ensure_ascii=False) + "\n")
        app_logger.log_event("Notifier.SENT", {"kind": note.kind.value, "owner_id": owner_id},
                             request_id=record.id)
        return note

    def list(self, owner_id: str, *, unread_only: bool = False) -> List[Notification]:
        path = self._path(owner_id)
        if not path.exists():
            return []
        out: List[Notification] = []
        with path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                note = Notification.model_validate(json.loads(line))
                if unread_only and note.read:
                    continue
                out.append(note)
        return out

    def mark_read(self, owner_id: str, notification_ids: Optional[List[str]] = None) -> int:
        """Mark the given notifications (or all of them) read; returns how many changed."""
        with self._lock:
            notes = self.list(owner_id)
            changed = 0
            for note in notes:
                if note.read:
                    continue
                if notification_ids is None or note.id in notification_ids:
                    note.read = True
                    changed += 1
            if changed:
                path = self._path(owner_id)
                tmp = path.with_suffix(".jsonl.tmp")
                tmp.write_text(
                    "".join(json.dumps(n.model_dump(mode="json"), ensure_ascii=False) + "\n" for n in notes),
                    encoding="utf-8",
                )
                tmp.replace(path)
        return changed
