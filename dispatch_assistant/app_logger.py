# dispatch_assistant/app_logger.py
from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

# Keep the JSON lines small, stable, and machine-friendly
def _json_dumps(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)

class _JsonlFormatter(logging.Formatter):
    """
    JSONL formatter with UTC timestamps and a tiny set of stable top-level fields.
    """
    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        base = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%SZ"),
            "lvl": record.levelname,
            "event": getattr(record, "event", None),
            "cid": getattr(record, "correlation_id", None),
            "request_id": getattr(record, "request_id", None),
            "msg": record.getMessage() or None,
        }
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict) and payload:
            base["payload"] = payload
        # Routing hints (optional)
        for k in ("task", "phase"):
            v = getattr(record, k, None)
            if v is not None:
                base[k] = v
        return _json_dumps(base)

_configured = False
_logger: Optional[logging.Logger] = None

def configure(
    *,
    root_dir: str | Path = "logs",
    filename: str = "app.jsonl",
    level: str | int | None = None,
    to_stdout: bool = True,
) -> None:
    """
    Global, one-time logger configuration.
    - Writes newline-delimited JSON to logs/app.jsonl (by default).
    - Also mirrors to stdout (INFO+), unless disabled.

    Env overrides:
      LOG_DIR, LOG_FILE, LOG_LEVEL
    """
    global _configured, _logger
    if _configured:
        return

    log_dir = Path(os.getenv("LOG_DIR", str(root_dir)))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / os.getenv("LOG_FILE", filename)

    lvl = level or os.getenv("LOG_LEVEL", "INFO")
    if isinstance(lvl, str):
        lvl = getattr(logging, lvl.upper(), logging.INFO)

    logger = logging.getLogger("dispatch")
    logger.setLevel(lvl)
    logger.propagate = False

    fmt = _JsonlFormatter()

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(lvl)
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    if to_stdout:
        sh = logging.StreamHandler()
        sh.setLevel(logging.INFO)
        sh.setFormatter(fmt)
        logger.addHandler(sh)

    _logger = logger
    _configured = True

def reset() -> None:
    """Close handlers and forget configuration (tests re-point LOG_DIR between sessions)."""
    global _configured, _logger
    if _logger is not None:
        for h in list(_logger.handlers):
            h.close()
            _logger.removeHandler(h)
    _logger = None
    _configured = False

def get() -> logging.Logger:
    """Return the singleton dispatch logger (auto-configure with defaults if needed)."""
    if not _configured:
        configure()
    return _logger  # type: ignore[return-value]

# ------------------------- Convenience entry points -------------------------

def log_event(
    event: str,
    payload: Dict[str, Any],
    *,
    correlation_id: Optional[str] = None,
    request_id: Optional[str] = None,
    level: int = logging.INFO,
    task: Optional[str] = None,
    phase: Optional[str] = None,
) -> None:
    """
    Generic structured event logger.
    Writes one JSON line with minimal stable keys + your payload.
    """
    get().log(
        level,
        event,
        extra={
            "event": event,
            "payload": payload,
            "correlation_id": correlation_id,
            "request_id": request_id,
            "task": task,
            "phase": phase,
        },
    )

def log_turn_packet(packet: Dict[str, Any], *, request_id: Optional[str] = None) -> None:
    """
    Log a Coordinator TurnPacket exactly once per turn.
    """
    result = packet.get("result") or {}
    log_event(
        "TURN",
        packet,
        correlation_id=packet.get("correlation_id"),
        request_id=request_id or result.get("request_id"),
        level=logging.INFO if packet.get("ok") else logging.WARNING,
        task=packet.get("task"),
        phase=packet.get("phase"),
    )

def log_error_event(
    event: str,
    error_obj: Dict[str, Any],
    *,
    correlation_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> None:
    """
    Error-line helper that mirrors the error_handler envelope.
    """
    log_event(
        event,
        error_obj,
        correlation_id=correlation_id or error_obj.get("correlation_id"),
        request_id=request_id,
        level=logging.ERROR,
    )

# ------------------------- Component-focused helpers -------------------------

def log_coordinator_event(
    event: str,
    payload: Dict[str, Any],
    *,
    correlation_id: Optional[str] = None,
    request_id: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """Produces an 'event' like 'Coordinator.PHASE_CHANGED'."""
    log_event(f"Coordinator.{event}", payload, correlation_id=correlation_id, request_id=request_id, level=level)

def log_negotiation_event(
    event: str,
    payload: Dict[str, Any],
    *,
    request_id: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """Produces an 'event' like 'Negotiation.ACCEPTED'."""
    log_event(f"Negotiation.{event}", payload, request_id=request_id, level=level)
