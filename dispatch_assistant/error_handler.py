# dispatch_assistant/error_handler.py
"""
Unified, actionable error envelope for the roadside dispatch assistant.

One stable "error object" shape travels in the Coordinator TurnPacket at
packet["error"] (or None when no error), and inside the exceptions raised by
the negotiation workflow and the work-order finalizer.

Error object contract (MUST NOT BREAK):
---------------------------------------
{
  "code": <ENUM>,              # stable, app-specific
  "origin": <str>,             # "router" | "chat" | "extractor" | "merge" | "orchestrator" | "negotiation" | "io" | "unknown"
  "retryable": <bool>,         # can the user simply try again?
  "user_message": <str>,       # short, user-safe message (rendered verbatim)
  "next_actions": <list[str]>, # 1–3 verbs the host maps to quick replies
  "dev_message": <str|None>,   # terse technical reason, safe to log
  "details": <dict>,           # diagnostics (exception type, model, statuses…)
  "context": <dict>,           # e.g., {"phase":"collecting","request_id":"..."}
  "timestamp": <iso-utc>,
  "correlation_id": <str>
}

Usage:
------
err = make_error(
    code=ErrorCode.MODEL_CALL_FAILURE,
    origin=ErrorOrigin.CHAT,
    retryable=True,
    dev_message=str(exc),
    context={"phase": phase.value},
    correlation_id=turn_id,
)

raise IllegalTransitionError(make_error(code=ErrorCode.ILLEGAL_TRANSITION, ...))
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from datetime import datetime, timezone
import uuid


# ----------------------------- Enums & constants -----------------------------

class ErrorCode(str, Enum):
    MODEL_CALL_FAILURE = "MODEL_CALL_FAILURE"
    EXTRACTOR_FAILURE = "EXTRACTOR_FAILURE"
    TURN_IN_PROGRESS = "TURN_IN_PROGRESS"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    DOCUMENT_RENDER_FAILURE = "DOCUMENT_RENDER_FAILURE"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ErrorOrigin(str, Enum):
    ROUTER = "router"
    CHAT = "chat"
    EXTRACTOR = "extractor"
    MERGE = "merge"
    ORCHESTRATOR = "orchestrator"
    NEGOTIATION = "negotiation"
    IO = "io"
    UNKNOWN = "unknown"


class NextAction(str, Enum):
    TRY_AGAIN = "TRY_AGAIN"
    TRY_REPHRASE = "TRY_REPHRASE"
    WAIT_FOR_REPLY = "WAIT_FOR_REPLY"
    REFRESH = "REFRESH"
    CONTACT_DISPATCH = "CONTACT_DISPATCH"
    RETRY_LATER = "RETRY_LATER"


APOLOGY_MESSAGE = "Sorry, I'm having some trouble right now. Please try again."

_DEFAULT_USER_MESSAGES: Mapping[ErrorCode, str] = {
    ErrorCode.MODEL_CALL_FAILURE: APOLOGY_MESSAGE,
    ErrorCode.EXTRACTOR_FAILURE: "I couldn't pick out the details from that. Could you say it another way?",
    ErrorCode.TURN_IN_PROGRESS: "Hang on, I'm still working on your last message.",
    ErrorCode.ILLEGAL_TRANSITION: "That action isn't available for this work order anymore.",
    ErrorCode.PERSISTENCE_FAILURE: "I couldn't save your work order just now. Say yes again to retry.",
    ErrorCode.DOCUMENT_RENDER_FAILURE: "Your work order was submitted, but the document isn't ready yet.",
    ErrorCode.NOT_FOUND: "I couldn't find that work order.",
    ErrorCode.UNKNOWN_ERROR: "Something went wrong. Please try again.",
}

_DEFAULT_ACTIONS: Mapping[ErrorCode, Tuple[NextAction, ...]] = {
    ErrorCode.MODEL_CALL_FAILURE: (NextAction.TRY_AGAIN,),
    ErrorCode.EXTRACTOR_FAILURE: (NextAction.TRY_REPHRASE,),
    ErrorCode.TURN_IN_PROGRESS: (NextAction.WAIT_FOR_REPLY,),
    ErrorCode.ILLEGAL_TRANSITION: (NextAction.REFRESH,),
    ErrorCode.PERSISTENCE_FAILURE: (NextAction.TRY_AGAIN, NextAction.RETRY_LATER),
    ErrorCode.DOCUMENT_RENDER_FAILURE: (NextAction.RETRY_LATER,),
    ErrorCode.NOT_FOUND: (NextAction.REFRESH,),
    ErrorCode.UNKNOWN_ERROR: (NextAction.TRY_AGAIN, NextAction.CONTACT_DISPATCH),
}


# ----------------------------- Utility helpers ------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_correlation_id(prefix: str = "turn") -> str:
    """Build a correlation id that can be grepped across turn and negotiation logs."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _ensure_actions(values: Optional[Sequence[Union[str, NextAction]]]) -> List[str]:
    if not values:
        return []
    out: List[str] = []
    for v in values:
        s = v.value if isinstance(v, NextAction) else str(v)
        if s and s not in out:
            out.append(s)
    return out[:3]


# ------------------------------- Main factory --------------------------------

def make_error(
    *,
    code: Union[ErrorCode, str],
    origin: Union[ErrorOrigin, str] = ErrorOrigin.UNKNOWN,
    retryable: bool,
    user_message: Optional[str] = None,
    next_actions: Optional[Sequence[Union[str, NextAction]]] = None,
    dev_message: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
    correlation_id: Optional[str] = None,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Construct a fully-formed error object (dict) consistent with the app-wide contract.

    `user_message` and `next_actions` default from the `code`. Unknown codes or
    origins collapse to UNKNOWN_ERROR / "unknown".
    """
    try:
        code_enum = ErrorCode(code)
    except ValueError:
        code_enum = ErrorCode.UNKNOWN_ERROR

    try:
        origin_enum = ErrorOrigin(origin)
    except ValueError:
        origin_enum = ErrorOrigin.UNKNOWN

    msg = (user_message or _DEFAULT_USER_MESSAGES.get(code_enum) or _DEFAULT_USER_MESSAGES[ErrorCode.UNKNOWN_ERROR]).strip()
    actions = _ensure_actions(next_actions) or list(_DEFAULT_ACTIONS.get(code_enum, (NextAction.TRY_AGAIN,)))

    return {
        "code": code_enum.value,
        "origin": origin_enum.value,
        "retryable": bool(retryable),
        "user_message": msg,
        "next_actions": actions,
        "dev_message": (dev_message or None),
        "details": dict(details or {}),
        "context": dict(context or {}),
        "timestamp": now or _now_iso(),
        "correlation_id": correlation_id or new_correlation_id(),
    }


# --------------------------------- Exceptions ---------------------------------

class DispatchError(RuntimeError):
    """Base exception carrying an error envelope in `.error`."""

    def __init__(self, error: Dict[str, Any]):
        super().__init__(error.get("dev_message") or error.get("user_message"))
        self.error = error

    @property
    def code(self) -> str:
        return self.error.get("code", ErrorCode.UNKNOWN_ERROR.value)


class IllegalTransitionError(DispatchError):
    pass


class PersistenceError(DispatchError):
    pass


class RecordNotFoundError(DispatchError):
    pass


def illegal_transition(
    *,
    origin: Union[ErrorOrigin, str],
    action: str,
    current: str,
    allowed: Sequence[str],
    request_id: Optional[str] = None,
) -> IllegalTransitionError:
    """Build (not raise) an IllegalTransitionError for a status/phase gate."""
    return IllegalTransitionError(
        make_error(
            code=ErrorCode.ILLEGAL_TRANSITION,
            origin=origin,
            retryable=False,
            dev_message=f"{action} not allowed from {current}",
            details={"action": action, "current": current, "allowed": list(allowed)},
            context={"request_id": request_id} if request_id else None,
        )
    )


# ------------------------------- Introspection --------------------------------

def summarize_for_log(error_obj: Optional[Mapping[str, Any]]) -> str:
    """Produce a compact single-line summary suitable for log lines and CLI output."""
    if not error_obj:
        return ""
    code = error_obj.get("code", "UNKNOWN")
    origin = error_obj.get("origin", "unknown")
    retryable = error_obj.get("retryable", False)
    cid = error_obj.get("correlation_id", "")
    return f"{code} origin={origin} retryable={retryable} cid={cid}"
