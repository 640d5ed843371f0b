"""
Call Domain Models
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from enum import Enum
from uuid import UUID

# Epoch ms for 9999-12-31T23:59:59Z, the last instant datetime can represent
MAX_EVENT_TS_MS = 253_402_300_799_000


class CallEventKind(str, Enum):
    """Lifecycle event reported for a call"""
    STARTED = "started"
    ENDED = "ended"


class CompletionState(str, Enum):
    """Coarse post-hoc outcome of a finished call"""
    ABANDONED = "abandoned"
    PARTIAL = "partial"
    COMPLETED = "completed"


class CostSource(str, Enum):
    """Which input supplied the persisted cost_usd"""
    CLIENT = "CLIENT"
    PAYLOAD = "PAYLOAD"
    WEB_CALL_NO_METER = "WEB_CALL_NO_METER"


class CallEventErrorCode(str, Enum):
    """Machine-readable failure codes returned to the event source"""
    INVALID_JSON = "INVALID_JSON"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    UNAUTHORIZED = "UNAUTHORIZED"
    MISSING_VAPI_CALL_ID = "MISSING_VAPI_CALL_ID"
    RATE_LIMITED = "RATE_LIMITED_CALL_STARTS"
    DB_ERROR = "DB_ERROR"
    CALL_NOT_FOUND = "CALL_NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class CallEventMeta(BaseModel):
    """Client-side metadata attached to a call event"""
    model_config = ConfigDict(extra="allow")

    channel: Optional[str] = None


class CallEvent(BaseModel):
    """
    Lifecycle event posted by the web call client.

    Unknown top-level fields are kept so that platform payload
    fragments (e.g. message.cost) stay available to cost extraction.
    """
    model_config = ConfigDict(extra="allow")

    call_id: UUID
    vapi_call_id: Optional[str] = None
    event: CallEventKind
    ts: float = Field(..., ge=0, le=MAX_EVENT_TS_MS, allow_inf_nan=False)
    meta: Optional[CallEventMeta] = None
    duration_seconds: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    cost_usd: Optional[float] = Field(None, allow_inf_nan=False)


class CallAction(BaseModel):
    """Instruction for the caller, e.g. tear the call down"""
    type: str
    reason: str


class CallEventErrorBody(BaseModel):
    code: str
    details: Optional[Any] = None
    recoverable: Optional[bool] = None


class CallEventResponse(BaseModel):
    """Body of every /webcall/event response (always HTTP 200)"""
    ok: bool
    call_id: Optional[str] = None
    completion_state: Optional[CompletionState] = None
    debug: Optional[Dict[str, Any]] = None
    error: Optional[CallEventErrorBody] = None
    action: Optional[CallAction] = None


class CallEventError(Exception):
    """Rejection of a call event, rendered as {ok: false, error: {...}}"""

    def __init__(
        self,
        code: CallEventErrorCode,
        details: Optional[Any] = None,
        recoverable: Optional[bool] = None,
        action: Optional[CallAction] = None,
    ):
        super().__init__(code.value)
        self.code = code
        self.details = details
        self.recoverable = recoverable
        self.action = action

    def to_response(self) -> CallEventResponse:
        return CallEventResponse(
            ok=False,
            error=CallEventErrorBody(
                code=self.code.value,
                details=self.details,
                recoverable=self.recoverable,
            ),
            action=self.action,
        )


def validation_issues(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Reduce pydantic errors to JSON-safe {path, message, type} issues."""
    return [
        {
            "path": [str(p) for p in err.get("loc", ())],
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in errors
    ]
