"""Domain models"""

from .call import (
    CallEventKind,
    CompletionState,
    CostSource,
    CallEventErrorCode,
    CallEventMeta,
    CallEvent,
    CallAction,
    CallEventErrorBody,
    CallEventResponse,
    CallEventError,
    validation_issues,
)

__all__ = [
    "CallEventKind",
    "CompletionState",
    "CostSource",
    "CallEventErrorCode",
    "CallEventMeta",
    "CallEvent",
    "CallAction",
    "CallEventErrorBody",
    "CallEventResponse",
    "CallEventError",
    "validation_issues",
]
