"""
Completion Classifier
Derives abandoned / partial / completed for a finished call
"""
from dataclasses import dataclass
from typing import Optional

from app.domain.models.call import CompletionState

LONG_CALL_FLAG = "long_call"


@dataclass(frozen=True)
class CompletionThresholds:
    """Duration thresholds in seconds"""
    min_engaged_seconds: float = 8
    partial_min_seconds: float = 15
    long_call_seconds: float = 480


@dataclass(frozen=True)
class ClassificationResult:
    """
    Outcome of one classification.

    ``corrected_from`` is set when the invariant pass had to lower the
    heuristic state; ``duration_flag`` is observe-only metadata.
    """
    state: CompletionState
    corrected_from: Optional[CompletionState] = None
    duration_flag: Optional[str] = None

    @property
    def corrected(self) -> bool:
        return self.corrected_from is not None


def heuristic_state(
    duration_seconds: Optional[float],
    has_artifact: bool,
    thresholds: CompletionThresholds,
) -> CompletionState:
    """Duration/artifact heuristic, before the invariant pass."""
    state = CompletionState.ABANDONED

    if duration_seconds is not None and duration_seconds > thresholds.min_engaged_seconds:
        if has_artifact:
            state = CompletionState.COMPLETED
        elif duration_seconds >= thresholds.partial_min_seconds:
            state = CompletionState.PARTIAL

    return state


def classify_completion(
    duration_seconds: Optional[float],
    has_ticket: bool,
    has_appointment: bool,
    thresholds: Optional[CompletionThresholds] = None,
) -> ClassificationResult:
    """
    Recompute the completion state from scratch.

    There is no prior state: the result depends only on the current
    duration and whether a ticket or appointment is linked to the call.
    A partial call without an artifact is lowered to abandoned.
    """
    thresholds = thresholds or CompletionThresholds()
    has_artifact = has_ticket or has_appointment

    state = heuristic_state(duration_seconds, has_artifact, thresholds)

    corrected_from = None
    if state == CompletionState.PARTIAL and not has_artifact:
        corrected_from = state
        state = CompletionState.ABANDONED

    duration_flag = None
    if duration_seconds is not None and duration_seconds >= thresholds.long_call_seconds:
        duration_flag = LONG_CALL_FLAG

    return ClassificationResult(
        state=state,
        corrected_from=corrected_from,
        duration_flag=duration_flag,
    )
