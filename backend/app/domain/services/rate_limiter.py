"""
Call Start Rate Limiter
Bounds call-start attempts per org over a trailing window
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.core.observability import log_event
from app.domain.services.audit_log import AuditLogService

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    """Result of a rate limit check"""
    allowed: bool
    count: Optional[int]
    limit: int
    window_seconds: int
    reason: str


class CallStartRateLimiter:
    """
    Sliding-window limit on call starts, counted from audit_log probes.

    Every attempt inserts a probe entry, then the probes for the org in
    the trailing window are counted (the new probe included). The
    attempt is allowed while the count stays within ``max_starts``.

    On a probe or count failure the limiter fails open unless
    ``fail_open`` is False, in which case the attempt is denied.
    """

    def __init__(
        self,
        audit_log: AuditLogService,
        max_starts: int = 10,
        window_seconds: int = 600,
        action: str = "webcall.start_attempt",
        fail_open: bool = True,
        enabled: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.audit_log = audit_log
        self.max_starts = max_starts
        self.window_seconds = window_seconds
        self.action = action
        self.fail_open = fail_open
        self.enabled = enabled
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def check(
        self,
        org_id: str,
        call_id: str,
        actor_user_id: Optional[str] = None,
    ) -> RateLimitDecision:
        if not self.enabled:
            return self._decision(True, None, "disabled")

        try:
            self.audit_log.log_event(
                org_id=org_id,
                actor_user_id=actor_user_id,
                action=self.action,
                entity_type="call",
                entity_id=call_id,
            )
        except Exception as e:
            return self._on_failure(org_id, call_id, "probe_insert_failed", e)

        since = self._clock() - timedelta(seconds=self.window_seconds)
        try:
            count = self.audit_log.count_since(org_id, self.action, since)
        except Exception as e:
            return self._on_failure(org_id, call_id, "count_failed", e)

        if count > self.max_starts:
            logger.info(
                f"Call start rate limited: org={org_id} count={count} "
                f"limit={self.max_starts} window={self.window_seconds}s"
            )
            return self._decision(False, count, "limit_exceeded")

        return self._decision(True, count, "within_limit")

    def _on_failure(
        self,
        org_id: str,
        call_id: str,
        stage: str,
        error: Exception,
    ) -> RateLimitDecision:
        logger.warning(f"Rate limiter {stage} for org {org_id}: {error}")
        log_event(
            "[ABUSE][RATE_LIMIT_FAIL_OPEN]" if self.fail_open else "[ABUSE][RATE_LIMIT_FAIL_CLOSED]",
            stage="ABUSE",
            source="webcall_event",
            severity="warn",
            org_id=org_id,
            call_id=call_id,
            details={"stage": stage, "error": str(error)},
        )
        if self.fail_open:
            return self._decision(True, None, f"fail_open_{stage}")
        return self._decision(False, None, "limiter_unavailable")

    def _decision(self, allowed: bool, count: Optional[int], reason: str) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=allowed,
            count=count,
            limit=self.max_starts,
            window_seconds=self.window_seconds,
            reason=reason,
        )
