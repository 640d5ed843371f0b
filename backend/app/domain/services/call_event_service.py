"""
Call Event Service
Reconciles web call lifecycle events (started / ended) into the calls table

Every write is scoped by (org_id, vapi_call_id) and the upserts use
vapi_call_id as the conflict target, so duplicate or out-of-order
deliveries converge on a single row. An upsert never lands on a row
owned by another org.
"""
import logging
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import Client

from app.core.config import IngestionConfig
from app.core.observability import log_event
from app.domain.models.call import (
    CallAction,
    CallEvent,
    CallEventError,
    CallEventErrorCode,
    CallEventKind,
    CallEventResponse,
    CostSource,
)
from app.domain.services.audit_log import AuditLogService
from app.domain.services.completion_classifier import (
    CompletionThresholds,
    classify_completion,
)
from app.domain.services.cost_extractor import CostResolution, extract_cost, stored_cost
from app.domain.services.rate_limiter import CallStartRateLimiter

logger = logging.getLogger(__name__)

EVENT_SOURCE = "webcall_event"
CALL_COLUMNS = "id, org_id, vapi_call_id, started_at, ended_at, duration_seconds, cost_usd, raw_payload"


def ts_to_iso(ts_ms: float) -> str:
    """Epoch milliseconds -> ISO-8601 UTC"""
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat()


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def derive_duration(started_at: Any, ended_at: Any) -> Optional[int]:
    """Rounded seconds between two stored timestamps, if both parse."""
    start = _parse_timestamp(started_at)
    end = _parse_timestamp(ended_at)
    if start is None or end is None:
        return None
    return max(0, round((end - start).total_seconds()))


def merge_payload(base: Optional[Dict[str, Any]], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base"""
    merged = deepcopy(base) if isinstance(base, dict) else {}
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = merge_payload(merged[key], value)
        else:
            merged[key] = value
    return merged


def check_vapi_call_id(vapi_call_id: Optional[str], placeholder_prefix: str) -> str:
    """
    Reject missing provider ids and the legacy "<prefix><call_id>" shape.

    Raises:
        CallEventError: MISSING_VAPI_CALL_ID
    """
    value = (vapi_call_id or "").strip()
    if not value:
        raise CallEventError(
            CallEventErrorCode.MISSING_VAPI_CALL_ID,
            details="vapi_call_id is required",
            recoverable=False,
        )
    if placeholder_prefix and value.startswith(placeholder_prefix):
        raise CallEventError(
            CallEventErrorCode.MISSING_VAPI_CALL_ID,
            details=f"vapi_call_id must not start with '{placeholder_prefix}'",
            recoverable=False,
        )
    return value


class CallEventService:
    """
    Converges a call's persisted state for one lifecycle event.

    started: rate limit, resolve cost, upsert the row.
    ended:   find or stub the row, record end/cost, classify completion,
             write the terminal state (with a defensive upsert fallback).
    """

    def __init__(
        self,
        supabase: Client,
        config: IngestionConfig,
        rate_limiter: Optional[CallStartRateLimiter] = None,
    ):
        self.supabase = supabase
        self.config = config
        self.rate_limiter = rate_limiter or CallStartRateLimiter(
            AuditLogService(supabase),
            max_starts=config.rate_limit_max_starts,
            window_seconds=config.rate_limit_window_seconds,
            action=config.rate_limit_action,
            fail_open=config.rate_limit_fail_open,
            enabled=config.rate_limit_enabled,
        )
        self.thresholds = CompletionThresholds(
            min_engaged_seconds=config.min_engaged_seconds,
            partial_min_seconds=config.partial_min_seconds,
            long_call_seconds=config.long_call_seconds,
        )

    async def handle_event(
        self,
        event: CallEvent,
        org_id: str,
        actor_user_id: Optional[str] = None,
    ) -> CallEventResponse:
        """
        Apply one event.

        Raises:
            CallEventError: on any rejection; nothing is written for
                validation and rate limit rejections
        """
        vapi_call_id = check_vapi_call_id(event.vapi_call_id, self.config.placeholder_prefix)
        body = event.model_dump(mode="json", exclude_none=True)

        if event.event == CallEventKind.STARTED:
            return await self._handle_started(event, body, org_id, vapi_call_id, actor_user_id)
        return await self._handle_ended(event, body, org_id, vapi_call_id)

    # =========================================================================
    # started
    # =========================================================================

    async def _handle_started(
        self,
        event: CallEvent,
        body: Dict[str, Any],
        org_id: str,
        vapi_call_id: str,
        actor_user_id: Optional[str],
    ) -> CallEventResponse:
        call_id = str(event.call_id)
        started_at = ts_to_iso(event.ts)
        self._ensure_owned(org_id, call_id, vapi_call_id)

        decision = await self.rate_limiter.check(org_id, call_id, actor_user_id)
        if not decision.allowed:
            log_event(
                "[ABUSE][RATE_LIMITED]",
                stage="ABUSE",
                source=EVENT_SOURCE,
                severity="warn",
                org_id=org_id,
                call_id=call_id,
                vapi_call_id=vapi_call_id,
                details={
                    "count": decision.count,
                    "limit": decision.limit,
                    "window_seconds": decision.window_seconds,
                    "reason": decision.reason,
                },
            )
            raise CallEventError(
                CallEventErrorCode.RATE_LIMITED,
                details={
                    "limit": decision.limit,
                    "window_seconds": decision.window_seconds,
                    "reason": decision.reason,
                },
                recoverable=False,
                action=CallAction(type="END_CALL", reason="RATE_LIMITED"),
            )

        cost = self._resolve_cost(body, org_id, call_id, vapi_call_id)
        row = {
            "id": call_id,
            "vapi_call_id": vapi_call_id,
            "org_id": org_id,
            "call_type": self.config.call_type,
            "direction": self.config.direction,
            "started_at": started_at,
            "cost_usd": cost.cost_usd,
            "raw_payload": {
                "source": EVENT_SOURCE,
                "meta": body.get("meta") or {},
                "ts": event.ts,
                **cost.as_payload_tags(),
            },
        }

        try:
            response = self.supabase.table("calls").upsert(
                row, on_conflict="vapi_call_id"
            ).execute()
        except Exception as e:
            logger.warning(f"Failed to upsert call on started: call_id={call_id} vapi_call_id={vapi_call_id}: {e}")
            raise CallEventError(CallEventErrorCode.DB_ERROR, details=str(e), recoverable=True)

        stored = response.data[0] if response.data else row
        stored_id = str(stored.get("id") or call_id)

        log_event(
            "[CALL_START]",
            stage="CALL",
            source=EVENT_SOURCE,
            org_id=org_id,
            call_id=stored_id,
            vapi_call_id=vapi_call_id,
            details={"event": "started", "cost_source": cost.source.value},
        )

        return CallEventResponse(
            ok=True,
            call_id=stored_id,
            debug={"event": "started", "call_id": stored_id},
        )

    # =========================================================================
    # ended
    # =========================================================================

    async def _handle_ended(
        self,
        event: CallEvent,
        body: Dict[str, Any],
        org_id: str,
        vapi_call_id: str,
    ) -> CallEventResponse:
        ended_at = ts_to_iso(event.ts)
        existing = self._fetch_call(org_id, vapi_call_id)

        if existing is None:
            self._ensure_owned(org_id, str(event.call_id), vapi_call_id)
            existing = self._create_stub(event, body, org_id, vapi_call_id, ended_at)

        call_id = str(existing["id"])
        cost = self._resolve_cost(body, org_id, call_id, vapi_call_id, stored=existing)

        end_update: Dict[str, Any] = {"ended_at": ended_at, "cost_usd": cost.cost_usd}
        if event.duration_seconds is not None:
            end_update["duration_seconds"] = round(event.duration_seconds)

        try:
            self._scoped_update(org_id, vapi_call_id, end_update)
        except Exception as e:
            logger.warning(f"Failed to update call on ended: call_id={call_id}: {e}")
            raise CallEventError(CallEventErrorCode.DB_ERROR, details=str(e), recoverable=True)

        # Client duration wins; otherwise derive it from the stored start
        derived_duration = None
        if event.duration_seconds is not None:
            duration = event.duration_seconds
        else:
            derived_duration = derive_duration(existing.get("started_at"), ended_at)
            duration = derived_duration

        has_ticket = self._artifact_exists("tickets", org_id, call_id)
        has_appointment = self._artifact_exists("appointments", org_id, call_id)

        result = classify_completion(duration, has_ticket, has_appointment, self.thresholds)

        if result.corrected:
            log_event(
                "[CALL_COMPLETED][INVARIANT_CORRECTION]",
                stage="CALL",
                source=EVENT_SOURCE,
                org_id=org_id,
                call_id=call_id,
                vapi_call_id=vapi_call_id,
                details={
                    "from": result.corrected_from.value,
                    "to": result.state.value,
                    "reason": "NO_ARTIFACT",
                },
            )

        payload_update: Dict[str, Any] = {
            "meta": body.get("meta") or {},
            "ended_ts": event.ts,
            **cost.as_payload_tags(),
        }
        if result.duration_flag:
            payload_update["duration_flag"] = result.duration_flag
            log_event(
                "[CALL][DURATION_FLAG]",
                stage="CALL",
                source=EVENT_SOURCE,
                org_id=org_id,
                call_id=call_id,
                vapi_call_id=vapi_call_id,
                details={"duration_seconds": duration, "flag": result.duration_flag},
            )

        final_update: Dict[str, Any] = {
            "completion_state": result.state.value,
            "cost_usd": cost.cost_usd,
            "raw_payload": merge_payload(existing.get("raw_payload"), payload_update),
        }
        if derived_duration is not None:
            final_update["duration_seconds"] = derived_duration

        self._write_terminal_state(org_id, vapi_call_id, call_id, ended_at, final_update)

        log_event(
            "[CALL_COMPLETED]",
            stage="CALL",
            source=EVENT_SOURCE,
            org_id=org_id,
            call_id=call_id,
            vapi_call_id=vapi_call_id,
            details={
                "event": "ended",
                "completion_state": result.state.value,
                "duration_seconds": duration,
                "has_ticket": has_ticket,
                "has_appointment": has_appointment,
                "cost_usd": cost.cost_usd,
            },
        )

        return CallEventResponse(
            ok=True,
            call_id=call_id,
            completion_state=result.state,
            debug={"event": "ended", "call_id": call_id},
        )

    def _create_stub(
        self,
        event: CallEvent,
        body: Dict[str, Any],
        org_id: str,
        vapi_call_id: str,
        ended_at: str,
    ) -> Dict[str, Any]:
        """Insert a minimal row for an ended event that arrived first."""
        call_id = str(event.call_id)
        stub = {
            "id": call_id,
            "vapi_call_id": vapi_call_id,
            "org_id": org_id,
            "call_type": self.config.call_type,
            "direction": self.config.direction,
            "started_at": ended_at,
            "raw_payload": {
                "source": EVENT_SOURCE,
                "meta": body.get("meta") or {},
                "ts": event.ts,
                "event": "ended_stub",
            },
        }

        try:
            self.supabase.table("calls").upsert(stub, on_conflict="vapi_call_id").execute()
        except Exception as e:
            logger.warning(f"Failed to create stub on ended: call_id={call_id} vapi_call_id={vapi_call_id}: {e}")
            raise CallEventError(CallEventErrorCode.DB_ERROR, details=str(e), recoverable=True)

        log_event(
            "[CALL][STUB_CREATED]",
            stage="CALL",
            source=EVENT_SOURCE,
            org_id=org_id,
            call_id=call_id,
            vapi_call_id=vapi_call_id,
        )

        existing = self._fetch_call(org_id, vapi_call_id)
        if existing is None:
            raise CallEventError(CallEventErrorCode.CALL_NOT_FOUND, recoverable=True)
        return existing

    def _write_terminal_state(
        self,
        org_id: str,
        vapi_call_id: str,
        call_id: str,
        ended_at: str,
        final_update: Dict[str, Any],
    ) -> None:
        """Second-pass update; falls back to an upsert if it matched no row."""
        try:
            response = self._scoped_update(org_id, vapi_call_id, final_update)
            if response.data:
                return
            reason = "no_rows_updated"
        except Exception as e:
            reason = f"update_failed: {e}"

        log_event(
            "[CALL][FINAL_UPDATE_MISSED]",
            stage="CALL",
            source=EVENT_SOURCE,
            severity="warn",
            org_id=org_id,
            call_id=call_id,
            vapi_call_id=vapi_call_id,
            details={"reason": reason},
        )

        row = {
            "id": call_id,
            "vapi_call_id": vapi_call_id,
            "org_id": org_id,
            "call_type": self.config.call_type,
            "direction": self.config.direction,
            "ended_at": ended_at,
            **final_update,
        }
        self._ensure_owned(org_id, call_id, vapi_call_id)
        try:
            self.supabase.table("calls").upsert(row, on_conflict="vapi_call_id").execute()
        except Exception as e:
            logger.error(f"Defensive upsert failed for call {call_id}: {e}")
            raise CallEventError(CallEventErrorCode.DB_ERROR, details=str(e), recoverable=True)

    # =========================================================================
    # helpers
    # =========================================================================

    def _resolve_cost(
        self,
        body: Dict[str, Any],
        org_id: str,
        call_id: str,
        vapi_call_id: str,
        stored: Optional[Dict[str, Any]] = None,
    ) -> CostResolution:
        cost = extract_cost(body, self.config.cost_payload_paths)
        if cost.source == CostSource.WEB_CALL_NO_METER and stored:
            cost = stored_cost(stored) or cost
        log_event(
            "[COST][RESOLVED]",
            stage="COST",
            source=EVENT_SOURCE,
            org_id=org_id,
            call_id=call_id,
            vapi_call_id=vapi_call_id,
            details={"cost_usd": cost.cost_usd, "cost_source": cost.source.value, "cost_path": cost.path},
        )
        return cost

    def _ensure_owned(self, org_id: str, call_id: str, vapi_call_id: str) -> None:
        """
        Refuse to upsert over a provider call id held by another org.

        The upsert conflict target is vapi_call_id alone.
        """
        try:
            response = self.supabase.table("calls").select("id, org_id").eq(
                "vapi_call_id", vapi_call_id
            ).limit(1).execute()
        except Exception as e:
            logger.warning(f"Failed to check owner of call {vapi_call_id}: {e}")
            raise CallEventError(CallEventErrorCode.DB_ERROR, details=str(e), recoverable=True)

        owner = response.data[0].get("org_id") if response.data else None
        if owner is None or str(owner) == str(org_id):
            return

        log_event(
            "[ABUSE][FOREIGN_VAPI_CALL_ID]",
            stage="ABUSE",
            source=EVENT_SOURCE,
            severity="warn",
            org_id=org_id,
            call_id=call_id,
            vapi_call_id=vapi_call_id,
        )
        raise CallEventError(
            CallEventErrorCode.UNAUTHORIZED,
            details="vapi_call_id belongs to another organization",
            recoverable=False,
        )

    def _fetch_call(self, org_id: str, vapi_call_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.supabase.table("calls").select(CALL_COLUMNS).eq(
                "org_id", org_id
            ).eq("vapi_call_id", vapi_call_id).limit(1).execute()
        except Exception as e:
            logger.warning(f"Failed to fetch call {vapi_call_id}: {e}")
            raise CallEventError(CallEventErrorCode.DB_ERROR, details=str(e), recoverable=True)
        return response.data[0] if response.data else None

    def _scoped_update(self, org_id: str, vapi_call_id: str, update: Dict[str, Any]):
        return self.supabase.table("calls").update(update).eq(
            "org_id", org_id
        ).eq("vapi_call_id", vapi_call_id).execute()

    def _artifact_exists(self, table: str, org_id: str, call_id: str) -> bool:
        """Treats a failed lookup as no artifact; the invariant pass stays safe."""
        try:
            response = self.supabase.table(table).select("id").eq(
                "org_id", org_id
            ).eq("call_id", call_id).limit(1).execute()
            return bool(response.data)
        except Exception as e:
            logger.warning(f"Artifact lookup on {table} failed for call {call_id}: {e}")
            return False
