"""
Web Call Event Endpoint
Receives started / ended lifecycle events from the web call client

Always answers HTTP 200. Failures are reported in the body as
{ok: false, error: {code, ...}} so the event source never retries on
transport-level status codes.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from supabase import Client

from app.api.v1.dependencies import get_supabase, get_optional_user, CurrentUser
from app.core.config import IngestionConfig, get_ingestion_config
from app.domain.models.call import (
    CallEvent,
    CallEventError,
    CallEventErrorCode,
    CallEventResponse,
    validation_issues,
)
from app.domain.services.call_event_service import CallEventService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webcall", tags=["webcall"])


def _respond(payload: CallEventResponse) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content=payload.model_dump(mode="json", exclude_none=True),
    )


def _reject(code: CallEventErrorCode, **kwargs) -> JSONResponse:
    return _respond(CallEventError(code, **kwargs).to_response())


@router.post("/event")
async def webcall_event(
    request: Request,
    current_user: Optional[CurrentUser] = Depends(get_optional_user),
    supabase: Client = Depends(get_supabase),
    config: IngestionConfig = Depends(get_ingestion_config),
):
    """
    Handle a web call lifecycle event.

    Checks run in order and short-circuit before any write:
    session org, JSON body, schema, provider call id.
    """
    try:
        if current_user is None or not current_user.org_id:
            return _reject(CallEventErrorCode.UNAUTHORIZED, recoverable=False)

        try:
            body = json.loads(await request.body())
        except (ValueError, UnicodeDecodeError):
            return _reject(CallEventErrorCode.INVALID_JSON)

        if not isinstance(body, dict):
            return _reject(CallEventErrorCode.INVALID_JSON)

        try:
            event = CallEvent.model_validate(body)
        except ValidationError as e:
            return _reject(
                CallEventErrorCode.VALIDATION_FAILED,
                details=validation_issues(e.errors()),
            )

        service = CallEventService(supabase, config)
        result = await service.handle_event(
            event,
            org_id=current_user.org_id,
            actor_user_id=current_user.id,
        )
        return _respond(result)

    except CallEventError as e:
        return _respond(e.to_response())
    except Exception as e:
        logger.error(f"Error in webcall_event: {e}", exc_info=True)
        return _reject(CallEventErrorCode.INTERNAL_ERROR)


@router.get("/event")
async def webcall_event_health():
    """Liveness probe for the event route"""
    return {"ok": True, "route": "webcall/event"}
