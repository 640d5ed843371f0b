"""
Call History Endpoints
Provides paginated call list and individual call details for the dashboard
"""
from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel
from typing import List, Optional
from supabase import Client

from app.api.v1.dependencies import get_supabase, require_org_member, CurrentUser
from app.domain.models.call import CompletionState
from app.utils.tenant_filter import apply_tenant_filter, verify_tenant_access

router = APIRouter(prefix="/calls", tags=["calls"])

LIST_COLUMNS = (
    "id, vapi_call_id, call_type, direction, started_at, ended_at, "
    "duration_seconds, cost_usd, completion_state"
)


class CallListItem(BaseModel):
    """Call list item (summary)"""
    id: str
    vapi_call_id: Optional[str] = None
    call_type: Optional[str] = None
    direction: Optional[str] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    duration_seconds: Optional[int] = None
    cost_usd: Optional[float] = None
    completion_state: Optional[str] = None


class CallDetail(CallListItem):
    """Full call details"""
    outcome: Optional[str] = None
    raw_payload: Optional[dict] = None
    has_ticket: bool = False
    has_appointment: bool = False


class CallListResponse(BaseModel):
    """Paginated call list response"""
    items: List[CallListItem]
    page: int
    page_size: int
    total: int


@router.get("/", response_model=CallListResponse)
async def list_calls(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    completion_state: Optional[CompletionState] = Query(None, description="Filter by completion state"),
    from_date: Optional[str] = Query(None, alias="from", description="Start date (YYYY-MM-DD)"),
    to_date: Optional[str] = Query(None, alias="to", description="End date (YYYY-MM-DD)"),
    current_user: CurrentUser = Depends(require_org_member),
    supabase: Client = Depends(get_supabase)
):
    """
    Get paginated list of the organization's calls, newest first.

    Query params:
        - page: Page number (1-indexed)
        - page_size: Items per page (max 100)
        - completion_state: abandoned / partial / completed
        - from: Start date filter
        - to: End date filter
    """
    try:
        query = supabase.table("calls").select(LIST_COLUMNS, count="exact")
        query = apply_tenant_filter(query, current_user.org_id)

        if completion_state:
            query = query.eq("completion_state", completion_state.value)

        if from_date:
            query = query.gte("started_at", from_date)

        if to_date:
            query = query.lte("started_at", to_date + "T23:59:59Z")

        offset = (page - 1) * page_size
        response = query.order("started_at", desc=True).range(offset, offset + page_size - 1).execute()

        items = [CallListItem(**{k: call.get(k) for k in CallListItem.model_fields}) for call in response.data or []]

        return CallListResponse(
            items=items,
            page=page,
            page_size=page_size,
            total=response.count or 0
        )

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch calls: {str(e)}"
        )


@router.get("/{call_id}", response_model=CallDetail)
async def get_call(
    call_id: str,
    current_user: CurrentUser = Depends(require_org_member),
    supabase: Client = Depends(get_supabase)
):
    """
    Get individual call details with linked artifact flags.
    """
    if not verify_tenant_access(supabase, "calls", call_id, current_user.org_id):
        raise HTTPException(status_code=404, detail="Call not found")

    try:
        call_response = supabase.table("calls").select("*").eq(
            "id", call_id
        ).eq("org_id", current_user.org_id).limit(1).execute()

        if not call_response.data:
            raise HTTPException(status_code=404, detail="Call not found")

        call = call_response.data[0]

        ticket = supabase.table("tickets").select("id").eq(
            "org_id", current_user.org_id
        ).eq("call_id", call_id).limit(1).execute()
        appointment = supabase.table("appointments").select("id").eq(
            "org_id", current_user.org_id
        ).eq("call_id", call_id).limit(1).execute()

        return CallDetail(
            **{k: call.get(k) for k in CallListItem.model_fields},
            outcome=call.get("outcome"),
            raw_payload=call.get("raw_payload"),
            has_ticket=bool(ticket.data),
            has_appointment=bool(appointment.data),
        )

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch call: {str(e)}"
        )
