"""
Assistant Tool Endpoints
Called by the voice assistant during a call to create tickets and appointments

Artifacts carry the internal call_id so the completion classifier can
link them back to the call.
"""
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from supabase import Client

from app.api.v1.dependencies import get_supabase
from app.core.observability import log_event
from app.domain.services.audit_log import AuditLogService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tools", tags=["tools"])


class CreateTicketRequest(BaseModel):
    to_phone: str = Field(..., min_length=3)
    lead_phone: str = Field(..., min_length=7)
    lead_name: Optional[str] = None
    lead_email: Optional[EmailStr] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Literal["low", "normal", "high"]] = None
    notes: Optional[str] = None
    call_id: Optional[str] = None


class CreateAppointmentRequest(BaseModel):
    to_phone: str = Field(..., min_length=3)
    start_at: str
    lead_phone: str = Field(..., min_length=7)
    lead_name: Optional[str] = None
    lead_email: Optional[EmailStr] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None
    call_id: Optional[str] = None


def normalize_phone(value: Optional[str]) -> Optional[str]:
    """Keep digits and '+' only; None if nothing is left."""
    if not value:
        return None
    cleaned = re.sub(r"[^\d+]", "", value)
    return cleaned or None


def verify_tool_secret(
    x_denku_secret: Optional[str] = Header(None, alias="x-denku-secret")
) -> None:
    """Shared-secret check; skipped when TOOL_SECRET is not configured."""
    expected = os.getenv("TOOL_SECRET")
    if not expected:
        return
    if x_denku_secret != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _resolve_org(supabase: Client, to_phone: str) -> Dict[str, Any]:
    response = supabase.table("organizations").select("id, phone_number").eq(
        "phone_number", to_phone
    ).limit(1).execute()
    if not response.data:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Organization not found for phone_number {to_phone}"
        )
    return response.data[0]


def _find_or_create_lead(
    supabase: Client,
    org_id: str,
    phone: str,
    name: Optional[str],
    email: Optional[str],
    notes: Optional[str],
) -> str:
    existing = supabase.table("leads").select("id").eq(
        "org_id", org_id
    ).eq("phone", phone).limit(1).execute()
    if existing.data:
        return existing.data[0]["id"]

    created = supabase.table("leads").insert({
        "org_id": org_id,
        "name": name,
        "phone": phone,
        "email": email,
        "source": "vapi",
        "status": "new",
        "notes": notes,
    }).execute()
    if not created.data:
        raise HTTPException(status_code=500, detail="Failed to create lead")
    return created.data[0]["id"]


def _existing_for_call(
    supabase: Client,
    table: str,
    org_id: str,
    call_id: Optional[str],
) -> Optional[Dict[str, Any]]:
    if not call_id:
        return None
    response = supabase.table(table).select("*").eq(
        "org_id", org_id
    ).eq("call_id", call_id).limit(1).execute()
    return response.data[0] if response.data else None


def _audit(supabase: Client, org_id: str, action: str, entity_type: str, entity_id: str) -> None:
    """Best-effort audit entry for tool-created artifacts."""
    try:
        AuditLogService(supabase).log_event(
            org_id=org_id,
            actor_user_id=None,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
        )
    except Exception as e:
        logger.warning(f"Audit write failed for {entity_type} {entity_id}: {e}")


@router.post("/create-ticket")
async def create_ticket(
    request: CreateTicketRequest,
    _: None = Depends(verify_tool_secret),
    supabase: Client = Depends(get_supabase)
):
    """
    Create a support ticket for the caller.

    Idempotent per call_id: a second request for the same call returns
    the ticket created by the first.
    """
    to_phone = normalize_phone(request.to_phone)
    lead_phone = normalize_phone(request.lead_phone)
    if not to_phone or not lead_phone:
        raise HTTPException(status_code=400, detail="Invalid phone normalization")

    subject = (request.subject or "").strip()
    description = (request.description or "").strip()
    if not subject and not description:
        raise HTTPException(status_code=400, detail="Either subject or description is required")

    try:
        org = _resolve_org(supabase, to_phone)
        org_id = org["id"]

        existing = _existing_for_call(supabase, "tickets", org_id, request.call_id)
        if existing:
            return {"ok": True, "ticket": existing, "created": False}

        lead_id = _find_or_create_lead(
            supabase, org_id, lead_phone, request.lead_name, request.lead_email, request.notes
        )

        response = supabase.table("tickets").insert({
            "org_id": org_id,
            "lead_id": lead_id,
            "call_id": request.call_id,
            "subject": subject or "Support Request",
            "description": description or request.notes or "Created via assistant tool",
            "status": "open",
            "priority": request.priority or "normal",
            "requester_phone": lead_phone,
            "requester_email": request.lead_email,
        }).execute()

        if not response.data:
            raise HTTPException(status_code=500, detail="Failed to create ticket")

        ticket = response.data[0]

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating ticket: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create ticket: {str(e)}")

    _audit(supabase, org_id, "ticket.create", "ticket", str(ticket.get("id")))
    log_event(
        "[TOOL][CREATE_TICKET][OK]",
        stage="TOOL",
        source="tool_create_ticket",
        org_id=org_id,
        call_id=request.call_id,
        details={"ticket_id": ticket.get("id")},
    )

    return {"ok": True, "ticket": ticket, "created": True}


@router.post("/create-appointment")
async def create_appointment(
    request: CreateAppointmentRequest,
    _: None = Depends(verify_tool_secret),
    supabase: Client = Depends(get_supabase)
):
    """
    Book an appointment for the caller.

    start_at must be ISO-8601; a naive value is taken as UTC.
    Idempotent per call_id like create-ticket.
    """
    to_phone = normalize_phone(request.to_phone)
    lead_phone = normalize_phone(request.lead_phone)
    if not to_phone or not lead_phone:
        raise HTTPException(status_code=400, detail="Invalid phone normalization")

    try:
        start_at = datetime.fromisoformat(request.start_at.strip().replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail="start_at must be an ISO-8601 datetime")
    if start_at.tzinfo is None:
        start_at = start_at.replace(tzinfo=timezone.utc)

    try:
        org = _resolve_org(supabase, to_phone)
        org_id = org["id"]

        existing = _existing_for_call(supabase, "appointments", org_id, request.call_id)
        if existing:
            return {"ok": True, "appointment": existing, "created": False}

        lead_id = _find_or_create_lead(
            supabase, org_id, lead_phone, request.lead_name, request.lead_email, request.notes
        )

        response = supabase.table("appointments").insert({
            "org_id": org_id,
            "lead_id": lead_id,
            "call_id": request.call_id,
            "start_at": start_at.isoformat(),
            "purpose": request.purpose,
            "notes": request.notes,
            "status": "scheduled",
        }).execute()

        if not response.data:
            raise HTTPException(status_code=500, detail="Failed to create appointment")

        appointment = response.data[0]

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating appointment: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create appointment: {str(e)}")

    _audit(supabase, org_id, "appointment.create", "appointment", str(appointment.get("id")))
    log_event(
        "[TOOL][CREATE_APPOINTMENT][OK]",
        stage="TOOL",
        source="tool_create_appointment",
        org_id=org_id,
        call_id=request.call_id,
        details={"appointment_id": appointment.get("id"), "start_at": start_at.isoformat()},
    )

    return {"ok": True, "appointment": appointment, "created": True}
