"""
Tenant Filter Utility
Shared helper for applying consistent org filtering across Supabase queries
"""
from typing import Optional, Any


def apply_tenant_filter(query: Any, org_id: Optional[str], column: str = "org_id") -> Any:
    """
    Apply org filtering to a Supabase query.

    Args:
        query: Supabase query builder object (from supabase.table(...).select(...))
        org_id: Current user's org_id (None for platform admins)
        column: Name of the org column (default: "org_id")

    Returns:
        Modified query with org filter applied, or original query if org_id is None

    Usage:
        query = supabase.table("calls").select("*")
        query = apply_tenant_filter(query, current_user.org_id)
        response = query.execute()
    """
    if org_id:
        return query.eq(column, org_id)
    return query


def verify_tenant_access(
    supabase: Any,
    table: str,
    record_id: str,
    org_id: Optional[str],
    tenant_column: str = "org_id"
) -> bool:
    """
    Verify that a record belongs to the specified org.

    Returns:
        True if record exists and belongs to the org, False otherwise

    Usage:
        if not verify_tenant_access(supabase, "calls", call_id, current_user.org_id):
            raise HTTPException(status_code=404, detail="Call not found")
    """
    if not org_id:
        return True

    try:
        response = supabase.table(table).select("id").eq("id", record_id).eq(tenant_column, org_id).execute()
        return bool(response.data)
    except Exception:
        return False
