"""
Audit Log Service
Writes audit_log rows (and per-field changes) and counts them by window
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from supabase import Client

logger = logging.getLogger(__name__)


class AuditLogService:
    """
    Thin wrapper over the audit_log / audit_log_changes tables.

    Insert and count failures propagate; callers decide whether an
    audit write is essential.
    """

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def log_event(
        self,
        org_id: str,
        actor_user_id: Optional[str],
        action: str,
        entity_type: str,
        entity_id: str,
        diff: Optional[Dict[str, Tuple[Any, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        Insert one audit entry.

        Args:
            diff: field -> (before, after); stored in audit_log_changes

        Returns:
            The inserted audit_log row
        """
        response = self.supabase.table("audit_log").insert({
            "org_id": org_id,
            "actor_user_id": actor_user_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }).execute()

        audit = response.data[0] if response.data else {}

        if diff and audit.get("id"):
            rows = [
                {
                    "audit_log_id": audit["id"],
                    "field": field,
                    "before_value": str(before) if before is not None else None,
                    "after_value": str(after) if after is not None else None,
                }
                for field, (before, after) in diff.items()
            ]
            self.supabase.table("audit_log_changes").insert(rows).execute()

        return audit

    def count_since(self, org_id: str, action: str, since: datetime) -> int:
        """Exact count of entries with this action for the org since `since`."""
        response = self.supabase.table("audit_log").select(
            "id", count="exact"
        ).eq("org_id", org_id).eq("action", action).gte(
            "created_at", since.isoformat()
        ).execute()

        if response.count is not None:
            return response.count
        return len(response.data or [])
