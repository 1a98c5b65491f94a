"""Database operations for the admin audit log."""

from typing import Any

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def log_admin_action(
    admin_id: str,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    school_id: str | None = None,
) -> dict:
    """
    Record an admin action in ``audit_log``.

    Args:
        admin_id: User who performed the action
        action: Action name (e.g. "answer_unanswered")
        entity_type: Kind of object acted on (e.g. "document")
        entity_id: Id of that object
        details: Free-form JSON details
        school_id: Tenant the action belongs to

    Returns:
        Created audit row

    Raises:
        ValueError: If the insert returned no row
    """
    result = (
        get_supabase()
        .table("audit_log")
        .insert({
            "admin_id": str(admin_id),
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id) if entity_id else None,
            "details": details or {},
            "school_id": str(school_id) if school_id else None,
        })
        .execute()
    )
    if not result.data:
        raise ValueError("No data returned from audit log insert")
    return result.data[0]
