"""Database operations for notifications table."""

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def create_notifications(
    user_ids: list[str],
    school_id: str,
    type: str,
    title: str,
    body: str | None = None,
    link: str | None = None,
) -> list[dict]:
    """Create the same in-app notification for several users in one insert."""
    if not user_ids:
        return []

    rows = []
    for user_id in user_ids:
        row: dict = {
            "user_id": str(user_id),
            "school_id": str(school_id),
            "type": type,
            "title": title,
        }
        if body:
            row["body"] = body
        if link:
            row["link"] = link
        rows.append(row)

    supabase = get_supabase()
    result = supabase.table("notifications").insert(rows).execute()
    if not result.data:
        raise ValueError("No data returned from notification insert")
    return result.data
