"""Per-school settings that the knowledge-gap engine reads."""

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def get_school_settings(school_id: str) -> dict:
    """Get the settings row for a school ({} if none)."""
    client = get_supabase()
    result = (
        client.table("settings")
        .select("school_id, custom_system_prompt, alert_boundaries")
        .eq("school_id", str(school_id))
        .limit(1)
        .execute()
    )
    rows = result.data or []
    return rows[0] if rows else {}


def get_school(school_id: str) -> dict | None:
    """Get a school's slug and display name."""
    client = get_supabase()
    result = (
        client.table("schools")
        .select("id, slug, name")
        .eq("id", str(school_id))
        .limit(1)
        .execute()
    )
    rows = result.data or []
    return rows[0] if rows else None


def list_school_admin_ids(school_id: str) -> list[str]:
    """List user ids of a school's admins."""
    client = get_supabase()
    result = (
        client.table("school_memberships")
        .select("user_id")
        .eq("school_id", str(school_id))
        .eq("role", "admin")
        .execute()
    )
    return [row["user_id"] for row in result.data or [] if row.get("user_id")]


def list_schools() -> list[dict]:
    """List every school (id, slug, name)."""
    client = get_supabase()
    result = client.table("schools").select("id, slug, name").order("name").execute()
    return result.data or []
