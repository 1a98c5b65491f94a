"""Database access layer for the school document corpus.

Read side: passage search via the ``match_document_chunks`` RPC plus
document metadata lookups. Write side: only what the resolution workflow
needs (Responses folder, text upload, document row).
"""

from typing import Any

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

DOCUMENTS_BUCKET = "documents"
RESPONSES_FOLDER = "Responses"


def match_document_chunks(
    query_embedding: list[float],
    school_id: str,
    match_threshold: float,
    match_count: int,
) -> list[dict]:
    """Run the pgvector similarity RPC for one school's ready documents."""
    client = get_supabase()
    result = client.rpc(
        "match_document_chunks",
        {
            "query_embedding": query_embedding,
            "p_school_id": str(school_id),
            "match_threshold": match_threshold,
            "match_count": match_count,
        },
    ).execute()
    return result.data or []


def get_documents_by_ids(document_ids: list[str]) -> list[dict]:
    """Fetch display metadata (and status) for a set of documents."""
    if not document_ids:
        return []
    client = get_supabase()
    result = (
        client.table("documents")
        .select("id, title, file_url, file_type, status, tags")
        .in_("id", document_ids)
        .execute()
    )
    return result.data or []


def get_responses_folder(school_id: str) -> dict | None:
    """Get the school's root-level Responses folder, if it exists."""
    client = get_supabase()
    result = (
        client.table("folders")
        .select("id")
        .eq("school_id", str(school_id))
        .eq("name", RESPONSES_FOLDER)
        .is_("parent_id", "null")
        .limit(1)
        .execute()
    )
    rows = result.data or []
    return rows[0] if rows else None


def create_responses_folder(school_id: str) -> dict:
    """Create the school's root-level Responses folder."""
    client = get_supabase()
    result = (
        client.table("folders")
        .insert({"name": RESPONSES_FOLDER, "school_id": str(school_id), "parent_id": None})
        .execute()
    )
    if not result.data:
        raise ValueError("No data returned from folder insert")
    return result.data[0]


def upload_text_file(storage_key: str, content: str) -> None:
    """Upload a UTF-8 text file to the documents bucket."""
    client = get_supabase()
    client.storage.from_(DOCUMENTS_BUCKET).upload(
        path=storage_key,
        file=content.encode("utf-8"),
        file_options={"content-type": "text/plain"},
    )


def remove_stored_file(storage_key: str) -> None:
    """Delete an object from the documents bucket."""
    client = get_supabase()
    client.storage.from_(DOCUMENTS_BUCKET).remove([storage_key])


def insert_document(row: dict[str, Any]) -> dict:
    """Insert a documents row and return it."""
    client = get_supabase()
    result = client.table("documents").insert(row).execute()
    if not result.data:
        raise ValueError("No data returned from document insert")
    return result.data[0]
