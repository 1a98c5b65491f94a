"""Vector similarity search over a school's document passages.

Embeds the parent's question, asks pgvector for the nearest passages of the
school's *ready* documents, and attaches document metadata. Graceful
degradation: an embedding or search failure returns no passages instead of
failing the chat turn.

Usage:
    from app.core.retrieval import search_documents

    chunks = search_documents(
        query="When does the winter break start?",
        school_id="5b1c...",
    )
"""

from __future__ import annotations

import asyncio

from app.core.config import get_settings
from app.core.embeddings import embed_text
from app.core.logging import get_logger
from app.db.documents import get_documents_by_ids, match_document_chunks

logger = get_logger(__name__)

READY_STATUS = "ready"


def search_documents(
    query: str,
    school_id: str,
    top_k: int | None = None,
    min_similarity: float | None = None,
) -> list[dict]:
    """Rank a school's ready passages against a query.

    Args:
        query: Parent's question text
        school_id: Tenant to search
        top_k: Max passages to return (default RETRIEVAL_MATCH_COUNT)
        min_similarity: Recall threshold (default RETRIEVAL_MIN_SIMILARITY)

    Returns:
        Chunk dicts sorted by similarity descending, each with
        ``document_id``, ``content``, ``chunk_index``, ``similarity`` and
        ``document_title`` / ``document_file_url`` / ``document_file_type``.
        Empty on any failure.
    """
    settings = get_settings()
    top_k = settings.RETRIEVAL_MATCH_COUNT if top_k is None else top_k
    min_similarity = settings.RETRIEVAL_MIN_SIMILARITY if min_similarity is None else min_similarity

    if not query or not query.strip() or top_k <= 0:
        return []

    try:
        query_embedding = embed_text(query)
    except Exception as e:
        logger.warning(f"Query embedding failed, continuing without sources: {e}")
        return []

    try:
        chunks = match_document_chunks(
            query_embedding,
            school_id,
            match_threshold=min_similarity,
            match_count=top_k,
        )
    except Exception as e:
        logger.error(f"Document search failed for school {school_id}: {e}")
        return []

    if not chunks:
        return []

    try:
        chunks = _attach_document_metadata(chunks)
    except Exception as e:
        # Without the status join we cannot prove the passages are searchable
        logger.error(f"Document metadata lookup failed for school {school_id}: {e}")
        return []

    chunks = [c for c in chunks if float(c.get("similarity") or 0.0) >= min_similarity]
    chunks.sort(key=lambda c: float(c.get("similarity") or 0.0), reverse=True)
    chunks = chunks[:top_k]

    if chunks:
        logger.debug(
            f"Retrieved {len(chunks)} passages, top '{chunks[0].get('document_title')}' "
            f"(sim {float(chunks[0]['similarity']):.3f})"
        )
    else:
        logger.debug(f"No passages above {min_similarity} for query: {query[:80]!r}")

    return chunks


async def search_documents_async(
    query: str,
    school_id: str,
    top_k: int | None = None,
    min_similarity: float | None = None,
) -> list[dict]:
    """Async wrapper around search_documents using thread pool."""
    return await asyncio.to_thread(search_documents, query, school_id, top_k, min_similarity)


def _attach_document_metadata(chunks: list[dict]) -> list[dict]:
    """Join document title/file info onto chunks; drop non-ready documents."""
    doc_ids = list(dict.fromkeys(c["document_id"] for c in chunks if c.get("document_id")))
    docs = {d["id"]: d for d in get_documents_by_ids(doc_ids)}

    enriched: list[dict] = []
    for chunk in chunks:
        doc = docs.get(chunk.get("document_id"))
        if not doc or doc.get("status") != READY_STATUS:
            continue
        enriched.append({
            **chunk,
            "similarity": float(chunk.get("similarity") or 0.0),
            "document_title": doc.get("title") or "Unknown Document",
            "document_file_url": doc.get("file_url"),
            "document_file_type": doc.get("file_type"),
            "document_tags": doc.get("tags") or [],
        })
    return enriched
