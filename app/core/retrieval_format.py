"""Turn ranked passages into cited sources and the chat grounding prompt.

Two thresholds are in play. The vector search recalls generously
(RETRIEVAL_MIN_SIMILARITY); only passages above the stricter
SOURCE_DISPLAY_THRESHOLD are cited. A question is *unanswered* when nothing
survives the display threshold, however many weak passages were recalled.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from app.core.config import get_settings
from app.core.schemas_knowledge_gaps import RetrievedSource

EXCERPT_CHARS = 200
# Below this, cutting at the last sentence would leave too little text
MIN_SENTENCE_CUT = 80


@dataclass
class SourceAssembly:
    """Cited sources for one chat turn plus the answered verdict."""

    sources: list[RetrievedSource] = field(default_factory=list)

    @property
    def answered(self) -> bool:
        return len(self.sources) > 0


def assemble_sources(
    chunks: list[dict],
    display_threshold: float | None = None,
    max_sources: int | None = None,
) -> SourceAssembly:
    """Deduplicate, filter, rank and cap retrieved passages.

    Keeps the best passage per document, drops documents whose best passage is
    below ``display_threshold``, sorts by similarity descending and keeps at
    most ``max_sources`` (never more than 3).

    Args:
        chunks: Output of search_documents()
        display_threshold: Citation threshold (default SOURCE_DISPLAY_THRESHOLD)
        max_sources: Cap (default MAX_DISPLAY_SOURCES)

    Returns:
        SourceAssembly; ``answered`` is False iff no source survived
    """
    settings = get_settings()
    if display_threshold is None:
        display_threshold = settings.SOURCE_DISPLAY_THRESHOLD
    if max_sources is None:
        max_sources = settings.MAX_DISPLAY_SOURCES
    max_sources = max(0, min(max_sources, 3))

    best_by_doc: dict[str, dict] = {}
    for chunk in chunks:
        doc_id = chunk.get("document_id")
        if not doc_id:
            continue
        existing = best_by_doc.get(doc_id)
        if existing is None or _similarity(chunk) > _similarity(existing):
            best_by_doc[doc_id] = chunk

    ranked = sorted(
        (c for c in best_by_doc.values() if _similarity(c) >= display_threshold),
        key=lambda c: (-_similarity(c), int(c.get("chunk_index") or 0), str(c["document_id"])),
    )[:max_sources]

    sources = [
        RetrievedSource(
            document_id=str(chunk["document_id"]),
            title=chunk.get("document_title") or "Unknown",
            excerpt=make_excerpt(chunk.get("content") or ""),
            similarity=min(1.0, max(0.0, _similarity(chunk))),
            chunk_index=int(chunk.get("chunk_index") or 0),
            rank=i + 1,
            file_url=chunk.get("document_file_url"),
            file_type=chunk.get("document_file_type"),
        )
        for i, chunk in enumerate(ranked)
    ]
    return SourceAssembly(sources=sources)


def make_excerpt(text: str, limit: int = EXCERPT_CHARS) -> str:
    """Shorten passage text for display, preferring a sentence boundary."""
    if len(text) <= limit:
        return text
    truncated = text[:limit]
    last_period = truncated.rfind(". ")
    if last_period > MIN_SENTENCE_CUT:
        return truncated[: last_period + 1]
    return re.sub(r"\s+\S*$", "", truncated) + "…"


def build_system_prompt(chunks: list[dict], custom_prompt: str | None = None) -> str:
    """Grounding prompt for the chat model.

    Args:
        chunks: Passages to ground on (all recalled passages, not only cited ones)
        custom_prompt: The school's extra instructions, appended verbatim

    Returns:
        System prompt text
    """
    intro = (
        "You are a helpful school assistant that answers parents' questions "
        "using official school documents."
    )

    if not chunks:
        prompt = (
            f"{intro}\n\n"
            "No relevant information was found for this question. Let the parent know "
            "that you couldn't find specific information in the school documents, and "
            "suggest they contact the school directly for more details. Be friendly and helpful."
        )
    else:
        blocks = []
        for i, chunk in enumerate(chunks):
            title = chunk.get("document_title") or "Unknown Document"
            tags = chunk.get("document_tags") or []
            meta = f" | Tags: {', '.join(tags)}" if tags else ""
            blocks.append(f'[Source {i + 1}: "{title}"{meta}]\n{chunk.get("content") or ""}')
        context = "\n\n---\n\n".join(blocks)

        prompt = (
            f"{intro}\n\n"
            f"DOCUMENT CONTEXT:\n{context}\n\n"
            "IMPORTANT RULES:\n"
            "- Answer based on the provided context above\n"
            "- If the context doesn't contain enough information to answer, say so honestly\n"
            "- Answer in your own words. Do NOT quote documents word-for-word.\n"
            "- Do NOT use [Source N] citations; sources are displayed alongside your answer.\n"
            "- Be concise and parent-friendly in your responses\n"
            "- If a question is not related to school, politely redirect"
        )

    if custom_prompt and custom_prompt.strip():
        prompt += "\n\n" + custom_prompt.strip()
    return prompt


def _similarity(chunk: dict) -> float:
    return float(chunk.get("similarity") or 0.0)
