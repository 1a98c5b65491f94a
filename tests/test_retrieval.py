"""Tests for document passage search with mocked embeddings and RPC."""

from unittest.mock import patch

import pytest

from app.core.retrieval import search_documents

SCHOOL_ID = "school-1"


def _chunk(doc_id: str, sim: float, idx: int = 0) -> dict:
    return {
        "id": f"{doc_id}-{idx}",
        "document_id": doc_id,
        "chunk_index": idx,
        "content": f"Passage {idx} of {doc_id}",
        "similarity": sim,
    }


def _doc(doc_id: str, status: str = "ready") -> dict:
    return {
        "id": doc_id,
        "title": f"Doc {doc_id}",
        "file_url": f"{SCHOOL_ID}/{doc_id}.pdf",
        "file_type": "pdf",
        "status": status,
        "tags": ["policy"],
    }


@pytest.fixture
def mock_search():
    with patch("app.core.retrieval.embed_text") as mock_embed, \
         patch("app.core.retrieval.match_document_chunks") as mock_match, \
         patch("app.core.retrieval.get_documents_by_ids") as mock_docs:
        mock_embed.return_value = [0.1] * 768
        yield mock_embed, mock_match, mock_docs


def test_returns_ranked_chunks_with_metadata(mock_search):
    _, mock_match, mock_docs = mock_search
    mock_match.return_value = [_chunk("a", 0.61), _chunk("b", 0.9), _chunk("a", 0.75, 3)]
    mock_docs.return_value = [_doc("a"), _doc("b")]

    chunks = search_documents("When is pickup?", SCHOOL_ID)

    assert [c["similarity"] for c in chunks] == [0.9, 0.75, 0.61]
    assert chunks[0]["document_title"] == "Doc b"
    assert chunks[0]["document_file_url"] == f"{SCHOOL_ID}/b.pdf"
    assert chunks[0]["document_tags"] == ["policy"]

    kwargs = mock_match.call_args.kwargs
    assert kwargs["match_threshold"] == 0.5
    assert kwargs["match_count"] == 8


def test_drops_chunks_of_documents_not_ready(mock_search):
    _, mock_match, mock_docs = mock_search
    mock_match.return_value = [_chunk("a", 0.9), _chunk("b", 0.8)]
    mock_docs.return_value = [_doc("a", status="processing"), _doc("b")]

    chunks = search_documents("question", SCHOOL_ID)

    assert [c["document_id"] for c in chunks] == ["b"]


def test_filters_below_min_similarity_and_caps(mock_search):
    _, mock_match, mock_docs = mock_search
    mock_match.return_value = [_chunk("a", 0.9), _chunk("b", 0.8), _chunk("c", 0.4)]
    mock_docs.return_value = [_doc("a"), _doc("b"), _doc("c")]

    chunks = search_documents("question", SCHOOL_ID, top_k=1, min_similarity=0.5)

    assert [c["document_id"] for c in chunks] == ["a"]


def test_embedding_failure_returns_empty(mock_search):
    mock_embed, mock_match, _ = mock_search
    mock_embed.side_effect = RuntimeError("provider down")

    assert search_documents("question", SCHOOL_ID) == []
    mock_match.assert_not_called()


def test_search_failure_returns_empty(mock_search):
    _, mock_match, _ = mock_search
    mock_match.side_effect = RuntimeError("rpc failed")

    assert search_documents("question", SCHOOL_ID) == []


def test_metadata_failure_returns_empty(mock_search):
    _, mock_match, mock_docs = mock_search
    mock_match.return_value = [_chunk("a", 0.9)]
    mock_docs.side_effect = RuntimeError("documents table unavailable")

    assert search_documents("question", SCHOOL_ID) == []


def test_blank_query_skips_provider(mock_search):
    mock_embed, _, _ = mock_search

    assert search_documents("   ", SCHOOL_ID) == []
    mock_embed.assert_not_called()
