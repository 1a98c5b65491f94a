"""Resolve a knowledge gap by folding an admin's answer back into the corpus.

The answer becomes a plain-text document in the school's "Responses" folder
(status ``processing``), is handed to the document pipeline for chunking and
embedding, and the questions it answers are removed through the cluster
engine so cluster counts stay exact.

Ordering matters: nothing is deleted until the document exists, and an upload
whose document row could not be written is removed again. If question
cleanup fails afterwards, the result says so, because re-running the whole
resolution would upload the answer a second time.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field

from app.core.cluster_assignment import ClusterAssignmentEngine
from app.core.document_pipeline import DocumentPipeline, get_document_pipeline
from app.core.logging import get_logger, log_with_context
from app.db.audit_log import log_admin_action
from app.db.documents import (
    create_responses_folder,
    get_responses_folder,
    insert_document,
    remove_stored_file,
    upload_text_file,
)

logger = get_logger(__name__)

RESPONSE_TAGS = ["response", "auto-generated"]
MAX_TITLE_CHARS = 80
AUDIT_ACTION = "answer_unanswered"

CLEANUP_WARNING = (
    "The answer was saved but the questions could not be removed. "
    "Dismiss them instead of resolving again, or a duplicate document will be created."
)


class ResolutionError(ValueError):
    """A resolution was rejected or could not create its document."""


@dataclass
class ResolutionResult:
    document_id: str
    removed_questions: int = 0
    deleted_clusters: list[str] = field(default_factory=list)
    cleanup_failed: bool = False

    @property
    def warning(self) -> str | None:
        return CLEANUP_WARNING if self.cleanup_failed else None


def safe_title(label: str) -> str:
    """Storage-safe version of a label: letters, digits, spaces and dashes."""
    return re.sub(r"[^a-zA-Z0-9\s-]", "", label)[:MAX_TITLE_CHARS].strip()


def build_response_content(questions: list[str], answer: str, label: str) -> str:
    """Unique question lines, a blank line, then the answer."""
    unique = list(dict.fromkeys(q for q in questions if q)) or [label]
    questions_block = "\n".join(f"Question: {q}" for q in unique)
    return f"{questions_block}\n\nAnswer: {answer}"


def resolve_cluster(
    school_id: str,
    label: str,
    answer: str,
    question_ids: list[str],
    uploaded_by: str | None = None,
    engine: ClusterAssignmentEngine | None = None,
    pipeline: DocumentPipeline | None = None,
) -> ResolutionResult:
    """Answer a group of unanswered questions.

    Args:
        school_id: School owning the questions
        label: Topic label, used as the document title
        answer: Admin-written answer (must not be blank)
        question_ids: Questions this answer resolves
        uploaded_by: Admin user id recorded on the document
        engine: Cluster engine used for question removal
        pipeline: Document processing trigger

    Returns:
        ResolutionResult; ``cleanup_failed`` means the document exists but the
        questions are still open

    Raises:
        ResolutionError: Blank answer/label, no questions, or the document
            could not be stored (nothing is removed in that case)
    """
    if not answer or not answer.strip():
        raise ResolutionError("Answer cannot be empty")
    if not label or not label.strip():
        raise ResolutionError("Label cannot be empty")
    if not question_ids:
        raise ResolutionError("No questions to resolve")

    engine = engine or ClusterAssignmentEngine()
    pipeline = pipeline or get_document_pipeline()
    label = label.strip()
    uploaded_key: str | None = None

    try:
        folder = get_responses_folder(school_id) or create_responses_folder(school_id)

        rows = engine.store.get_questions([str(q) for q in question_ids])
        texts = [r["question"] for r in rows if str(r.get("school_id")) == str(school_id)]
        content = build_response_content(texts, answer.strip(), label)

        title = safe_title(label) or "response"
        storage_key = f"{school_id}/{int(time.time() * 1000)}-{title}.txt"
        upload_text_file(storage_key, content)
        uploaded_key = storage_key

        doc = insert_document({
            "title": label,
            "description": f'Admin response to unanswered question: "{label}"',
            "file_name": f"{title}.txt",
            "file_type": "txt",
            "file_url": storage_key,
            "file_size": len(content.encode("utf-8")),
            "folder_id": folder["id"],
            "tags": RESPONSE_TAGS,
            "status": "processing",
            "uploaded_by": uploaded_by,
            "school_id": str(school_id),
        })
    except Exception as e:
        logger.error(f"Failed to store response document: {e}", extra={"school_id": school_id})
        if uploaded_key:
            try:
                remove_stored_file(uploaded_key)
            except Exception as cleanup_error:
                logger.warning(f"Failed to remove orphaned upload {uploaded_key}: {cleanup_error}")
        raise ResolutionError(f"Failed to store response document: {e}") from e

    document_id = str(doc["id"])

    if uploaded_by:
        try:
            log_admin_action(
                uploaded_by,
                AUDIT_ACTION,
                "document",
                document_id,
                details={"label": label, "question_count": len(question_ids)},
                school_id=school_id,
            )
        except Exception as e:
            logger.warning(f"Failed to write audit entry for document {document_id}: {e}")

    try:
        pipeline.submit(document_id, school_id)
    except Exception as e:
        logger.warning(f"Document processing trigger failed for {document_id}: {e}")

    try:
        removal = engine.remove_questions(question_ids, school_id=school_id)
    except Exception:
        logger.exception(f"Question cleanup failed after creating document {document_id}")
        return ResolutionResult(document_id=document_id, cleanup_failed=True)

    log_with_context(
        logger,
        logging.INFO,
        f"Resolved knowledge gap '{label}'",
        school_id=school_id,
        document_id=document_id,
        removed_questions=removal.removed_questions,
    )
    return ResolutionResult(
        document_id=document_id,
        removed_questions=removal.removed_questions,
        deleted_clusters=removal.deleted_clusters,
    )
