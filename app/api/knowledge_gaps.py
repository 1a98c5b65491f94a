"""Admin endpoints for unanswered questions (knowledge gaps)."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException

from app.core.knowledge_gaps import dismiss_question, dismiss_questions, get_unanswered_groups
from app.core.resolution import ResolutionError, resolve_cluster
from app.core.schemas_knowledge_gaps import (
    DismissQuestionsRequest,
    ResolveClusterRequest,
    ResolveClusterResponse,
    UnansweredQuestionGroup,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/schools/{school_id}/unanswered",
    tags=["knowledge_gaps"],
)


@router.get("", response_model=list[UnansweredQuestionGroup])
async def list_unanswered(school_id: UUID) -> list[UnansweredQuestionGroup]:
    """Unanswered questions grouped by topic, highest priority first."""
    try:
        return get_unanswered_groups(str(school_id))
    except Exception as e:
        logger.exception(f"Failed to list unanswered questions for school {school_id}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/dismiss")
async def dismiss_many(school_id: UUID, data: DismissQuestionsRequest) -> dict:
    """Dismiss a group of questions (usually a whole cluster)."""
    try:
        result = dismiss_questions(str(school_id), data.question_ids)
        return {
            "success": True,
            "removed_questions": result.removed_questions,
            "deleted_clusters": result.deleted_clusters,
        }
    except Exception as e:
        logger.exception(f"Failed to dismiss questions for school {school_id}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/resolve", response_model=ResolveClusterResponse)
async def resolve(school_id: UUID, data: ResolveClusterRequest) -> ResolveClusterResponse:
    """Answer a cluster: the answer becomes a document and the questions close."""
    try:
        result = resolve_cluster(
            str(school_id),
            label=data.label,
            answer=data.answer,
            question_ids=data.question_ids,
            uploaded_by=data.uploaded_by,
        )
    except ResolutionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Failed to resolve knowledge gap for school {school_id}")
        raise HTTPException(status_code=500, detail=str(e))

    return ResolveClusterResponse(
        success=True,
        document_id=result.document_id,
        removed_questions=result.removed_questions,
        deleted_clusters=result.deleted_clusters,
        cleanup_failed=result.cleanup_failed,
        warning=result.warning,
    )


@router.post("/{question_id}/dismiss")
async def dismiss_one(school_id: UUID, question_id: UUID) -> dict:
    """Dismiss a single question."""
    try:
        result = dismiss_question(str(school_id), str(question_id))
    except Exception as e:
        logger.exception(f"Failed to dismiss question {question_id}")
        raise HTTPException(status_code=500, detail=str(e))

    if result.removed_questions == 0:
        raise HTTPException(status_code=404, detail="Question not found")
    return {"success": True, "deleted_clusters": result.deleted_clusters}
