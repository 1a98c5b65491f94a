"""Chat retrieval endpoint: grounding context and cited sources for one turn.

The LLM call and streaming happen in the chat front end. This endpoint returns
what the model should be grounded on, which sources to display, and whether
the question counts as answered. Unanswered questions are recorded after the
response is sent.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, HTTPException

from app.core.knowledge_gaps import record_unanswered_question
from app.core.retrieval import search_documents_async
from app.core.retrieval_format import assemble_sources, build_system_prompt
from app.core.schemas_knowledge_gaps import ChatRetrieveRequest, ChatRetrieveResponse
from app.db.school_settings import get_school_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/schools/{school_id}/chat", tags=["chat"])


@router.post("/retrieve", response_model=ChatRetrieveResponse)
async def retrieve_for_chat(
    school_id: UUID,
    request: ChatRetrieveRequest,
    background_tasks: BackgroundTasks,
) -> ChatRetrieveResponse:
    """Retrieve passages for a question and flag it if nothing answers it."""
    question = request.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="Question cannot be empty")

    try:
        chunks = await search_documents_async(question, str(school_id))
        assembly = assemble_sources(chunks)

        custom_prompt = None
        try:
            custom_prompt = get_school_settings(str(school_id)).get("custom_system_prompt")
        except Exception as e:
            logger.warning(f"Could not load settings for school {school_id}: {e}")

        if not assembly.answered:
            background_tasks.add_task(
                record_unanswered_question,
                str(school_id),
                question,
                session_id=request.session_id,
                user_id=request.user_id,
            )

        return ChatRetrieveResponse(
            answered=assembly.answered,
            sources=assembly.sources,
            system_prompt=build_system_prompt(chunks, custom_prompt),
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Failed to retrieve chat context for school {school_id}")
        raise HTTPException(status_code=500, detail=str(e))
