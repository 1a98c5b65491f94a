"""Pydantic schemas for chat retrieval and the knowledge-gap admin surface."""

from pydantic import BaseModel, Field


class RetrievedSource(BaseModel):
    """A cited passage shown next to an answer. Ephemeral, per chat turn."""

    document_id: str
    title: str = "Unknown"
    excerpt: str
    similarity: float = Field(..., ge=0.0, le=1.0)
    chunk_index: int = 0
    rank: int = Field(..., ge=1, le=3)
    file_url: str | None = None
    file_type: str | None = None
    source_type: str = "document"


class ChatRetrieveRequest(BaseModel):
    question: str = Field(..., min_length=1)
    session_id: str | None = None
    user_id: str | None = None


class ChatRetrieveResponse(BaseModel):
    answered: bool
    sources: list[RetrievedSource] = Field(default_factory=list)
    system_prompt: str


class GroupQuestion(BaseModel):
    id: str
    question: str
    created_at: str


class UnansweredQuestionGroup(BaseModel):
    """A cluster (or a legacy orphan group) as shown to school admins."""

    label: str
    count: int
    questions: list[GroupQuestion]
    oldest_date: str
    newest_date: str
    priority_score: float = 0.0
    cluster_id: str | None = None


class DismissQuestionsRequest(BaseModel):
    question_ids: list[str] = Field(..., min_length=1)


class ResolveClusterRequest(BaseModel):
    label: str = Field(..., min_length=1)
    answer: str
    question_ids: list[str] = Field(..., min_length=1)
    uploaded_by: str | None = None


class ResolveClusterResponse(BaseModel):
    success: bool = True
    document_id: str
    removed_questions: int = 0
    deleted_clusters: list[str] = Field(default_factory=list)
    cleanup_failed: bool = False
    warning: str | None = None
