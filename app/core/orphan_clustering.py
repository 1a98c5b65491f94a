"""Display-only grouping of legacy unanswered questions without a cluster.

Questions recorded before persistent clusters existed have no
``cluster_id``. The admin view still needs to show them grouped, so they are
grouped on read with a greedy single pass and never written back as clusters
(``scripts/migrate_clusters.py`` is the one-off path that persists them).

Pure vector math, no LLM calls. Labels come from app.chains.label_clusters.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.similarity import cosine_similarity

logger = get_logger(__name__)


@dataclass
class ClusterableQuestion:
    """An unanswered question as seen by the grouping pass."""

    id: str
    question: str
    embedding: list[float]
    created_at: str


@dataclass
class QuestionGroup:
    """A group of similar questions; the first member is the representative."""

    questions: list[ClusterableQuestion] = field(default_factory=list)
    label: str | None = None

    @property
    def representative(self) -> ClusterableQuestion:
        return self.questions[0]

    @property
    def size(self) -> int:
        return len(self.questions)


def cluster_orphan_questions(
    questions: list[ClusterableQuestion],
    threshold: float | None = None,
    max_batch: int | None = None,
) -> list[QuestionGroup]:
    """Greedy single-pass grouping.

    Each question joins the first existing group whose representative is at
    least ``threshold`` similar, otherwise it starts a new group. Questions
    without an embedding always stand alone.

    Args:
        questions: Orphan questions, in the order they should be considered
        threshold: Similarity threshold (default ORPHAN_CLUSTER_THRESHOLD)
        max_batch: Only the first ``max_batch`` questions are grouped
            (default ORPHAN_BATCH_LIMIT)

    Returns:
        Groups sorted by size descending (stable for equal sizes)
    """
    settings = get_settings()
    threshold = settings.ORPHAN_CLUSTER_THRESHOLD if threshold is None else threshold
    max_batch = settings.ORPHAN_BATCH_LIMIT if max_batch is None else max_batch

    batch = questions[:max_batch]
    if len(questions) > len(batch):
        logger.info(f"Orphan grouping capped at {max_batch} of {len(questions)} questions")

    groups: list[QuestionGroup] = []
    for q in batch:
        target = None
        if q.embedding:
            for group in groups:
                rep = group.representative
                if not rep.embedding or len(rep.embedding) != len(q.embedding):
                    continue
                if cosine_similarity(q.embedding, rep.embedding) >= threshold:
                    target = group
                    break

        if target is None:
            groups.append(QuestionGroup(questions=[q]))
        else:
            target.questions.append(q)

    groups.sort(key=lambda g: g.size, reverse=True)
    return groups
