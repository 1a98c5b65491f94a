"""Short topic labels for groups of unanswered questions.

One Haiku call labels every multi-question group at once; a group with a
single question is labeled with that question. Labels are best-effort: any
provider failure falls back to the first member's text, so the admin view
never waits on or breaks because of the LLM.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from anthropic import Anthropic

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

MAX_QUESTIONS_PER_GROUP = 10
MAX_LABEL_CHARS = 120

SYSTEM_PROMPT = (
    "You are labeling groups of similar questions that parents asked a school chatbot. "
    "For each group, provide a short topic label (3-8 words) that describes what parents "
    "are asking about. Respond with one label per line, in order. Just the labels, no "
    "numbering or extra text."
)


class ClusterLabeler(Protocol):
    """Produces one label per group of question texts."""

    def label(self, groups: Sequence[Sequence[str]]) -> list[str]: ...


class FirstQuestionLabeler:
    """Deterministic labeler: the first question of each group."""

    def label(self, groups: Sequence[Sequence[str]]) -> list[str]:
        return [_fallback_label(g) for g in groups]


class ClaudeClusterLabeler:
    """Labels groups with a single Claude call."""

    def __init__(self, model: str | None = None, client: Anthropic | None = None):
        settings = get_settings()
        self.model = model or settings.LABEL_MODEL
        self._client = client

    @property
    def client(self) -> Anthropic:
        if self._client is None:
            self._client = Anthropic(api_key=get_settings().ANTHROPIC_API_KEY)
        return self._client

    def label(self, groups: Sequence[Sequence[str]]) -> list[str]:
        multi = [i for i, g in enumerate(groups) if len(g) > 1]
        labels = [_fallback_label(g) for g in groups]
        if not multi:
            return labels

        descriptions = []
        for n, idx in enumerate(multi):
            questions = list(groups[idx])[:MAX_QUESTIONS_PER_GROUP]
            lines = "\n".join(f'  - "{q}"' for q in questions)
            descriptions.append(f"Group {n + 1} ({len(groups[idx])} questions):\n{lines}")

        response = self.client.messages.create(
            model=self.model,
            max_tokens=200,
            temperature=0.2,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": "\n\n".join(descriptions)}],
        )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        generated = [line.strip().strip('"').strip() for line in text.strip().split("\n")]
        generated = [line for line in generated if line]

        # Missing lines keep the fallback label
        for idx, label in zip(multi, generated):
            labels[idx] = label[:MAX_LABEL_CHARS]
        return labels


def get_cluster_labeler() -> ClusterLabeler:
    """Claude labeler when an Anthropic key is configured, else the fallback."""
    if get_settings().ANTHROPIC_API_KEY:
        return ClaudeClusterLabeler()
    return FirstQuestionLabeler()


def label_groups(
    groups: Sequence[Sequence[str]],
    labeler: ClusterLabeler | None = None,
) -> list[str]:
    """Label question groups; never raises.

    Args:
        groups: Question texts per group (each group non-empty)
        labeler: Labeler to use (default get_cluster_labeler())

    Returns:
        One label per group, same order
    """
    if not groups:
        return []

    labeler = labeler or get_cluster_labeler()
    try:
        labels = labeler.label(groups)
        if len(labels) != len(groups):
            raise ValueError(f"Labeler returned {len(labels)} labels for {len(groups)} groups")
    except Exception as e:
        logger.warning(f"Cluster labeling failed, using first questions: {e}")
        return FirstQuestionLabeler().label(groups)

    return [label or _fallback_label(g) for label, g in zip(labels, groups)]


def _fallback_label(questions: Sequence[str]) -> str:
    return questions[0] if questions else "Unanswered questions"
