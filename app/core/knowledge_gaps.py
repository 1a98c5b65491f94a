"""Knowledge-gap service: record unanswered questions, list and dismiss them.

``record_unanswered_question`` is the detached half of a chat turn. It runs
after the response is sent (FastAPI background task), so it must never
raise: every failure is logged and the question is dropped or left
unclustered. An unclustered question still shows up in the admin view as an
orphan.
"""

from __future__ import annotations

import logging
from typing import Any

from app.chains.label_clusters import ClusterLabeler, label_groups
from app.core.cluster_alerts import AlertChannel, dispatch_cluster_alert
from app.core.cluster_assignment import AssignmentResult, ClusterAssignmentEngine, RemovalResult
from app.core.embeddings import embed_text
from app.core.logging import get_logger, log_with_context
from app.core.orphan_clustering import ClusterableQuestion, cluster_orphan_questions
from app.core.priority import VOLUME_WEIGHT
from app.core.schemas_knowledge_gaps import GroupQuestion, UnansweredQuestionGroup

logger = get_logger(__name__)

ADMIN_VIEW_LIMIT = 200


def record_unanswered_question(
    school_id: str,
    question: str,
    session_id: str | None = None,
    user_id: str | None = None,
    engine: ClusterAssignmentEngine | None = None,
    channel: AlertChannel | None = None,
    labeler: ClusterLabeler | None = None,
) -> AssignmentResult | None:
    """Embed, persist, cluster and (on a crossing) alert. Never raises.

    Returns:
        The assignment, or None if the question was not clustered
    """
    question = (question or "").strip()
    if not question:
        return None

    try:
        embedding = embed_text(question)
    except Exception as e:
        logger.error(f"Failed to embed unanswered question: {e}", extra={"school_id": school_id})
        return None

    try:
        engine = engine or ClusterAssignmentEngine()
        row = engine.store.insert_question(
            school_id, question, embedding, session_id=session_id, user_id=user_id
        )
    except Exception as e:
        logger.error(f"Failed to save unanswered question: {e}", extra={"school_id": school_id})
        return None

    try:
        result = engine.assign(row["id"], embedding, school_id)
    except Exception as e:
        logger.error(
            f"Cluster assignment failed for question {row['id']}: {e}",
            extra={"school_id": school_id},
        )
        return None

    for crossing in result.crossings:
        try:
            dispatch_cluster_alert(
                result.cluster_id,
                school_id,
                crossing,
                store=engine.store,
                channel=channel,
                labeler=labeler,
            )
        except Exception as e:
            logger.error(
                f"Alert dispatch failed for cluster {result.cluster_id}: {e}",
                extra={"school_id": school_id},
            )

    return result


def get_unanswered_groups(
    school_id: str,
    engine: ClusterAssignmentEngine | None = None,
    labeler: ClusterLabeler | None = None,
) -> list[UnansweredQuestionGroup]:
    """Admin view: persistent clusters plus on-the-fly groups of orphans.

    Covers the ``ADMIN_VIEW_LIMIT`` most recent questions. Clusters without a
    label get one (persisted, best-effort); orphan groups are labeled but never
    stored. Sorted by priority, highest first.
    """
    engine = engine or ClusterAssignmentEngine()
    store = engine.store

    questions = store.list_questions(school_id, limit=ADMIN_VIEW_LIMIT)
    if not questions:
        return []
    clusters = store.list_clusters(school_id)

    members: dict[str, list[dict]] = {}
    orphans: list[dict] = []
    for q in questions:
        if q.get("cluster_id"):
            members.setdefault(q["cluster_id"], []).append(q)
        else:
            orphans.append(q)

    groups: list[UnansweredQuestionGroup] = []
    unlabeled: list[UnansweredQuestionGroup] = []
    for cluster in clusters:
        rows = members.get(cluster["id"])
        if not rows:
            continue
        group = _build_group(
            rows,
            label=cluster.get("label") or rows[0]["question"],
            priority_score=float(cluster.get("priority_score") or 0),
            cluster_id=cluster["id"],
        )
        groups.append(group)
        if not cluster.get("label") and len(rows) > 1:
            unlabeled.append(group)

    if orphans:
        orphan_groups = cluster_orphan_questions([
            ClusterableQuestion(
                id=q["id"],
                question=q["question"],
                embedding=q.get("embedding") or [],
                created_at=str(q.get("created_at") or ""),
            )
            for q in orphans
        ])
        labels = label_groups([[q.question for q in g.questions] for g in orphan_groups], labeler)
        for group, label in zip(orphan_groups, labels):
            rows = [
                {"id": q.id, "question": q.question, "created_at": q.created_at}
                for q in group.questions
            ]
            groups.append(_build_group(rows, label=label, priority_score=group.size * VOLUME_WEIGHT))

    if unlabeled:
        _label_clusters(unlabeled, store, labeler)

    groups.sort(key=lambda g: g.priority_score, reverse=True)
    return groups


def _build_group(
    rows: list[dict],
    label: str,
    priority_score: float,
    cluster_id: str | None = None,
) -> UnansweredQuestionGroup:
    """Rows are newest first."""
    return UnansweredQuestionGroup(
        label=label,
        count=len(rows),
        questions=[
            GroupQuestion(id=str(r["id"]), question=r["question"], created_at=str(r.get("created_at") or ""))
            for r in rows
        ],
        oldest_date=str(rows[-1].get("created_at") or ""),
        newest_date=str(rows[0].get("created_at") or ""),
        priority_score=priority_score,
        cluster_id=cluster_id,
    )


def _label_clusters(
    groups: list[UnansweredQuestionGroup],
    store: Any,
    labeler: ClusterLabeler | None,
) -> None:
    labels = label_groups([[q.question for q in g.questions] for g in groups], labeler)
    for group, label in zip(groups, labels):
        group.label = label
        try:
            store.update_cluster(group.cluster_id, {"label": label})
        except Exception as e:
            logger.warning(f"Failed to persist label for cluster {group.cluster_id}: {e}")


def dismiss_question(
    school_id: str,
    question_id: str,
    engine: ClusterAssignmentEngine | None = None,
) -> RemovalResult:
    """Dismiss a single unanswered question."""
    return dismiss_questions(school_id, [question_id], engine=engine)


def dismiss_questions(
    school_id: str,
    question_ids: list[str],
    engine: ClusterAssignmentEngine | None = None,
) -> RemovalResult:
    """Dismiss questions (e.g. a whole cluster); clusters shrink or disappear."""
    engine = engine or ClusterAssignmentEngine()
    result = engine.remove_questions(question_ids, school_id=school_id)
    log_with_context(
        logger,
        logging.INFO,
        f"Dismissed {result.removed_questions} unanswered questions",
        school_id=school_id,
        deleted_clusters=len(result.deleted_clusters),
    )
    return result
