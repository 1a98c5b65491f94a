"""Online assignment of unanswered questions to persistent topic clusters.

Each unanswered question is assigned exactly once, in arrival order, against
the school's current clusters. There is no global reclustering pass:

1. Load the school's clusters (tens, not millions: one per open topic).
2. Cosine similarity between the question and every centroid.
3. Best match >= CLUSTER_ASSIGNMENT_THRESHOLD: join it. The centroid becomes
   the running mean (centroid * n + e) / (n + 1) and the count goes to n + 1.
4. Otherwise: new cluster with centroid = e, count = 1, no label.
5. Link the question to the cluster.
6. Ties (within SIMILARITY_TOLERANCE) go to the larger cluster, then the older.

Removal is the inverse: question rows are deleted, the cluster's count drops,
clusters reaching zero are deleted, and the centroid is maintained by a
``CentroidStrategy`` (approximate = leave as is; exact = recompute from the
remaining members).

Concurrency is an explicit ``AssignmentSerializer`` choice. Without
serialization, two concurrent assignments for the same school can read the
same snapshot and both create a cluster for near-duplicate questions. That
fragmentation is bounded and accepted by default; ``PerSchoolLock`` removes it
within one process at the cost of serializing a school's assignments.

Joins never lose updates: the counter and centroid are written only while
``question_count`` still equals the snapshot value. A join that loses the race
re-reads the clusters and tries again (at most ``MAX_JOIN_ATTEMPTS`` times).

Usage:
    from app.core.cluster_assignment import ClusterAssignmentEngine

    engine = ClusterAssignmentEngine()
    result = engine.assign(question["id"], embedding, school_id)
    if result.crossed_threshold:
        ...
"""

from __future__ import annotations

import contextlib
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, Protocol, Sequence

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.priority import ThresholdCrossing, ThresholdMonitor, compute_priority_score, get_threshold_monitor
from app.core.similarity import SIMILARITY_TOLERANCE, cosine_similarity, mean_vector, running_mean

logger = get_logger(__name__)

MAX_JOIN_ATTEMPTS = 5


class AssignmentConflictError(RuntimeError):
    """A join kept losing to concurrent writers on the chosen cluster."""


# =============================================================================
# Collaborator interfaces
# =============================================================================


class GapStore(Protocol):
    """Persistence used by the engine (see app.db.knowledge_gaps.SupabaseGapStore)."""

    def list_clusters(self, school_id: str) -> list[dict]: ...
    def get_cluster(self, cluster_id: str) -> dict | None: ...
    def insert_cluster(
        self,
        school_id: str,
        centroid: list[float],
        question_count: int,
        priority_score: float,
        last_seen_at: datetime,
    ) -> dict: ...
    def update_cluster(self, cluster_id: str, updates: dict[str, Any]) -> dict: ...
    def update_cluster_if_count(
        self, cluster_id: str, expected_count: int, updates: dict[str, Any]
    ) -> dict | None: ...
    def delete_cluster(self, cluster_id: str) -> None: ...
    def set_question_cluster(self, question_id: str, cluster_id: str) -> None: ...
    def get_questions(self, question_ids: list[str]) -> list[dict]: ...
    def delete_questions(self, question_ids: list[str]) -> None: ...
    def count_cluster_members(self, cluster_id: str) -> int: ...
    def list_member_embeddings(self, cluster_id: str) -> list[list[float]]: ...


class CentroidStrategy(Protocol):
    """How a centroid is maintained when members leave a cluster."""

    name: str

    def after_removal(self, cluster: dict, store: GapStore) -> list[float]: ...


class ApproximateCentroid:
    """Keep the centroid unchanged on removal (drifts toward removed members)."""

    name = "approximate"

    def after_removal(self, cluster: dict, store: GapStore) -> list[float]:
        return list(cluster["centroid"])


class ExactCentroid:
    """Recompute the centroid as the mean of the remaining member embeddings."""

    name = "exact"

    def after_removal(self, cluster: dict, store: GapStore) -> list[float]:
        embeddings = [e for e in store.list_member_embeddings(cluster["id"]) if e]
        if not embeddings:
            return list(cluster["centroid"])
        return mean_vector(embeddings)


class AssignmentSerializer(Protocol):
    """Policy for concurrent assignments within one school."""

    name: str

    def hold(self, school_id: str) -> ContextManager[Any]: ...


class UnserializedAssignment:
    """No coordination; concurrent assignments may fragment near-duplicates."""

    name = "none"

    def hold(self, school_id: str) -> ContextManager[Any]:
        return contextlib.nullcontext()


class PerSchoolLock:
    """Serialize assignments per school within this process."""

    name = "per_school"

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def hold(self, school_id: str) -> ContextManager[Any]:
        with self._guard:
            lock = self._locks.setdefault(str(school_id), threading.Lock())
        return lock


_CENTROID_STRATEGIES: dict[str, Callable[[], CentroidStrategy]] = {
    "approximate": ApproximateCentroid,
    "exact": ExactCentroid,
}

# Locks only serialize if every engine in the process shares them
_SERIALIZERS: dict[str, AssignmentSerializer] = {
    "none": UnserializedAssignment(),
    "per_school": PerSchoolLock(),
}


def get_centroid_strategy(name: str | None = None) -> CentroidStrategy:
    name = name or get_settings().CENTROID_STRATEGY
    try:
        return _CENTROID_STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"Unknown centroid strategy: {name}") from None


def get_assignment_serializer(name: str | None = None) -> AssignmentSerializer:
    name = name or get_settings().ASSIGNMENT_SERIALIZATION
    try:
        return _SERIALIZERS[name]
    except KeyError:
        raise ValueError(f"Unknown assignment serialization: {name}") from None


# =============================================================================
# Results
# =============================================================================


@dataclass
class AssignmentResult:
    """Outcome of assigning one question."""

    cluster_id: str
    created: bool
    similarity: float
    question_count: int
    crossings: list[ThresholdCrossing] = field(default_factory=list)

    @property
    def crossed_threshold(self) -> bool:
        return bool(self.crossings)


@dataclass
class RemovalResult:
    """Outcome of removing questions from their clusters."""

    removed_questions: int = 0
    updated_clusters: list[str] = field(default_factory=list)
    deleted_clusters: list[str] = field(default_factory=list)


# =============================================================================
# Engine
# =============================================================================


class ClusterAssignmentEngine:
    """Assigns unanswered questions to clusters and retires them on removal.

    Args:
        store: Persistence (default SupabaseGapStore)
        threshold: Min centroid similarity to join (default CLUSTER_ASSIGNMENT_THRESHOLD)
        centroid_strategy: Removal policy (default from CENTROID_STRATEGY)
        serializer: Concurrency policy (default from ASSIGNMENT_SERIALIZATION)
        monitor: Fixed threshold monitor; per-school monitor when omitted
        clock: Returns "now" (UTC); injectable for tests
    """

    def __init__(
        self,
        store: GapStore | None = None,
        threshold: float | None = None,
        centroid_strategy: CentroidStrategy | None = None,
        serializer: AssignmentSerializer | None = None,
        monitor: ThresholdMonitor | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        if store is None:
            from app.db.knowledge_gaps import SupabaseGapStore

            store = SupabaseGapStore()
        self.store = store
        self.threshold = get_settings().CLUSTER_ASSIGNMENT_THRESHOLD if threshold is None else threshold
        self.centroid_strategy = centroid_strategy or get_centroid_strategy()
        self.serializer = serializer or get_assignment_serializer()
        self._monitor = monitor
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def monitor_for(self, school_id: str) -> ThresholdMonitor:
        return self._monitor or get_threshold_monitor(school_id)

    # -------------------------------------------------------------------------
    # Assignment
    # -------------------------------------------------------------------------

    def find_best_cluster(
        self,
        embedding: Sequence[float],
        clusters: list[dict],
    ) -> tuple[dict | None, float]:
        """Most similar cluster and its similarity (ties: larger, then older)."""
        best: dict | None = None
        best_sim = float("-inf")

        for cluster in clusters:
            try:
                sim = cosine_similarity(embedding, cluster.get("centroid") or [])
            except ValueError as e:
                logger.warning(f"Skipping cluster {cluster.get('id')} with incompatible centroid: {e}")
                continue

            if best is None or sim > best_sim + SIMILARITY_TOLERANCE:
                best, best_sim = cluster, sim
            elif abs(sim - best_sim) <= SIMILARITY_TOLERANCE and _prefer(cluster, best):
                best, best_sim = cluster, max(sim, best_sim)

        return best, (best_sim if best is not None else 0.0)

    def assign(self, question_id: str, embedding: Sequence[float], school_id: str) -> AssignmentResult:
        """Assign one question to its cluster, creating the cluster if needed.

        Either the question ends up linked with the cluster counters updated,
        or nothing is changed: a failed link undoes the cluster write before
        the error propagates.

        Raises:
            ValueError: If the embedding is empty
            AssignmentConflictError: If every join attempt lost to a concurrent writer
            Exception: Persistence errors (after compensation)
        """
        if not embedding:
            raise ValueError("Cannot assign a question without an embedding")
        embedding = [float(x) for x in embedding]
        monitor = self.monitor_for(school_id)

        with self.serializer.hold(school_id):
            for attempt in range(1, MAX_JOIN_ATTEMPTS + 1):
                clusters = self.store.list_clusters(school_id)
                best, similarity = self.find_best_cluster(embedding, clusters)
                now = self._clock()

                if best is None or similarity < self.threshold:
                    result = self._create(question_id, embedding, school_id, similarity, now, monitor)
                    break

                result = self._join(best, question_id, embedding, similarity, now, monitor)
                if result is not None:
                    break
                logger.info(
                    f"Cluster {best['id']} changed during join of question {question_id}, "
                    f"re-reading ({attempt}/{MAX_JOIN_ATTEMPTS})"
                )
            else:
                raise AssignmentConflictError(
                    f"Question {question_id} lost {MAX_JOIN_ATTEMPTS} join races in school {school_id}"
                )

        logger.info(
            f"Assigned question {question_id} to {'new' if result.created else 'existing'} "
            f"cluster {result.cluster_id} (sim {result.similarity:.3f}, count {result.question_count})",
            extra={"school_id": school_id},
        )
        return result

    def _join(
        self,
        cluster: dict,
        question_id: str,
        embedding: list[float],
        similarity: float,
        now: datetime,
        monitor: ThresholdMonitor,
    ) -> AssignmentResult | None:
        """Join ``cluster`` if its count still matches the snapshot; None otherwise."""
        old_count = int(cluster["question_count"])
        new_count = old_count + 1
        previous = {
            "centroid": cluster["centroid"],
            "question_count": old_count,
            "priority_score": cluster.get("priority_score"),
            "last_seen_at": cluster.get("last_seen_at"),
        }

        joined = self.store.update_cluster_if_count(cluster["id"], old_count, {
            "centroid": running_mean(cluster["centroid"], embedding, old_count),
            "question_count": new_count,
            "priority_score": compute_priority_score(new_count, now, now),
            "last_seen_at": now,
        })
        if joined is None:
            return None

        try:
            self.store.set_question_cluster(question_id, cluster["id"])
        except Exception:
            logger.error(f"Linking question {question_id} failed, restoring cluster {cluster['id']}")
            try:
                restored = self.store.update_cluster_if_count(cluster["id"], new_count, previous)
                if restored is None:
                    # Another question joined in between; recount instead
                    self._shrink_cluster(cluster["id"])
            except Exception:
                logger.exception(f"Failed to restore cluster {cluster['id']} after link failure")
            raise

        return AssignmentResult(
            cluster_id=cluster["id"],
            created=False,
            similarity=similarity,
            question_count=new_count,
            crossings=monitor.crossed(old_count, new_count),
        )

    def _create(
        self,
        question_id: str,
        embedding: list[float],
        school_id: str,
        similarity: float,
        now: datetime,
        monitor: ThresholdMonitor,
    ) -> AssignmentResult:
        cluster = self.store.insert_cluster(
            school_id,
            centroid=embedding,
            question_count=1,
            priority_score=compute_priority_score(1, now, now),
            last_seen_at=now,
        )

        try:
            self.store.set_question_cluster(question_id, cluster["id"])
        except Exception:
            logger.error(f"Linking question {question_id} failed, dropping new cluster {cluster['id']}")
            try:
                self.store.delete_cluster(cluster["id"])
            except Exception:
                logger.exception(f"Failed to drop cluster {cluster['id']} after link failure")
            raise

        return AssignmentResult(
            cluster_id=cluster["id"],
            created=True,
            similarity=similarity,
            question_count=1,
            crossings=monitor.crossed(0, 1),
        )

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    def remove_questions(self, question_ids: list[str], school_id: str | None = None) -> RemovalResult:
        """Delete questions and shrink (or delete) their clusters.

        Args:
            question_ids: Questions to remove
            school_id: When given, questions of other schools are ignored

        Returns:
            RemovalResult with the touched cluster ids
        """
        rows = self.store.get_questions([str(q) for q in question_ids])
        if school_id is not None:
            foreign = [r["id"] for r in rows if str(r.get("school_id")) != str(school_id)]
            if foreign:
                logger.warning(f"Ignoring {len(foreign)} questions outside school {school_id}")
            rows = [r for r in rows if str(r.get("school_id")) == str(school_id)]

        if not rows:
            return RemovalResult()

        cluster_ids = list(dict.fromkeys(r["cluster_id"] for r in rows if r.get("cluster_id")))
        self.store.delete_questions([r["id"] for r in rows])

        result = RemovalResult(removed_questions=len(rows))
        for cluster_id in cluster_ids:
            if self._shrink_cluster(cluster_id):
                result.updated_clusters.append(cluster_id)
            else:
                result.deleted_clusters.append(cluster_id)
        return result

    def _shrink_cluster(self, cluster_id: str) -> bool:
        """Re-sync a cluster after members left. Returns False if it was deleted."""
        remaining = self.store.count_cluster_members(cluster_id)
        if remaining <= 0:
            self.store.delete_cluster(cluster_id)
            logger.info(f"Deleted empty cluster {cluster_id}")
            return False

        cluster = self.store.get_cluster(cluster_id)
        if cluster is None:
            return False

        last_seen = _as_datetime(cluster.get("last_seen_at")) or self._clock()
        self.store.update_cluster(cluster_id, {
            "question_count": remaining,
            "centroid": self.centroid_strategy.after_removal(cluster, self.store),
            "priority_score": compute_priority_score(remaining, last_seen, self._clock()),
        })
        return True


def _prefer(candidate: dict, current: dict) -> bool:
    """Tie-break between equally similar clusters: larger, then older."""
    cand_count = int(candidate.get("question_count") or 0)
    curr_count = int(current.get("question_count") or 0)
    if cand_count != curr_count:
        return cand_count > curr_count
    cand_created = str(candidate.get("created_at") or "")
    curr_created = str(current.get("created_at") or "")
    return bool(cand_created) and (not curr_created or cand_created < curr_created)


def _as_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
