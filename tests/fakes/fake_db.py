"""Fake in-memory gap store for behavioral testing of the cluster engine."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List

BASE_TIME = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class FakeGapStore:
    """In-memory implementation of the SupabaseGapStore interface.

    ``fail_on`` holds method names that raise RuntimeError when called.
    ``before_list_clusters`` runs inside list_clusters (used to stage races).
    """

    def __init__(self):
        self.reset()

    def reset(self):
        """Reset all stores to initial state."""
        self.questions: Dict[str, Dict[str, Any]] = {}
        self.clusters: Dict[str, Dict[str, Any]] = {}
        self.fail_on: set[str] = set()
        self.before_list_clusters: Callable[[], None] | None = None
        self.calls: List[str] = []
        self._seq = 0
        self._lock = threading.Lock()

    def _next(self, prefix: str) -> tuple[str, str]:
        with self._lock:
            self._seq += 1
            seq = self._seq
        return f"{prefix}-{seq}", (BASE_TIME + timedelta(seconds=seq)).isoformat()

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    # Question operations
    def insert_question(self, school_id, question, embedding, session_id=None, user_id=None) -> Dict[str, Any]:
        self._enter("insert_question")
        qid, created = self._next("q")
        row = {
            "id": qid,
            "school_id": str(school_id),
            "question": question,
            "embedding": list(embedding) if embedding else [],
            "cluster_id": None,
            "session_id": session_id,
            "user_id": user_id,
            "created_at": created,
        }
        self.questions[qid] = row
        return dict(row)

    def get_questions(self, question_ids: List[str]) -> List[Dict[str, Any]]:
        self._enter("get_questions")
        return [
            {k: self.questions[q][k] for k in ("id", "school_id", "question", "cluster_id", "created_at")}
            for q in question_ids
            if q in self.questions
        ]

    def list_questions(self, school_id: str, limit: int = 200) -> List[Dict[str, Any]]:
        self._enter("list_questions")
        rows = [dict(q) for q in self.questions.values() if q["school_id"] == str(school_id)]
        rows.sort(key=lambda q: q["created_at"], reverse=True)
        return rows[:limit]

    def list_unclustered_questions(self, school_id: str, limit: int = 1000) -> List[Dict[str, Any]]:
        self._enter("list_unclustered_questions")
        rows = [
            dict(q) for q in self.questions.values()
            if q["school_id"] == str(school_id) and not q["cluster_id"]
        ]
        rows.sort(key=lambda q: q["created_at"])
        return rows[:limit]

    def set_question_cluster(self, question_id: str, cluster_id: str) -> None:
        self._enter("set_question_cluster")
        if question_id not in self.questions:
            raise ValueError(f"Unanswered question {question_id} not found")
        self.questions[question_id]["cluster_id"] = cluster_id

    def delete_questions(self, question_ids: List[str]) -> None:
        self._enter("delete_questions")
        for qid in question_ids:
            self.questions.pop(qid, None)

    def count_cluster_members(self, cluster_id: str) -> int:
        self._enter("count_cluster_members")
        return sum(1 for q in self.questions.values() if q["cluster_id"] == cluster_id)

    def list_member_embeddings(self, cluster_id: str) -> List[List[float]]:
        self._enter("list_member_embeddings")
        return [list(q["embedding"]) for q in self.questions.values() if q["cluster_id"] == cluster_id]

    def list_member_questions(self, cluster_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        self._enter("list_member_questions")
        rows = [
            {"id": q["id"], "question": q["question"], "created_at": q["created_at"]}
            for q in self.questions.values()
            if q["cluster_id"] == cluster_id
        ]
        rows.sort(key=lambda q: q["created_at"], reverse=True)
        return rows[:limit]

    # Cluster operations
    def list_clusters(self, school_id: str) -> List[Dict[str, Any]]:
        self._enter("list_clusters")
        snapshot = [
            dict(c) for c in self.clusters.values() if c["school_id"] == str(school_id)
        ]
        if self.before_list_clusters:
            self.before_list_clusters()
        snapshot.sort(key=lambda c: c["priority_score"], reverse=True)
        return snapshot

    def get_cluster(self, cluster_id: str) -> Dict[str, Any] | None:
        self._enter("get_cluster")
        cluster = self.clusters.get(cluster_id)
        return dict(cluster) if cluster else None

    def insert_cluster(self, school_id, centroid, question_count, priority_score, last_seen_at) -> Dict[str, Any]:
        self._enter("insert_cluster")
        cid, created = self._next("c")
        row = {
            "id": cid,
            "school_id": str(school_id),
            "label": None,
            "centroid": list(centroid),
            "question_count": question_count,
            "priority_score": priority_score,
            "last_seen_at": last_seen_at.isoformat(),
            "last_alert_boundary": 0,
            "created_at": created,
            "updated_at": created,
        }
        self.clusters[cid] = row
        return dict(row)

    def update_cluster(self, cluster_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        self._enter("update_cluster")
        if cluster_id not in self.clusters:
            raise ValueError(f"Cluster {cluster_id} not found")
        payload = dict(updates)
        if isinstance(payload.get("last_seen_at"), datetime):
            payload["last_seen_at"] = payload["last_seen_at"].isoformat()
        self.clusters[cluster_id].update(payload)
        return dict(self.clusters[cluster_id])

    def update_cluster_if_count(
        self, cluster_id: str, expected_count: int, updates: Dict[str, Any]
    ) -> Dict[str, Any] | None:
        self._enter("update_cluster_if_count")
        with self._lock:
            cluster = self.clusters.get(cluster_id)
            if cluster is None or cluster["question_count"] != expected_count:
                return None
            payload = dict(updates)
            if isinstance(payload.get("last_seen_at"), datetime):
                payload["last_seen_at"] = payload["last_seen_at"].isoformat()
            cluster.update(payload)
            return dict(cluster)

    def delete_cluster(self, cluster_id: str) -> None:
        self._enter("delete_cluster")
        self.clusters.pop(cluster_id, None)
        for q in self.questions.values():
            if q["cluster_id"] == cluster_id:
                q["cluster_id"] = None

    def claim_alert_boundary(self, cluster_id: str, boundary: int) -> Dict[str, Any] | None:
        self._enter("claim_alert_boundary")
        with self._lock:
            cluster = self.clusters.get(cluster_id)
            if cluster is None or cluster["last_alert_boundary"] >= boundary:
                return None
            cluster["last_alert_boundary"] = boundary
            return dict(cluster)

    # Helpers for assertions
    def clustered_question_count(self, school_id: str | None = None) -> int:
        return sum(
            1 for q in self.questions.values()
            if q["cluster_id"] and (school_id is None or q["school_id"] == school_id)
        )

    def total_cluster_count(self, school_id: str | None = None) -> int:
        return sum(
            c["question_count"] for c in self.clusters.values()
            if school_id is None or c["school_id"] == school_id
        )
