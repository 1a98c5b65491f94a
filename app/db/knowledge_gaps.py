"""Database access layer for unanswered questions and their topic clusters.

Two tables, both scoped by ``school_id``:
  - unanswered_questions: one row per question the corpus could not answer
  - unanswered_clusters: persistent topic clusters (centroid + counters)

``SupabaseGapStore`` is the production store used by the cluster engine,
the knowledge-gap service and the resolution workflow. Embeddings and
centroids are parsed into ``list[float]`` on the way out.
"""

from datetime import datetime, timezone
from typing import Any

from app.core.logging import get_logger
from app.core.similarity import to_vector
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

QUESTIONS_TABLE = "unanswered_questions"
CLUSTERS_TABLE = "unanswered_clusters"

_CLUSTER_COLUMNS = (
    "id, school_id, label, centroid, question_count, priority_score, "
    "last_seen_at, last_alert_boundary, created_at, updated_at"
)


def _parse_cluster(row: dict) -> dict:
    row = dict(row)
    row["centroid"] = to_vector(row.get("centroid"))
    row["question_count"] = int(row.get("question_count") or 0)
    row["last_alert_boundary"] = int(row.get("last_alert_boundary") or 0)
    return row


def _cluster_payload(updates: dict[str, Any]) -> dict[str, Any]:
    payload = dict(updates)
    if isinstance(payload.get("last_seen_at"), datetime):
        payload["last_seen_at"] = payload["last_seen_at"].isoformat()
    payload["updated_at"] = datetime.now(timezone.utc).isoformat()
    return payload


def _parse_question(row: dict) -> dict:
    row = dict(row)
    if "embedding" in row:
        row["embedding"] = to_vector(row.get("embedding"))
    return row


class SupabaseGapStore:
    """Supabase-backed store for unanswered questions and clusters."""

    # =========================================================================
    # Questions
    # =========================================================================

    def insert_question(
        self,
        school_id: str,
        question: str,
        embedding: list[float],
        session_id: str | None = None,
        user_id: str | None = None,
    ) -> dict:
        """Record an unanswered question (not yet clustered)."""
        data: dict[str, Any] = {
            "school_id": str(school_id),
            "question": question,
            "embedding": embedding,
            "session_id": str(session_id) if session_id else None,
            "user_id": str(user_id) if user_id else None,
        }
        # Remove None values to let DB defaults work
        data = {k: v for k, v in data.items() if v is not None}

        result = get_supabase().table(QUESTIONS_TABLE).insert(data).execute()
        if not result.data:
            raise ValueError("No data returned from unanswered question insert")
        return _parse_question(result.data[0])

    def get_questions(self, question_ids: list[str]) -> list[dict]:
        """Get questions by id (without embeddings)."""
        if not question_ids:
            return []
        result = (
            get_supabase()
            .table(QUESTIONS_TABLE)
            .select("id, school_id, question, cluster_id, created_at")
            .in_("id", [str(q) for q in question_ids])
            .execute()
        )
        return result.data or []

    def list_questions(self, school_id: str, limit: int = 200) -> list[dict]:
        """List a school's unanswered questions, newest first, with embeddings."""
        result = (
            get_supabase()
            .table(QUESTIONS_TABLE)
            .select("id, school_id, question, embedding, cluster_id, created_at")
            .eq("school_id", str(school_id))
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [_parse_question(row) for row in result.data or []]

    def list_unclustered_questions(self, school_id: str, limit: int = 1000) -> list[dict]:
        """List questions without a cluster, oldest first (arrival order)."""
        result = (
            get_supabase()
            .table(QUESTIONS_TABLE)
            .select("id, school_id, question, embedding, cluster_id, created_at")
            .eq("school_id", str(school_id))
            .is_("cluster_id", "null")
            .order("created_at", desc=False)
            .limit(limit)
            .execute()
        )
        return [_parse_question(row) for row in result.data or []]

    def set_question_cluster(self, question_id: str, cluster_id: str) -> None:
        """Link a question to its cluster."""
        result = (
            get_supabase()
            .table(QUESTIONS_TABLE)
            .update({"cluster_id": str(cluster_id)})
            .eq("id", str(question_id))
            .execute()
        )
        if not result.data:
            raise ValueError(f"Unanswered question {question_id} not found")

    def delete_questions(self, question_ids: list[str]) -> None:
        """Delete questions by id."""
        if not question_ids:
            return
        (
            get_supabase()
            .table(QUESTIONS_TABLE)
            .delete()
            .in_("id", [str(q) for q in question_ids])
            .execute()
        )

    def count_cluster_members(self, cluster_id: str) -> int:
        """Count live questions referencing a cluster."""
        result = (
            get_supabase()
            .table(QUESTIONS_TABLE)
            .select("id", count="exact")
            .eq("cluster_id", str(cluster_id))
            .execute()
        )
        return result.count or 0

    def list_member_embeddings(self, cluster_id: str) -> list[list[float]]:
        """Embeddings of every live member of a cluster."""
        result = (
            get_supabase()
            .table(QUESTIONS_TABLE)
            .select("embedding")
            .eq("cluster_id", str(cluster_id))
            .execute()
        )
        return [to_vector(row.get("embedding")) for row in result.data or []]

    def list_member_questions(self, cluster_id: str, limit: int = 10) -> list[dict]:
        """Most recent member question texts of a cluster."""
        result = (
            get_supabase()
            .table(QUESTIONS_TABLE)
            .select("id, question, created_at")
            .eq("cluster_id", str(cluster_id))
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []

    # =========================================================================
    # Clusters
    # =========================================================================

    def list_clusters(self, school_id: str) -> list[dict]:
        """List a school's clusters, highest priority first."""
        result = (
            get_supabase()
            .table(CLUSTERS_TABLE)
            .select(_CLUSTER_COLUMNS)
            .eq("school_id", str(school_id))
            .order("priority_score", desc=True)
            .execute()
        )
        return [_parse_cluster(row) for row in result.data or []]

    def get_cluster(self, cluster_id: str) -> dict | None:
        """Get a single cluster by id."""
        result = (
            get_supabase()
            .table(CLUSTERS_TABLE)
            .select(_CLUSTER_COLUMNS)
            .eq("id", str(cluster_id))
            .limit(1)
            .execute()
        )
        rows = result.data or []
        return _parse_cluster(rows[0]) if rows else None

    def insert_cluster(
        self,
        school_id: str,
        centroid: list[float],
        question_count: int,
        priority_score: float,
        last_seen_at: datetime,
    ) -> dict:
        """Create a cluster."""
        result = (
            get_supabase()
            .table(CLUSTERS_TABLE)
            .insert({
                "school_id": str(school_id),
                "centroid": centroid,
                "question_count": question_count,
                "priority_score": priority_score,
                "last_seen_at": last_seen_at.isoformat(),
            })
            .execute()
        )
        if not result.data:
            raise ValueError("No data returned from cluster insert")
        return _parse_cluster(result.data[0])

    def update_cluster(self, cluster_id: str, updates: dict[str, Any]) -> dict:
        """Update cluster fields (centroid, counters, label, timestamps)."""
        result = (
            get_supabase()
            .table(CLUSTERS_TABLE)
            .update(_cluster_payload(updates))
            .eq("id", str(cluster_id))
            .execute()
        )
        if not result.data:
            raise ValueError(f"Cluster {cluster_id} not found")
        return _parse_cluster(result.data[0])

    def update_cluster_if_count(
        self,
        cluster_id: str,
        expected_count: int,
        updates: dict[str, Any],
    ) -> dict | None:
        """
        Update a cluster only while its question_count is still ``expected_count``.

        Returns:
            The updated cluster, or None if the count moved (or the cluster is gone)
        """
        result = (
            get_supabase()
            .table(CLUSTERS_TABLE)
            .update(_cluster_payload(updates))
            .eq("id", str(cluster_id))
            .eq("question_count", expected_count)
            .execute()
        )
        rows = result.data or []
        return _parse_cluster(rows[0]) if rows else None

    def delete_cluster(self, cluster_id: str) -> None:
        """Delete a cluster row."""
        get_supabase().table(CLUSTERS_TABLE).delete().eq("id", str(cluster_id)).execute()

    def claim_alert_boundary(self, cluster_id: str, boundary: int) -> dict | None:
        """
        Record that the alert for ``boundary`` was sent.

        Optimistic: only succeeds while ``last_alert_boundary < boundary``, so
        two workers racing on the same crossing produce one alert.

        Returns:
            The updated cluster, or None if another worker already claimed it
        """
        result = (
            get_supabase()
            .table(CLUSTERS_TABLE)
            .update({"last_alert_boundary": boundary})
            .eq("id", str(cluster_id))
            .lt("last_alert_boundary", boundary)
            .execute()
        )
        rows = result.data or []
        return _parse_cluster(rows[0]) if rows else None
