"""One-time script to move legacy unanswered questions into persistent clusters.

Usage:
    python scripts/migrate_clusters.py [school_id]

Questions recorded before clusters existed have no cluster_id. Each one is
replayed through the cluster engine in arrival order (oldest first), exactly
as if it had just been asked, so the resulting counts and centroids follow the
same rules as live traffic. Multi-question clusters left without a label are
then labeled. No alerts are sent for replayed questions.

Safe to re-run: only questions that still have no cluster are touched.
"""

import sys

from app.chains.label_clusters import label_groups
from app.core.cluster_assignment import ClusterAssignmentEngine
from app.db.school_settings import list_schools

BATCH_LIMIT = 1000


def migrate_school(engine: ClusterAssignmentEngine, school_id: str) -> tuple[int, int]:
    """Assign a school's orphan questions. Returns (assigned, skipped)."""
    store = engine.store
    questions = store.list_unclustered_questions(school_id, limit=BATCH_LIMIT)
    if not questions:
        print("  No orphan questions to migrate.")
        return 0, 0

    print(f"  Found {len(questions)} orphan questions")
    assigned = skipped = 0
    for q in questions:
        if not q.get("embedding"):
            skipped += 1
            continue
        try:
            engine.assign(q["id"], q["embedding"], school_id)
            assigned += 1
        except Exception as e:
            print(f"  Failed to assign question {q['id']}: {e}")
            skipped += 1

    unlabeled = [c for c in store.list_clusters(school_id) if not c.get("label") and c["question_count"] > 1]
    if unlabeled:
        texts = [[m["question"] for m in store.list_member_questions(c["id"])] for c in unlabeled]
        for cluster, label in zip(unlabeled, label_groups(texts)):
            store.update_cluster(cluster["id"], {"label": label})
            print(f'  Labeled cluster {cluster["id"]}: "{label}" ({cluster["question_count"]} questions)')

    return assigned, skipped


def main() -> None:
    engine = ClusterAssignmentEngine()

    if len(sys.argv) > 1:
        schools = [{"id": sys.argv[1], "name": sys.argv[1]}]
    else:
        print("Fetching all schools...")
        schools = list_schools()

    total_assigned = total_skipped = 0
    for school in schools:
        print(f"\nProcessing school: {school.get('name')} ({school['id']})")
        assigned, skipped = migrate_school(engine, str(school["id"]))
        total_assigned += assigned
        total_skipped += skipped

    print(f"\nDone. Assigned {total_assigned} questions, skipped {total_skipped}.")


if __name__ == "__main__":
    main()
