"""Knowledge-gap alerts for clusters that cross a significance boundary.

The cluster engine reports crossings; this module turns one crossing into at
most one alert. The claim on ``last_alert_boundary`` is an optimistic update,
so concurrent workers that observed the same crossing produce a single alert.
How the alert reaches admins is the ``AlertChannel``'s business; the default
channel writes in-app notifications.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from app.chains.label_clusters import ClusterLabeler, label_groups
from app.core.logging import get_logger
from app.core.priority import ThresholdCrossing

logger = get_logger(__name__)

ALERT_NOTIFICATION_TYPE = "cluster_alert"
SAMPLE_QUESTIONS = 3
DEFAULT_LABEL = "Unanswered questions"


@dataclass
class ClusterAlert:
    """Payload handed to an alert channel."""

    cluster_id: str
    school_id: str
    boundary: int
    band: str
    question_count: int
    label: str
    sample_questions: list[str] = field(default_factory=list)


class AlertChannel(Protocol):
    def notify(self, alert: ClusterAlert) -> None: ...


class InAppAlertChannel:
    """Creates an in-app notification for every admin of the school."""

    def notify(self, alert: ClusterAlert) -> None:
        from app.db.notifications import create_notifications
        from app.db.school_settings import get_school, list_school_admin_ids

        admin_ids = list_school_admin_ids(alert.school_id)
        if not admin_ids:
            logger.info(f"No admins to alert for school {alert.school_id}")
            return

        school = get_school(alert.school_id) or {}
        slug = school.get("slug") or alert.school_id
        samples = "; ".join(alert.sample_questions)

        create_notifications(
            admin_ids,
            alert.school_id,
            type=ALERT_NOTIFICATION_TYPE,
            title=f'{alert.question_count}+ parents asking about "{alert.label}"',
            body=f"A knowledge gap is {alert.band}. Sample questions: {samples}" if samples
            else f"A knowledge gap is {alert.band}.",
            link=f"/s/{slug}/admin/feedback",
        )


def dispatch_cluster_alert(
    cluster_id: str,
    school_id: str,
    crossing: ThresholdCrossing,
    store=None,
    channel: AlertChannel | None = None,
    labeler: ClusterLabeler | None = None,
) -> bool:
    """Send the alert for one threshold crossing, exactly once.

    Labels the cluster first if it has no label yet (and persists the label).

    Returns:
        True if this call sent the alert, False if it was already claimed
    """
    if store is None:
        from app.db.knowledge_gaps import SupabaseGapStore

        store = SupabaseGapStore()
    channel = channel or InAppAlertChannel()

    claimed = store.claim_alert_boundary(cluster_id, crossing.boundary)
    if not claimed:
        logger.info(f"Alert for cluster {cluster_id} at {crossing.boundary} already sent")
        return False

    members = store.list_member_questions(cluster_id, limit=10)
    texts = [m["question"] for m in members if m.get("question")]

    label = claimed.get("label")
    if not label:
        label = label_groups([texts], labeler)[0] if texts else DEFAULT_LABEL
        try:
            store.update_cluster(cluster_id, {"label": label})
        except Exception as e:
            logger.warning(f"Failed to persist label for cluster {cluster_id}: {e}")

    alert = ClusterAlert(
        cluster_id=cluster_id,
        school_id=school_id,
        boundary=crossing.boundary,
        band=crossing.band,
        question_count=int(claimed.get("question_count") or crossing.boundary),
        label=label,
        sample_questions=texts[:SAMPLE_QUESTIONS],
    )
    channel.notify(alert)
    logger.info(
        f"Knowledge-gap alert sent for cluster {cluster_id} ({crossing.band}, {alert.question_count})",
        extra={"school_id": school_id},
    )
    return True
