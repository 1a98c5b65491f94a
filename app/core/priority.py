"""Cluster priority scoring and edge-triggered threshold crossing.

Priority is volume-first with a recency tiebreaker:

    score = question_count * 100 + recency_bonus      (bonus 0..10)

The bonus loses one point per whole day since the cluster last received a
question, so a cluster that is growing *now* outranks an equally large but
stale one, and no amount of recency outranks one more question.

Alerts are edge-triggered: a boundary fires when an assignment moves the
count from below it to at-or-above it, never because the count merely *is*
above it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

VOLUME_WEIGHT = 100
MAX_RECENCY_BONUS = 10

DEFAULT_BAND_NAMES = ("trending", "hot")


def compute_priority_score(
    question_count: int,
    last_seen_at: datetime,
    now: datetime | None = None,
) -> float:
    """Priority score for a cluster; monotonic in question_count."""
    now = now or datetime.now(timezone.utc)
    days_since = max(0.0, (now - last_seen_at).total_seconds() / 86400)
    recency_bonus = max(0, MAX_RECENCY_BONUS - int(days_since))
    return float(max(0, question_count) * VOLUME_WEIGHT + recency_bonus)


@dataclass(frozen=True)
class ThresholdCrossing:
    """One upward crossing of a significance boundary."""

    boundary: int
    band: str


class ThresholdMonitor:
    """Detects upward crossings of an ordered set of count boundaries.

    Args:
        boundaries: Positive question counts; order and duplicates are normalized
        band_names: Names for the bands entered at each boundary, lowest first
    """

    def __init__(self, boundaries: Iterable[int], band_names: Iterable[str] = DEFAULT_BAND_NAMES):
        normalized = sorted(set(int(b) for b in boundaries))
        if any(b <= 0 for b in normalized):
            raise ValueError("Alert boundaries must be positive integers")
        self.boundaries: tuple[int, ...] = tuple(normalized)
        self._band_names = tuple(band_names)

    def band_for(self, boundary: int) -> str:
        idx = self.boundaries.index(boundary)
        if idx < len(self._band_names):
            return self._band_names[idx]
        return f"{boundary}+"

    def crossed(self, old_count: int, new_count: int) -> list[ThresholdCrossing]:
        """Boundaries b with old_count < b <= new_count, lowest first."""
        if new_count <= old_count:
            return []
        return [
            ThresholdCrossing(boundary=b, band=self.band_for(b))
            for b in self.boundaries
            if old_count < b <= new_count
        ]


def get_threshold_monitor(school_id: str | None = None) -> ThresholdMonitor:
    """Build the monitor for a school.

    Uses the school's ``settings.alert_boundaries`` when set, otherwise the
    service-wide ALERT_BOUNDARIES. A settings lookup failure falls back to the
    service default.
    """
    default = get_settings().ALERT_BOUNDARIES
    if not school_id:
        return ThresholdMonitor(default)

    try:
        from app.db.school_settings import get_school_settings

        override = get_school_settings(school_id).get("alert_boundaries")
        if override:
            return ThresholdMonitor(override)
    except Exception as e:
        logger.warning(f"Could not load alert boundaries for school {school_id}, using defaults: {e}")

    return ThresholdMonitor(default)
