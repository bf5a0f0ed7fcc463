"""Wait-time figures derived from the queue store.

Estimates follow the clinic's rule of thumb: every patient ahead in the
waiting lane adds one average service slot.
"""
from datetime import datetime, timedelta
from typing import Optional

from queueboard import config
from queueboard.models import Lane, VisitRecord, utcnow
from queueboard.store import QueueStore


def time_in_lane(record: VisitRecord, now: Optional[datetime] = None) -> timedelta:
    """Time since the record entered its current lane (never negative)."""
    now = now or utcnow()
    return max(now - record.entered_lane_at, timedelta(0))


def format_duration(delta: timedelta) -> str:
    """Compact board label: 45s, 12m, 1h05m."""
    seconds = int(delta.total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    return f"{minutes // 60}h{minutes % 60:02d}m"


def average_wait(store: QueueStore, now: Optional[datetime] = None) -> timedelta:
    """Mean time-in-lane of everyone currently waiting (zero when empty)."""
    waiting = store.get_lane(Lane.WAITING)
    if not waiting:
        return timedelta(0)
    now = now or utcnow()
    total = sum((time_in_lane(r, now) for r in waiting), timedelta(0))
    return total / len(waiting)


def predicted_wait(
    store: QueueStore,
    record_id: str,
    average_service_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Predict when a waiting patient will be seen.

    Args:
        store: Board to read
        record_id: Visit to estimate
        average_service_minutes: Minutes per patient ahead
            (default: config.AVERAGE_SERVICE_MINUTES)
        now: Reference time

    Returns:
        Dict with position, patients_ahead, estimated_wait_minutes and
        estimated_time. Records outside the waiting lane report zero wait.

    Raises:
        RecordNotFound: If record_id is not on the board
    """
    if average_service_minutes is None:
        average_service_minutes = config.AVERAGE_SERVICE_MINUTES
    now = now or utcnow()

    lane, index = store.find(record_id)
    if lane != Lane.WAITING:
        return {
            "position": None,
            "patients_ahead": 0,
            "estimated_wait_minutes": 0,
            "estimated_time": now,
        }

    minutes = index * average_service_minutes
    return {
        "position": index + 1,
        "patients_ahead": index,
        "estimated_wait_minutes": minutes,
        "estimated_time": now + timedelta(minutes=minutes),
    }
