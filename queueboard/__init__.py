"""Real-time patient queue board: lanes, drag controller and backend sync."""
from queueboard.models import Lane, VisitRecord
from queueboard.store import QueueStore

__all__ = ["Lane", "VisitRecord", "QueueStore"]
