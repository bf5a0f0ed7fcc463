"""Status sync gateway contract.

The backend is the system of record. The board pushes lane moves to it and
receives authoritative full-lane snapshots back; it never trusts local
state after a reconnect.
"""
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Sequence

from queueboard.models import Ack, CheckInRequest, Lane, VisitRecord

LaneUpdateCallback = Callable[[Lane, List[VisitRecord]], None]
Unsubscribe = Callable[[], None]


class SyncError(Exception):
    """Base class for backend sync failures."""
    pass


class SyncTimeout(SyncError):
    """Backend did not confirm within the sync timeout."""
    pass


class SyncRejected(SyncError):
    """Backend refused the change (business rule, unknown record, ...)."""

    def __init__(self, message: str, status_code: int = 409):
        super().__init__(message)
        self.status_code = status_code


class SyncUnavailable(SyncError):
    """Backend unreachable: retries exhausted or circuit open."""
    pass


class StatusSyncGateway(ABC):
    """Async interface the board core depends on."""

    @abstractmethod
    async def push_transition(self, record_id: str, from_lane: Lane, to_lane: Lane) -> Ack:
        """
        Report a completed lane move.

        Raises:
            SyncRejected: Backend refused the transition
            SyncTimeout: No confirmation in time
            SyncUnavailable: Backend unreachable
        """

    @abstractmethod
    async def push_order(self, lane: Lane, record_ids: Sequence[str]) -> Ack:
        """Report the new front-of-line order of one lane."""

    @abstractmethod
    async def fetch_lane(self, lane: Lane) -> List[VisitRecord]:
        """Authoritative snapshot of one lane."""

    @abstractmethod
    async def fetch_board(self) -> Dict[Lane, List[VisitRecord]]:
        """Authoritative snapshot of all three lanes."""

    @abstractmethod
    async def check_in(self, request: CheckInRequest) -> VisitRecord:
        """Register an arrival; the backend appends it to the waiting lane."""

    @abstractmethod
    def subscribe(self, on_lane_update: LaneUpdateCallback) -> Unsubscribe:
        """
        Receive full-lane updates made by other clients or the backend.

        Returns:
            Callable that stops delivery
        """

    @abstractmethod
    async def archive(self, record_id: str) -> Ack:
        """Take a completed visit off the board."""
