"""Board session: one clinic's queue board, wired end to end.

Owns the queue store, the drag controller and the gateway subscription.
The backend is authoritative: the board starts from a full snapshot and
every pushed lane update replaces local state for that lane.
"""
from collections import deque
from datetime import datetime
from typing import Callable, Deque, List, Optional

from queueboard import config
from queueboard.board_view import render_board
from queueboard.drag import DragController
from queueboard.gateway import StatusSyncGateway, Unsubscribe
from queueboard.logging_config import get_logger
from queueboard.models import CheckInRequest, Lane, VisitRecord, utcnow
from queueboard.store import QueueStore
from queueboard.wait_times import predicted_wait


class BoardSession:
    """Queue board for one clinic and one operator screen."""

    def __init__(
        self,
        gateway: StatusSyncGateway,
        clinic_id: str = config.CLINIC_ID,
        clock: Callable[[], datetime] = utcnow,
        max_notifications: int = 5,
    ):
        self.gateway = gateway
        self.clinic_id = clinic_id
        self.store = QueueStore(clock=clock)
        self.notifications: Deque[str] = deque(maxlen=max_notifications)
        self.controller = DragController(self.store, gateway, notify=self.notify)
        self.logger = get_logger(__name__, clinic_id=clinic_id)
        self._unsubscribe: Optional[Unsubscribe] = None

    @property
    def started(self) -> bool:
        return self._unsubscribe is not None

    async def start(self) -> None:
        """Load the full board, then follow pushed lane updates."""
        board = await self.gateway.fetch_board()
        self.store.replace_board(board)
        self._unsubscribe = self.gateway.subscribe(self.apply_lane_update)
        self.logger.info("board_started", records=len(self.store))

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.controller.drain()
        self.logger.info("board_closed")

    def apply_lane_update(self, lane: Lane, records: List[VisitRecord]) -> None:
        """Authoritative lane snapshot from the backend; it always wins."""
        self.store.replace_snapshot(lane, records)
        self.logger.debug("lane_update_applied", lane=Lane(lane).value, records=len(records))

    def notify(self, message: str) -> None:
        self.notifications.append(message)
        self.logger.warning("board_notification", message=message)

    async def check_in(self, request: CheckInRequest) -> VisitRecord:
        """Register an arrival and show it at the back of the waiting lane."""
        record = await self.gateway.check_in(request)
        # The push channel may have delivered it already
        if record.id not in self.store:
            record = self.store.add_record(record)
        self.logger.info("patient_checked_in", record_id=record.id)
        return record

    async def archive(self, record_id: str) -> None:
        """Take a completed visit off the board, on the backend first."""
        await self.gateway.archive(record_id)
        if record_id in self.store:
            self.store.remove_record(record_id)
        self.logger.info("visit_archived", record_id=record_id)

    def predicted_wait(self, record_id: str) -> dict:
        return predicted_wait(self.store, record_id)

    def render(self, color: bool = False) -> str:
        return render_board(self.store, notifications=list(self.notifications), color=color)
