"""Drag controller: turns drop gestures into queue store moves.

Two layers:
- ``reduce``: pure transition function over one gesture
  (IDLE -> DRAGGING -> DROPPED | CANCELLED)
- ``DragController``: applies dropped gestures to the store optimistically,
  reports them to the sync gateway in the background, and re-syncs from
  the backend whenever the store or the backend refuses a move
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from queueboard.gateway import StatusSyncGateway, SyncError
from queueboard.models import Lane, VisitRecord
from queueboard.store import InvalidIndex, QueueError, QueueStore

logger = logging.getLogger(__name__)


class DragPhase(str, Enum):
    """Gesture phases. DROPPED and CANCELLED hand control back to IDLE."""
    IDLE = "idle"
    DRAGGING = "dragging"
    DROPPED = "dropped"
    CANCELLED = "cancelled"


VALID_PHASE_TRANSITIONS: Dict[DragPhase, List[DragPhase]] = {
    DragPhase.IDLE: [DragPhase.DRAGGING],
    DragPhase.DRAGGING: [DragPhase.DROPPED, DragPhase.CANCELLED],
    DragPhase.DROPPED: [DragPhase.IDLE, DragPhase.DRAGGING],
    DragPhase.CANCELLED: [DragPhase.IDLE, DragPhase.DRAGGING],
}


class DragProtocolError(Exception):
    """Raised for an event that makes no sense in the current phase."""
    pass


@dataclass(frozen=True)
class DragState:
    phase: DragPhase = DragPhase.IDLE
    record_id: Optional[str] = None
    source_lane: Optional[Lane] = None
    source_index: Optional[int] = None
    target_lane: Optional[Lane] = None
    target_index: Optional[int] = None


IDLE = DragState()


@dataclass(frozen=True)
class Grab:
    record_id: str
    lane: Lane
    index: int


@dataclass(frozen=True)
class Drop:
    """Release over (lane, index); either being None means outside any lane."""
    lane: Optional[Lane]
    index: Optional[int]


@dataclass(frozen=True)
class Cancel:
    pass


DragEvent = Union[Grab, Drop, Cancel]


def reduce(state: DragState, event: DragEvent) -> DragState:
    """
    Pure gesture transition.

    Raises:
        DragProtocolError: Grab while dragging, or Drop with nothing grabbed
    """
    if isinstance(event, Grab):
        if DragPhase.DRAGGING not in VALID_PHASE_TRANSITIONS[state.phase]:
            raise DragProtocolError(f"Already dragging {state.record_id}")
        return DragState(
            phase=DragPhase.DRAGGING,
            record_id=event.record_id,
            source_lane=Lane(event.lane),
            source_index=event.index,
        )

    if isinstance(event, Drop):
        if DragPhase.DROPPED not in VALID_PHASE_TRANSITIONS[state.phase]:
            raise DragProtocolError("Drop without a grabbed card")
        if event.lane is None or event.index is None:
            return replace(state, phase=DragPhase.CANCELLED)
        return replace(
            state,
            phase=DragPhase.DROPPED,
            target_lane=Lane(event.lane),
            target_index=event.index,
        )

    if isinstance(event, Cancel):
        # Escape with nothing grabbed is harmless
        if state.phase != DragPhase.DRAGGING:
            return state
        return replace(state, phase=DragPhase.CANCELLED)

    raise DragProtocolError(f"Unknown drag event: {event!r}")


class DropOutcome(str, Enum):
    MOVED = "moved"
    NO_CHANGE = "no_change"
    CANCELLED = "cancelled"
    REVERTED = "reverted"


class DragController:
    """
    Applies drag gestures to one queue store.

    Moves are optimistic: the store changes before the backend answers.
    Background sync tasks never block further drags; when the backend says
    no, the affected lanes are re-fetched rather than rolled back by guess.
    """

    def __init__(
        self,
        store: QueueStore,
        gateway: StatusSyncGateway,
        notify: Optional[Callable[[str], None]] = None,
    ):
        """
        Args:
            store: Board state to mutate
            gateway: Backend sync
            notify: Receives short user-facing messages (reverts, failures)
        """
        self.store = store
        self.gateway = gateway
        self._notify = notify or (lambda message: logger.info(message))
        self.state: DragState = IDLE
        self.last_outcome: Optional[DropOutcome] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def dragging(self) -> Optional[VisitRecord]:
        """Card currently under the pointer, if any."""
        if self.state.phase != DragPhase.DRAGGING:
            return None
        for record in self.store.get_lane(self.state.source_lane):
            if record.id == self.state.record_id:
                return record
        return None

    @property
    def pending_syncs(self) -> int:
        return len(self._pending)

    def grab(self, lane: Lane, index: int) -> VisitRecord:
        """
        Pick up the card at (lane, index).

        Raises:
            InvalidIndex: If no card sits at that index
            DragProtocolError: If a card is already grabbed
        """
        lane = Lane(lane)
        records = self.store.get_lane(lane)
        if not 0 <= index < len(records):
            raise InvalidIndex(index, lane, max(len(records) - 1, 0))
        record = records[index]
        self.state = reduce(self.state, Grab(record.id, lane, index))
        return record

    def drop(self, lane: Optional[Lane], index: Optional[int]) -> DropOutcome:
        """
        Release the grabbed card over (lane, index).

        ``index`` addresses the destination lane after the card has been
        lifted out of its source. Passing None for either argument means the
        card was released outside every lane, which cancels the gesture.
        Whether the drop is in place is judged against where the card sits
        now, which a remote update may have changed since the grab.
        """
        gesture = reduce(self.state, Drop(lane, index))
        self.state = IDLE

        if gesture.phase == DragPhase.CANCELLED:
            outcome = DropOutcome.CANCELLED
        else:
            outcome = self._apply(gesture)

        self.last_outcome = outcome
        return outcome

    def cancel(self) -> None:
        """Abort the gesture (escape key); the store is untouched."""
        gesture = reduce(self.state, Cancel())
        self.state = IDLE
        if gesture.phase == DragPhase.CANCELLED:
            self.last_outcome = DropOutcome.CANCELLED

    def move(self, record_id: str, to_lane: Lane, to_index: int) -> DropOutcome:
        """Grab-and-drop a card by id (keyboard and remote-control path)."""
        lane, index = self.store.find(record_id)
        self.grab(lane, index)
        return self.drop(to_lane, to_index)

    async def drain(self) -> None:
        """Wait for every in-flight sync (and any re-sync it triggers)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def resync(self, lanes: Iterable[Lane]) -> bool:
        """
        Replace the given lanes with fresh backend snapshots.

        All lanes are fetched before any is applied, so the board jumps
        straight from the optimistic state to the server's.

        Returns:
            True if the board now mirrors the backend for those lanes
        """
        wanted = set(lanes)
        lanes = [lane for lane in Lane if lane in wanted]
        try:
            snapshots = await asyncio.gather(*(self.gateway.fetch_lane(lane) for lane in lanes))
        except SyncError as e:
            logger.error(f"Re-sync of {[lane.value for lane in lanes]} failed: {e}")
            self._notify("Could not refresh the board from the server; it may be out of date")
            return False

        for lane, records in zip(lanes, snapshots):
            self.store.replace_snapshot(lane, records)
        return True

    def _apply(self, gesture: DragState) -> DropOutcome:
        try:
            changed = self.store.move_record(
                gesture.record_id,
                gesture.source_lane,
                gesture.target_lane,
                gesture.target_index,
            )
        except QueueError as e:
            logger.warning(f"Local move of {gesture.record_id} refused: {e}")
            self._notify("That card changed on another screen; refreshing the board")
            self._spawn(self.resync({gesture.source_lane, gesture.target_lane}))
            return DropOutcome.REVERTED

        if not changed:
            return DropOutcome.NO_CHANGE

        if gesture.source_lane == gesture.target_lane:
            order = [r.id for r in self.store.get_lane(gesture.target_lane)]
            self._spawn(self._sync_order(gesture.target_lane, order))
        else:
            target = [r.id for r in self.store.get_lane(gesture.target_lane)]
            # The backend appends transitioned records; anywhere else needs an order push
            order = target if gesture.target_index != len(target) - 1 else None
            self._spawn(
                self._sync_transition(
                    gesture.record_id, gesture.source_lane, gesture.target_lane, order
                )
            )
        return DropOutcome.MOVED

    async def _sync_transition(
        self,
        record_id: str,
        from_lane: Lane,
        to_lane: Lane,
        order: Optional[List[str]] = None,
    ) -> None:
        try:
            await self.gateway.push_transition(record_id, from_lane, to_lane)
        except SyncError as e:
            logger.warning(
                f"Backend did not accept {record_id} {from_lane.value} -> {to_lane.value}: {e}"
            )
            self._notify(f"Move not saved: {e}")
            await self.resync({from_lane, to_lane})
            return
        if order is not None:
            await self._sync_order(to_lane, order)

    async def _sync_order(self, lane: Lane, record_ids: List[str]) -> None:
        try:
            await self.gateway.push_order(lane, record_ids)
        except SyncError as e:
            logger.warning(f"Backend did not accept new order of {lane.value}: {e}")
            self._notify(f"New order not saved: {e}")
            await self.resync({lane})

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
