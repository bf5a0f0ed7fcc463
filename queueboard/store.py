"""In-memory queue store: three ordered lanes of visit records.

Pattern: single owner, synchronous mutation. Every mutation validates first
and then applies, so no partial state is observable, and the membership
invariant (each id in exactly one lane, exactly once) is re-checked after
every change.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from queueboard.models import Lane, VisitRecord, utcnow

logger = logging.getLogger(__name__)


class QueueError(Exception):
    """Base class for queue store errors."""
    pass


class RecordNotFound(QueueError):
    """Raised when a record id is not where the caller says it is."""

    def __init__(self, record_id: str, lane: Optional[Lane] = None):
        where = f" in lane {lane.value}" if lane is not None else ""
        super().__init__(f"Record {record_id} not found{where}")
        self.record_id = record_id
        self.lane = lane


class InvalidIndex(QueueError):
    """Raised when a destination index is outside the insertion range."""

    def __init__(self, index: int, lane: Lane, length: int):
        super().__init__(
            f"Index {index} out of bounds for lane {lane.value} (valid: 0..{length})"
        )
        self.index = index
        self.lane = lane
        self.length = length


class DuplicateRecord(QueueError):
    """Raised when an id would appear more than once on the board."""

    def __init__(self, record_id: str):
        super().__init__(f"Record {record_id} already on the board")
        self.record_id = record_id


class QueueInvariantError(QueueError):
    """Raised when lane membership is inconsistent."""
    pass


class QueueStore:
    """
    Owns the three lane sequences of one board.

    Responsibilities:
    - Read-only lane snapshots
    - Atomic moves (the only way lane membership changes locally)
    - Authoritative snapshot replacement from the backend
    - Check-in and archival

    Records are immutable; moves store a re-stamped copy.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        """
        Initialize an empty board.

        Args:
            clock: Source of lane-transition timestamps (injectable for tests)
        """
        self._clock = clock
        self._lanes: Dict[Lane, List[VisitRecord]] = {lane: [] for lane in Lane}

    def get_lane(self, lane: Lane) -> Tuple[VisitRecord, ...]:
        """Ordered snapshot of one lane (empty tuple when the lane is empty)."""
        return tuple(self._lanes[Lane(lane)])

    def snapshot(self) -> Dict[Lane, Tuple[VisitRecord, ...]]:
        """Ordered snapshot of every lane."""
        return {lane: tuple(records) for lane, records in self._lanes.items()}

    def find(self, record_id: str) -> Tuple[Lane, int]:
        """
        Locate a record.

        Returns:
            (lane, index) of the record

        Raises:
            RecordNotFound: If the id is not on the board
        """
        for lane, records in self._lanes.items():
            for index, record in enumerate(records):
                if record.id == record_id:
                    return lane, index
        raise RecordNotFound(record_id)

    def __contains__(self, record_id: str) -> bool:
        return any(r.id == record_id for records in self._lanes.values() for r in records)

    def __len__(self) -> int:
        return sum(len(records) for records in self._lanes.values())

    def move_record(
        self,
        record_id: str,
        from_lane: Lane,
        to_lane: Lane,
        to_index: int,
    ) -> bool:
        """
        Move a record between (or within) lanes.

        ``to_index`` addresses the destination lane as it looks after the
        record has been taken out of the source, so reordering within one
        lane and appending both work without off-by-one adjustments.

        Args:
            record_id: Record to move
            from_lane: Lane the record is expected to be in
            to_lane: Destination lane
            to_index: Insertion point in [0, len(destination after removal)]

        Returns:
            True if the board changed, False for an in-place drop

        Raises:
            RecordNotFound: If record_id is not in from_lane
            InvalidIndex: If to_index is out of bounds
        """
        from_lane, to_lane = Lane(from_lane), Lane(to_lane)
        source = self._lanes[from_lane]
        from_index = self._index_of(source, record_id)
        if from_index is None:
            raise RecordNotFound(record_id, from_lane)

        same_lane = from_lane == to_lane
        dest_length = len(source) - 1 if same_lane else len(self._lanes[to_lane])
        if isinstance(to_index, bool) or not isinstance(to_index, int) or not 0 <= to_index <= dest_length:
            raise InvalidIndex(to_index, to_lane, dest_length)

        if same_lane and from_index == to_index:
            return False

        record = source.pop(from_index)
        if not same_lane:
            record = record.moved_to(to_lane, self._clock())
        self._lanes[to_lane].insert(to_index, record)
        self.check_invariants()

        logger.debug(
            f"Moved {record_id} {from_lane.value}[{from_index}] -> {to_lane.value}[{to_index}]"
        )
        return True

    def replace_snapshot(self, lane: Lane, records: Iterable[VisitRecord]) -> None:
        """
        Replace an entire lane with the backend's authoritative sequence.

        Any local optimistic state for the lane is discarded. Records present
        in the incoming sequence are dropped from other lanes, where they are
        stale, so the membership invariant holds.

        Raises:
            DuplicateRecord: If the payload lists an id twice (nothing applied)
        """
        lane = Lane(lane)
        incoming = [r if r.lane == lane else r.model_copy(update={"lane": lane}) for r in records]
        seen = set()
        for record in incoming:
            if record.id in seen:
                raise DuplicateRecord(record.id)
            seen.add(record.id)

        for other, existing in self._lanes.items():
            if other != lane:
                self._lanes[other] = [r for r in existing if r.id not in seen]
        self._lanes[lane] = incoming
        self.check_invariants()

        logger.debug(f"Replaced lane {lane.value} with {len(incoming)} records")

    def replace_board(self, lanes: Mapping[Lane, Iterable[VisitRecord]]) -> None:
        """
        Replace every lane at once (initial load and reconnect).

        Lanes missing from ``lanes`` become empty.

        Raises:
            DuplicateRecord: If an id appears more than once (nothing applied)
        """
        incoming: Dict[Lane, List[VisitRecord]] = {}
        seen = set()
        for lane in Lane:
            incoming[lane] = []
            for record in lanes.get(lane, ()):
                if record.id in seen:
                    raise DuplicateRecord(record.id)
                seen.add(record.id)
                incoming[lane].append(
                    record if record.lane == lane else record.model_copy(update={"lane": lane})
                )
        self._lanes = incoming
        self.check_invariants()

    def add_record(self, record: VisitRecord) -> VisitRecord:
        """
        Check a visit in: append it to the waiting lane.

        A record already marked as waiting keeps its check-in timestamp;
        anything else is re-stamped on entry.

        Raises:
            DuplicateRecord: If the id is already on the board
        """
        if record.id in self:
            raise DuplicateRecord(record.id)
        if record.lane != Lane.WAITING:
            record = record.moved_to(Lane.WAITING, self._clock())
        self._lanes[Lane.WAITING].append(record)
        self.check_invariants()
        return record

    def remove_record(self, record_id: str) -> VisitRecord:
        """
        Take a record off the board (archival).

        Raises:
            RecordNotFound: If the id is not on the board
        """
        lane, index = self.find(record_id)
        return self._lanes[lane].pop(index)

    def check_invariants(self) -> None:
        """
        Verify every id appears in exactly one lane, exactly once.

        Raises:
            QueueInvariantError: If membership is inconsistent
        """
        seen: Dict[str, Lane] = {}
        for lane, records in self._lanes.items():
            for record in records:
                if record.id in seen:
                    raise QueueInvariantError(
                        f"Record {record.id} appears in {seen[record.id].value} and {lane.value}"
                    )
                if record.lane != lane:
                    raise QueueInvariantError(
                        f"Record {record.id} in lane {lane.value} claims lane {record.lane.value}"
                    )
                seen[record.id] = lane

    @staticmethod
    def _index_of(records: List[VisitRecord], record_id: str) -> Optional[int]:
        for index, record in enumerate(records):
            if record.id == record_id:
                return index
        return None
