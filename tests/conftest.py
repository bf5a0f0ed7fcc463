"""Shared test fixtures."""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from queueboard.gateway import StatusSyncGateway, SyncRejected, SyncUnavailable
from queueboard.models import Ack, CheckInRequest, Lane, VisitRecord
from queueboard.store import QueueStore

NOW = datetime(2026, 10, 19, 10, 30, tzinfo=timezone.utc)


def make_record(record_id: str, lane: Lane = Lane.WAITING, minutes_ago: int = 0, **fields) -> VisitRecord:
    """Visit record with sensible demo defaults."""
    return VisitRecord(
        id=record_id,
        patient_name=fields.pop("patient_name", f"Patient {record_id}"),
        service_label=fields.pop("service_label", "General Consultation"),
        assigned_staff=fields.pop("assigned_staff", "Dr. Santos"),
        scheduled_time=fields.pop("scheduled_time", "10:00"),
        lane=lane,
        entered_lane_at=NOW - timedelta(minutes=minutes_ago),
        **fields,
    )


def ids(records) -> List[str]:
    return [r.id for r in records]


class FakeGateway(StatusSyncGateway):
    """
    In-memory backend.

    ``server`` is the authoritative board. Pushes are recorded; set
    ``reject`` to an exception to make pushes fail, or ``push_gate`` to an
    asyncio.Event to hold pushes in flight.
    """

    def __init__(self, board: Optional[Dict[Lane, List[VisitRecord]]] = None):
        self.server: Dict[Lane, List[VisitRecord]] = {lane: [] for lane in Lane}
        for lane, records in (board or {}).items():
            self.server[lane] = list(records)
        self.transitions = []
        self.orders = []
        self.fetches = []
        self.reject: Optional[Exception] = None
        self.fail_fetch = False
        self.push_gate: Optional[asyncio.Event] = None
        self.listeners = []
        self._counter = 0

    async def push_transition(self, record_id, from_lane, to_lane):
        self.transitions.append((record_id, from_lane, to_lane))
        if self.push_gate is not None:
            await self.push_gate.wait()
        if self.reject is not None:
            raise self.reject
        for index, record in enumerate(self.server[from_lane]):
            if record.id == record_id:
                self.server[from_lane].pop(index)
                self.server[to_lane].append(record.moved_to(to_lane, NOW))
                return Ack(record_id=record_id, lane=to_lane)
        raise SyncRejected(f"Record {record_id} not in lane {from_lane.value}", 404)

    async def push_order(self, lane, record_ids):
        self.orders.append((lane, list(record_ids)))
        if self.reject is not None:
            raise self.reject
        by_id = {r.id: r for r in self.server[lane]}
        if sorted(by_id) != sorted(record_ids):
            raise SyncRejected(f"Order does not match the members of lane {lane.value}")
        self.server[lane] = [by_id[i] for i in record_ids]
        return Ack(lane=lane)

    async def fetch_lane(self, lane):
        self.fetches.append(lane)
        if self.fail_fetch:
            raise SyncUnavailable("backend down")
        return list(self.server[lane])

    async def fetch_board(self):
        if self.fail_fetch:
            raise SyncUnavailable("backend down")
        return {lane: list(records) for lane, records in self.server.items()}

    async def check_in(self, request: CheckInRequest):
        self._counter += 1
        record = VisitRecord(
            id=request.id or f"visit-{self._counter}",
            patient_name=request.patient_name,
            service_label=request.service_label,
            assigned_staff=request.assigned_staff,
            scheduled_time=request.scheduled_time,
            lane=Lane.WAITING,
            entered_lane_at=NOW,
        )
        self.server[Lane.WAITING].append(record)
        return record

    async def archive(self, record_id):
        self.server[Lane.COMPLETED] = [r for r in self.server[Lane.COMPLETED] if r.id != record_id]
        return Ack(record_id=record_id)

    def subscribe(self, on_lane_update):
        self.listeners.append(on_lane_update)

        def unsubscribe():
            self.listeners.remove(on_lane_update)

        return unsubscribe

    def emit(self, lane: Lane):
        """Simulate another client's change arriving over the push channel."""
        for listener in list(self.listeners):
            listener(lane, list(self.server[lane]))


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def store(clock) -> QueueStore:
    """Waiting = [P1, P2, P3], InService = [P4], Completed = [P5]."""
    s = QueueStore(clock=clock)
    s.replace_board({
        Lane.WAITING: [make_record("P1", minutes_ago=15), make_record("P2", minutes_ago=10),
                       make_record("P3", minutes_ago=5)],
        Lane.IN_SERVICE: [make_record("P4", Lane.IN_SERVICE, minutes_ago=20)],
        Lane.COMPLETED: [make_record("P5", Lane.COMPLETED, minutes_ago=60)],
    })
    return s


@pytest.fixture
def gateway(store) -> FakeGateway:
    """Backend that starts out agreeing with the store fixture."""
    return FakeGateway(store.snapshot())
