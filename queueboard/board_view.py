"""Board view: derived, read-only rendering of the three lanes."""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from queueboard.models import Lane, VisitRecord, utcnow
from queueboard.store import QueueStore
from queueboard.wait_times import average_wait, format_duration, time_in_lane


class Colors:
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    GREEN = "\033[92m"
    RED = "\033[91m"
    BOLD = "\033[1m"
    RESET = "\033[0m"


LANE_COLORS = {
    Lane.WAITING: Colors.YELLOW,
    Lane.IN_SERVICE: Colors.BLUE,
    Lane.COMPLETED: Colors.GREEN,
}


@dataclass(frozen=True)
class CardView:
    record_id: str
    patient_name: str
    service_label: str
    assigned_staff: str
    scheduled_time: str
    status_label: str


@dataclass(frozen=True)
class LaneView:
    lane: Lane
    title: str
    count: int
    cards: List[CardView]


def status_label(record: VisitRecord, now: datetime) -> str:
    if record.lane == Lane.WAITING:
        return f"waiting {format_duration(time_in_lane(record, now))}"
    if record.lane == Lane.IN_SERVICE:
        return "in progress"
    return f"done {record.entered_lane_at.strftime('%H:%M')}"


def build_board(store: QueueStore, now: Optional[datetime] = None) -> List[LaneView]:
    """Lane views in flow order."""
    now = now or utcnow()
    views = []
    for lane in Lane:
        records = store.get_lane(lane)
        cards = [
            CardView(
                record_id=r.id,
                patient_name=r.patient_name,
                service_label=r.service_label,
                assigned_staff=r.assigned_staff,
                scheduled_time=r.scheduled_time,
                status_label=status_label(r, now),
            )
            for r in records
        ]
        views.append(LaneView(lane=lane, title=lane.display_name, count=len(cards), cards=cards))
    return views


def render_board(
    store: QueueStore,
    notifications: Iterable[str] = (),
    now: Optional[datetime] = None,
    color: bool = False,
) -> str:
    """
    Plain-text board, one lane after another.

    Args:
        store: Board to render
        notifications: Transient messages shown above the lanes
        now: Reference time for time-in-lane labels
        color: Wrap lane headers in ANSI colors
    """
    now = now or utcnow()

    def paint(text: str, code: str) -> str:
        return f"{code}{text}{Colors.RESET}" if color else text

    lines = [f"Average wait: {format_duration(average_wait(store, now))}"]
    for message in notifications:
        lines.append(paint(f"! {message}", Colors.RED))

    for view in build_board(store, now):
        lines.append("")
        lines.append(paint(f"== {view.title} ({view.count}) ==", LANE_COLORS[view.lane]))
        if not view.cards:
            lines.append("   (empty)")
        for index, card in enumerate(view.cards):
            lines.append(
                f"{index:>2}. [{card.record_id}] {card.patient_name} - {card.service_label}"
            )
            lines.append(
                f"      {card.assigned_staff} | booked {card.scheduled_time or '--:--'} | {card.status_label}"
            )
    return "\n".join(lines)
