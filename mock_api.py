"""Mock queue backend for the patient queue board.

Flask server with realistic endpoints for:
- Full-board and per-lane snapshots
- Lane transitions (business rules enforced here, not in the board)
- Lane reordering, check-in and archival
- Server-Sent Events stream of authoritative lane updates

Run with: python mock_api.py
"""
import itertools
import json
import queue
import threading
from datetime import timedelta
from typing import Dict, List, Optional

from flask import Flask, Response, jsonify, request, stream_with_context
from flask_cors import CORS
from pydantic import ValidationError

from queueboard import config
from queueboard.logging_config import RequestIDMiddleware, get_logger, setup_structured_logging
from queueboard.models import (
    CheckInRequest,
    Lane,
    LaneUpdate,
    OrderRequest,
    TransitionRequest,
    VisitRecord,
    utcnow,
    validate_transition,
)

app = Flask(__name__)
CORS(app)
app.wsgi_app = RequestIDMiddleware(app.wsgi_app)

logger = get_logger("mock_api", clinic_id=config.CLINIC_ID)

KEEPALIVE_SECONDS = 15

# In-memory storage, guarded by one lock (Flask serves requests on threads)
lanes: Dict[Lane, List[VisitRecord]] = {lane: [] for lane in Lane}
lanes_lock = threading.Lock()
visit_counter = itertools.count(1000)

# One queue per connected stream
subscribers: List[queue.Queue] = []
subscribers_lock = threading.Lock()


def seed_board() -> None:
    """Reset to the demo morning board."""
    now = utcnow()
    demo = [
        ("1", "Maria Silva", "General Consultation", "Dr. Santos", "10:30", Lane.WAITING, 15),
        ("2", "João Paulo", "Cardiology", "Dr. Costa", "10:45", Lane.WAITING, 5),
        ("3", "Ana Beatriz", "Pediatrics", "Dr. Lima", "10:15", Lane.IN_SERVICE, 10),
        ("4", "Pedro Henrique", "Blood Test", "Lab", "09:00", Lane.COMPLETED, 60),
    ]
    with lanes_lock:
        for lane in Lane:
            lanes[lane] = []
        for record_id, name, service, staff, booked, lane, minutes_ago in demo:
            lanes[lane].append(VisitRecord(
                id=record_id,
                patient_name=name,
                service_label=service,
                assigned_staff=staff,
                scheduled_time=booked,
                lane=lane,
                entered_lane_at=now - timedelta(minutes=minutes_ago),
            ))


def error(message: str, status: int):
    return jsonify({"success": False, "error": message}), status


def lane_payload(lane: Lane) -> list:
    return [r.to_wire() for r in lanes[lane]]


def find_record(record_id: str, lane: Optional[Lane] = None):
    """Return (lane, index) or (None, None). Caller holds lanes_lock."""
    for candidate in ([lane] if lane else list(Lane)):
        for index, record in enumerate(lanes[candidate]):
            if record.id == record_id:
                return candidate, index
    return None, None


def subscribe_events() -> queue.Queue:
    events: queue.Queue = queue.Queue()
    with subscribers_lock:
        subscribers.append(events)
    return events


def unsubscribe_events(events: queue.Queue) -> None:
    with subscribers_lock:
        if events in subscribers:
            subscribers.remove(events)


def broadcast(*changed: Lane) -> None:
    """Push the authoritative sequence of every changed lane to all streams.

    Snapshot and enqueue happen under lanes_lock, so every stream sees lane
    states in the order the changes were made.
    """
    with lanes_lock:
        updates = [
            LaneUpdate(lane=lane, records=list(lanes[lane])).to_wire()
            for lane in dict.fromkeys(changed)
        ]
        with subscribers_lock:
            targets = list(subscribers)
        for update in updates:
            for events in targets:
                events.put(update)


@app.route('/health', methods=['GET'])
def health():
    return jsonify({"status": "ok", "clinic_id": config.CLINIC_ID})


@app.route('/api/queue', methods=['GET'])
def get_board():
    """GET /api/queue - All three lanes."""
    with lanes_lock:
        data = {lane.value: lane_payload(lane) for lane in Lane}
    return jsonify({"success": True, "data": data})


@app.route('/api/queue/<lane_id>', methods=['GET'])
def get_lane(lane_id):
    """GET /api/queue/waiting - One lane, front of line first."""
    try:
        lane = Lane(lane_id)
    except ValueError:
        return error(f"Unknown lane '{lane_id}'", 404)
    with lanes_lock:
        data = lane_payload(lane)
    return jsonify({"success": True, "data": data})


@app.route('/api/queue/transitions', methods=['POST'])
def post_transition():
    """POST /api/queue/transitions - Record a lane move.

    Expected JSON body:
    {"recordId": "2", "fromLane": "waiting", "toLane": "in_service"}

    The record is appended to the back of the destination lane.
    """
    try:
        body = TransitionRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return error(f"Invalid transition: {e.error_count()} errors", 400)

    if not validate_transition(body.from_lane, body.to_lane, allow_skip=config.ALLOW_LANE_SKIP):
        return error(
            f"Transition {body.from_lane.value} -> {body.to_lane.value} is not allowed", 409
        )

    with lanes_lock:
        lane, index = find_record(body.record_id, body.from_lane)
        if lane is None:
            return error(f"Record {body.record_id} not in lane {body.from_lane.value}", 404)
        record = lanes[lane].pop(index)
        if body.from_lane != body.to_lane:
            record = record.moved_to(body.to_lane, utcnow())
        lanes[body.to_lane].append(record)

    logger.info("transition_applied", record_id=body.record_id,
                from_lane=body.from_lane.value, to_lane=body.to_lane.value)
    broadcast(body.from_lane, body.to_lane)
    return jsonify({
        "success": True,
        "data": {"recordId": record.id, "lane": record.lane.value},
    })


@app.route('/api/queue/<lane_id>/order', methods=['PATCH'])
def patch_order(lane_id):
    """PATCH /api/queue/waiting/order - Replace front-of-line order.

    Expected JSON body: {"recordIds": ["2", "1"]}
    The ids must be exactly the lane's current members.
    """
    try:
        lane = Lane(lane_id)
    except ValueError:
        return error(f"Unknown lane '{lane_id}'", 404)
    try:
        body = OrderRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return error(f"Invalid order request: {e.error_count()} errors", 400)

    with lanes_lock:
        current = {r.id: r for r in lanes[lane]}
        if sorted(current) != sorted(body.record_ids) or len(set(body.record_ids)) != len(body.record_ids):
            return error(f"Order does not match the members of lane {lane.value}", 409)
        lanes[lane] = [current[record_id] for record_id in body.record_ids]

    broadcast(lane)
    return jsonify({"success": True, "data": {"lane": lane.value}})


@app.route('/api/queue/check-in', methods=['POST'])
def check_in():
    """POST /api/queue/check-in - Register an arrival at the back of waiting."""
    try:
        body = CheckInRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return error(f"Invalid check-in: {e.error_count()} errors", 400)

    with lanes_lock:
        record_id = body.id or f"visit-{next(visit_counter)}"
        if find_record(record_id)[0] is not None:
            return error(f"Record {record_id} already on the board", 409)
        record = VisitRecord(
            id=record_id,
            patient_name=body.patient_name,
            service_label=body.service_label,
            assigned_staff=body.assigned_staff,
            scheduled_time=body.scheduled_time,
            lane=Lane.WAITING,
            entered_lane_at=utcnow(),
        )
        lanes[Lane.WAITING].append(record)

    logger.info("patient_checked_in", record_id=record_id)
    broadcast(Lane.WAITING)
    return jsonify({"success": True, "data": record.to_wire()}), 201


@app.route('/api/queue/completed/<record_id>', methods=['DELETE'])
def archive(record_id):
    """DELETE /api/queue/completed/<id> - Archive a finished visit."""
    with lanes_lock:
        lane, index = find_record(record_id, Lane.COMPLETED)
        if lane is None:
            return error(f"Record {record_id} not in lane completed", 404)
        lanes[lane].pop(index)

    broadcast(Lane.COMPLETED)
    return jsonify({"success": True, "data": {"recordId": record_id}})


def sse_stream(events: queue.Queue, keepalive: float = KEEPALIVE_SECONDS):
    """Yield SSE frames from a subscriber queue until the client goes away."""
    try:
        while True:
            try:
                update = events.get(timeout=keepalive)
            except queue.Empty:
                yield ": keepalive\n\n"
                continue
            yield f"data: {json.dumps(update)}\n\n"
    finally:
        unsubscribe_events(events)


@app.route('/api/queue/stream', methods=['GET'])
def stream():
    """GET /api/queue/stream - Authoritative lane updates as SSE."""
    events = subscribe_events()
    return Response(
        stream_with_context(sse_stream(events)),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def print_startup_info():
    """Print server startup information."""
    print("=" * 70)
    print("MOCK QUEUE BACKEND")
    print("=" * 70)
    print(f"\nServer: http://localhost:{config.QUEUE_API_PORT}")
    print(f"Clinic: {config.CLINIC_ID}")
    print(f"Lane skip (waiting -> completed): {'allowed' if config.ALLOW_LANE_SKIP else 'rejected'}")

    print("\nEndpoints:")
    print("   GET    /api/queue                     - Full board")
    print("   GET    /api/queue/<lane>              - One lane")
    print("   POST   /api/queue/transitions         - Move between lanes")
    print("   PATCH  /api/queue/<lane>/order        - Reorder a lane")
    print("   POST   /api/queue/check-in            - Register arrival")
    print("   DELETE /api/queue/completed/<id>      - Archive visit")
    print("   GET    /api/queue/stream              - SSE lane updates")
    print("   GET    /health                        - Health check")
    print("=" * 70)


seed_board()


if __name__ == '__main__':
    setup_structured_logging(config.LOG_LEVEL)
    print_startup_info()
    app.run(
        port=config.QUEUE_API_PORT,
        host='0.0.0.0',
        threaded=True,
    )
