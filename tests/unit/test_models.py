"""Tests for lanes, records and wire schemas."""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from conftest import NOW, make_record
from queueboard.models import (
    LANE_TITLES,
    VALID_TRANSITIONS,
    Ack,
    CheckInRequest,
    Lane,
    LaneUpdate,
    TransitionRequest,
    VisitRecord,
    validate_transition,
)


class TestLane:
    def test_wire_values(self):
        assert [lane.value for lane in Lane] == ["waiting", "in_service", "completed"]

    @pytest.mark.parametrize("raw", ["InService", "in-service", "IN_SERVICE", "in service"])
    def test_lenient_parsing(self, raw):
        assert Lane(raw) is Lane.IN_SERVICE

    def test_unknown_lane(self):
        with pytest.raises(ValueError):
            Lane("lobby")

    def test_every_lane_has_title_and_transitions(self):
        for lane in Lane:
            assert lane.display_name == LANE_TITLES[lane]
            assert lane in VALID_TRANSITIONS


class TestTransitions:
    def test_forward_flow(self):
        assert validate_transition(Lane.WAITING, Lane.IN_SERVICE)
        assert validate_transition(Lane.IN_SERVICE, Lane.COMPLETED)

    def test_skip_is_rejected_by_default(self):
        assert not validate_transition(Lane.WAITING, Lane.COMPLETED)

    def test_skip_allowed_when_configured(self):
        assert validate_transition(Lane.WAITING, Lane.COMPLETED, allow_skip=True)

    def test_send_back_and_reopen(self):
        assert validate_transition(Lane.IN_SERVICE, Lane.WAITING)
        assert validate_transition(Lane.COMPLETED, Lane.IN_SERVICE)
        assert not validate_transition(Lane.COMPLETED, Lane.WAITING)

    def test_reorder_always_valid(self):
        for lane in Lane:
            assert validate_transition(lane, lane)


class TestVisitRecord:
    def test_wire_shape_is_camel_case_iso(self):
        wire = make_record("P1").to_wire()
        assert set(wire) == {
            "id", "patientName", "serviceLabel", "assignedStaff",
            "scheduledTime", "lane", "enteredLaneAt",
        }
        assert wire["lane"] == "waiting"
        assert datetime.fromisoformat(wire["enteredLaneAt"].replace("Z", "+00:00")) == NOW

    def test_parses_wire_payload(self):
        record = VisitRecord.model_validate({
            "id": "1",
            "patientName": "Maria Silva",
            "serviceLabel": "General Consultation",
            "assignedStaff": "Dr. Santos",
            "scheduledTime": "10:30",
            "lane": "in_service",
            "enteredLaneAt": "2026-10-19T10:30:00Z",
        })
        assert record.patient_name == "Maria Silva"
        assert record.lane == Lane.IN_SERVICE
        assert record.entered_lane_at == NOW

    def test_naive_timestamp_assumed_utc(self):
        parsed = VisitRecord(id="x", patient_name="X", entered_lane_at=datetime(2026, 10, 19, 10, 30))
        assert parsed.entered_lane_at.tzinfo == timezone.utc
        assert parsed.entered_lane_at == NOW

    def test_records_are_immutable(self):
        record = make_record("P1")
        with pytest.raises(ValidationError):
            record.lane = Lane.COMPLETED

    def test_moved_to_copies(self):
        record = make_record("P1", minutes_ago=5)
        moved = record.moved_to(Lane.IN_SERVICE, NOW)
        assert record.lane == Lane.WAITING
        assert moved.lane == Lane.IN_SERVICE
        assert moved.entered_lane_at == NOW
        assert moved.id == record.id

    @pytest.mark.parametrize("bad", ["25:00", "9:30", "noon"])
    def test_rejects_bad_scheduled_time(self, bad):
        with pytest.raises(ValidationError):
            make_record("P1", scheduled_time=bad)

    def test_requires_id_and_name(self):
        with pytest.raises(ValidationError):
            VisitRecord(id="", patient_name="X")
        with pytest.raises(ValidationError):
            VisitRecord(id="1", patient_name="")


class TestWirePayloads:
    def test_transition_request(self):
        body = TransitionRequest(record_id="2", from_lane=Lane.WAITING, to_lane=Lane.IN_SERVICE)
        assert body.to_wire() == {"recordId": "2", "fromLane": "waiting", "toLane": "in_service"}

    def test_lane_update(self):
        update = LaneUpdate.model_validate({"lane": "completed", "records": [make_record("P5").to_wire()]})
        assert update.lane == Lane.COMPLETED
        assert update.records[0].id == "P5"

    def test_ack_defaults(self):
        assert Ack().success is True
        assert Ack.model_validate({"recordId": "1", "lane": "waiting"}).record_id == "1"

    def test_check_in_request_optional_id(self):
        assert CheckInRequest(patient_name="Ana").id is None
