"""Tests for wait-time figures."""
from datetime import timedelta

import pytest

from conftest import NOW, make_record
from queueboard.models import Lane
from queueboard.store import QueueStore, RecordNotFound
from queueboard.wait_times import average_wait, format_duration, predicted_wait, time_in_lane


def test_time_in_lane():
    assert time_in_lane(make_record("P1", minutes_ago=12), NOW) == timedelta(minutes=12)


def test_time_in_lane_never_negative():
    assert time_in_lane(make_record("P1", minutes_ago=-3), NOW) == timedelta(0)


@pytest.mark.parametrize("delta,label", [
    (timedelta(seconds=45), "45s"),
    (timedelta(minutes=12), "12m"),
    (timedelta(hours=1, minutes=5), "1h05m"),
])
def test_format_duration(delta, label):
    assert format_duration(delta) == label


def test_average_wait(store):
    # P1 15m, P2 10m, P3 5m
    assert average_wait(store, NOW) == timedelta(minutes=10)


def test_average_wait_empty(clock):
    assert average_wait(QueueStore(clock=clock), NOW) == timedelta(0)


def test_predicted_wait_counts_patients_ahead(store):
    estimate = predicted_wait(store, "P3", average_service_minutes=20, now=NOW)
    assert estimate["position"] == 3
    assert estimate["patients_ahead"] == 2
    assert estimate["estimated_wait_minutes"] == 40
    assert estimate["estimated_time"] == NOW + timedelta(minutes=40)


def test_predicted_wait_front_of_line(store):
    assert predicted_wait(store, "P1", average_service_minutes=20, now=NOW)["estimated_wait_minutes"] == 0


def test_predicted_wait_follows_reorder(store):
    store.move_record("P3", Lane.WAITING, Lane.WAITING, 0)
    assert predicted_wait(store, "P3", average_service_minutes=20, now=NOW)["patients_ahead"] == 0


def test_predicted_wait_not_waiting(store):
    estimate = predicted_wait(store, "P4", now=NOW)
    assert estimate["position"] is None
    assert estimate["estimated_wait_minutes"] == 0


def test_predicted_wait_uses_config_default(store, monkeypatch):
    monkeypatch.setattr("queueboard.config.AVERAGE_SERVICE_MINUTES", 15)
    assert predicted_wait(store, "P2", now=NOW)["estimated_wait_minutes"] == 15


def test_predicted_wait_unknown_record(store):
    with pytest.raises(RecordNotFound):
        predicted_wait(store, "nobody")
