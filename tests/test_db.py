# tests/test_db.py
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from fleetsafety.alerts import AlertDispatcher
from fleetsafety.behavior import DriverBehaviorAnalyzer
from fleetsafety.db import TelemetryStore
from fleetsafety.errors import PersistenceError
from fleetsafety.reports import SafetyReportGenerator
from fleetsafety.schemas import AlertSeverity, AlertType, Location, ReportType, TripRecord


def _alert(severity=AlertSeverity.WARNING):
    return AlertDispatcher().create_custom_alert(
        AlertType.RISK_ZONE, severity, Location(lat=12.0, lng=77.0), "zone", "entered zone",
    )


def test_telemetry_round_trip_oldest_first(store, make_window):
    window = make_window([10, 20, 30, 40], steering_angle=3.0)
    for sample in reversed(window):
        store.insert_telemetry("V1", sample)
    store.insert_telemetry("V2", window[0])

    out = store.get_telemetry("V1", limit=3)

    assert [s.speed for s in out] == [20, 30, 40]
    assert out[0].timestamp == window[1].timestamp
    assert out[0].steering_angle == 3.0
    assert out[0].rpm is None
    assert store.get_telemetry("missing") == []


def test_driving_events_newest_first_and_bounded(store, make_window):
    events = DriverBehaviorAnalyzer().analyze_behavior(make_window([60, 50, 30, 10])).events
    for event in events:
        store.insert_driving_event("V1", event)

    out = store.get_driving_events("V1")
    assert [e.timestamp for e in out] == [e.timestamp for e in reversed(events)]
    assert out[0] == events[-1]

    bounded = store.get_driving_events("V1", start=events[1].timestamp, end=events[1].timestamp)
    assert bounded == [events[1]]


def test_predictions_newest_first(store, make_sample, make_prediction):
    store.insert_accident_prediction("V1", make_prediction(0.1), make_sample(50, t=0))
    store.insert_accident_prediction("V1", make_prediction(0.4), make_sample(50, t=1), alert_sent=True)

    assert [p.risk_score for p in store.get_recent_predictions("V1")] == [0.4, 0.1]
    assert [p.risk_score for p in store.get_recent_predictions("V1", limit=1)] == [0.4]


def test_alert_flags(store):
    a, b = _alert(), _alert()
    store.insert_alert("V1", "C1", a)
    store.insert_alert("V1", "C1", b)
    store.insert_alert("V2", "C2", _alert())

    assert {r["id"] for r in store.get_unread_alerts("C1")} == {a.id, b.id}

    assert store.mark_alert_as_read(a.id) is True
    assert [r["id"] for r in store.get_unread_alerts("C1")] == [b.id]

    assert store.acknowledge_alert(b.id) is True
    assert store.get_unread_alerts("C1") == []

    assert store.mark_alert_as_read("alert_missing") is False
    assert store.acknowledge_alert("alert_missing") is False


def test_alert_row_shape(store):
    alert = _alert(AlertSeverity.CRITICAL)
    store.insert_alert("V1", "C1", alert)
    [row] = store.get_unread_alerts("C1")
    assert row["alert_type"] == "risk_zone"
    assert row["severity"] == "critical"
    assert row["reasoning"]["confidence_level"] == 0.85
    assert row["is_acknowledged"] is False


def test_safety_reports(store):
    gen = SafetyReportGenerator()
    now = datetime(2024, 5, 6, 12)
    store.insert_safety_report(gen.generate_report("C1", "V1", ReportType.DAILY, now=now))
    store.insert_safety_report(gen.generate_report("C1", "V1", ReportType.WEEKLY, now=now))

    assert len(store.get_safety_reports("C1")) == 2
    [weekly] = store.get_safety_reports("C1", ReportType.WEEKLY)
    assert weekly.report_type is ReportType.WEEKLY
    assert weekly.overall_safety_score == 100
    assert store.get_safety_reports("C2") == []


def _trip(hour, score=80.0):
    return TripRecord(distance=10.0, duration=25.0, safety_score=score, timestamp=datetime(2024, 5, 6, hour))


def test_trips_oldest_first_and_bounded(store):
    store.insert_trip("V1", "C1", _trip(12))
    store.insert_trip("V1", "C1", _trip(8))
    store.insert_trip("V2", "C1", _trip(9))

    assert [t.timestamp.hour for t in store.get_trips("V1")] == [8, 12]
    bounded = store.get_trips("V1", start=datetime(2024, 5, 6, 10), end=datetime(2024, 5, 6, 13))
    assert [t.timestamp.hour for t in bounded] == [12]
    assert store.get_trips("V3") == []


def test_update_trip(store):
    row = store.insert_trip("V1", "C1", _trip(8))

    assert store.update_trip(row["id"], safety_score=55.0, distance=12.5) is True
    [trip] = store.get_trips("V1")
    assert (trip.safety_score, trip.distance, trip.duration) == (55.0, 12.5, 25.0)

    assert store.update_trip("missing", safety_score=1.0) is False
    assert store.update_trip(row["id"]) is False
    with pytest.raises(ValueError):
        store.update_trip(row["id"], vehicle_id="V2")


def test_vehicles_by_customer(store):
    assert store.register_vehicle("V2", "C1") is True
    assert store.register_vehicle("V1", "C1") is True
    assert store.register_vehicle("V1", "C1") is False
    store.register_vehicle("V3", "C2")

    assert [v["id"] for v in store.get_vehicles_by_customer("C1")] == ["V1", "V2"]
    assert store.get_vehicles_by_customer("C9") == []


def test_insert_notifications(store, make_sample):
    seen = []
    unsubscribe = store.subscribe("telemetry_data", "V1", seen.append)

    store.insert_telemetry("V1", make_sample(10, t=0))
    store.insert_telemetry("V2", make_sample(10, t=0))
    unsubscribe()
    store.insert_telemetry("V1", make_sample(10, t=1))

    assert [r["vehicle_id"] for r in seen] == ["V1"]


def test_alert_notifications_keyed_by_customer(store):
    seen = []
    store.subscribe("real_time_alerts", "C1", lambda row: seen.append(row["id"]))
    store.subscribe("real_time_alerts", "C1", lambda row: 1 / 0)

    alert = _alert()
    store.insert_alert("V1", "C1", alert)
    assert seen == [alert.id]


def test_subscribe_unknown_table(store):
    with pytest.raises(ValueError):
        store.subscribe("nope", "V1", print)


def test_database_errors_become_persistence_errors(make_sample):
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    store = TelemetryStore(engine)     # tables never created

    with pytest.raises(PersistenceError):
        store.insert_telemetry("V1", make_sample(10))
    with pytest.raises(PersistenceError):
        store.get_unread_alerts("C1")
    with pytest.raises(PersistenceError):
        store.get_telemetry("V1")
    with pytest.raises(PersistenceError):
        store.get_trips("V1")
    with pytest.raises(PersistenceError):
        store.register_vehicle("V1", "C1")
