# tests/test_predictor.py
from datetime import datetime

import pytest

from fleetsafety.behavior import DriverBehaviorAnalyzer
from fleetsafety.predictor import (
    ATTRIBUTION_BASELINE,
    FEATURE_IMPORTANCE,
    AccidentPredictor,
    attribution_values,
    confidence_score,
    determine_risk_level,
    estimate_time_to_risk,
)
from fleetsafety.schemas import AnomalyType, PredictionRiskLevel, RiskZone


@pytest.fixture
def predictor():
    return AccidentPredictor()


def test_location_risk_at_zone_centres(predictor, make_sample):
    assert predictor.location_risk(make_sample(50, latitude=12.9179, longitude=77.6228)) == 0.7
    assert predictor.location_risk(make_sample(50, latitude=12.9716, longitude=77.5946)) == 0.5
    assert predictor.location_risk(make_sample(50)) == 0.2


def test_zone_lookup_respects_radius(predictor):
    # ~330 m north of Silk Board
    assert predictor.zone_at(12.9209, 77.6228).name.startswith("Silk Board")
    # ~1.1 km north
    assert predictor.zone_at(12.9279, 77.6228) is None


def test_custom_risk_zones(make_sample):
    zone = RiskZone(name="Depot", latitude=12.0, longitude=77.0,
                    radius_meters=100, risk_level=PredictionRiskLevel.CRITICAL)
    predictor = AccidentPredictor(risk_zones=[zone])
    assert predictor.risk_zones == (zone,)
    assert predictor.location_risk(make_sample(50)) == 0.9


@pytest.mark.parametrize("speed,risk", [
    (45, 0.1),      # 0.75 of 60
    (50, 0.3),
    (70, 0.6),
    (85, 0.3),      # highway limit
    (140, 0.85),
    (160, 0.95),
])
def test_speed_risk(predictor, make_sample, speed, risk):
    assert predictor.speed_risk(make_sample(speed)) == risk


@pytest.mark.parametrize("hour,risk", [(23, 0.7), (3, 0.7), (8, 0.6), (18, 0.6), (13, 0.4), (10, 0.3), (21, 0.3)])
def test_time_risk(predictor, hour, risk):
    assert predictor.time_risk(datetime(2024, 5, 6, hour)) == risk


def test_acceleration_risk(predictor, make_sample, make_window):
    assert predictor.acceleration_risk(make_sample(50), []) == 0.1
    steady = make_window([50] * 10)
    assert predictor.acceleration_risk(make_sample(50), steady) == 0.2
    # gravity alone puts magnitude above 7
    assert predictor.acceleration_risk(make_sample(50, acceleration_z=9.81), steady) == 0.6
    assert predictor.acceleration_risk(make_sample(50, acceleration_x=11), steady) == 0.8


def test_behavior_risk_counts_serious_events(predictor, make_window):
    window = make_window([60] * 5)
    assert predictor.behavior_risk([], window) == 0.3

    events = DriverBehaviorAnalyzer().analyze_behavior(make_window([60, 50, 30, 10])).events
    assert len(events) == 3
    assert predictor.behavior_risk(events, window) == 0.9
    assert predictor.behavior_risk(events[:2], window) == 0.7
    assert predictor.behavior_risk(events[:1], window) == 0.5


def test_behavior_risk_from_speed_variance(predictor, make_window):
    assert predictor.behavior_risk([], make_window([30, 70] * 11)) == 0.6


def test_no_anomaly_below_thirty_samples(predictor, make_sample, make_window):
    recent = make_window([50] * 29)
    assert predictor.detect_anomaly(make_sample(150, acceleration_x=20), recent) is None


def test_anomaly_types(predictor, make_sample, make_window):
    recent = make_window([50] * 30)
    assert predictor.detect_anomaly(make_sample(100), recent) is AnomalyType.SPEED
    assert predictor.detect_anomaly(make_sample(50, acceleration_x=13), recent) is AnomalyType.ACCELERATION
    assert predictor.detect_anomaly(make_sample(50), make_window([20, 80] * 15)) is AnomalyType.PATTERN


def test_quiet_prediction(predictor, make_sample):
    prediction = predictor.predict_accident_risk(make_sample(50), [], [])

    f = prediction.contributing_factors
    assert (f.speed, f.acceleration, f.location, f.time, f.weather, f.driver_behavior) == (
        0.3, 0.1, 0.2, 0.3, 0.3, 0.3
    )
    assert prediction.risk_score == pytest.approx(0.245)
    assert prediction.risk_level is PredictionRiskLevel.LOW
    assert prediction.time_to_risk == 300
    assert prediction.confidence_score == pytest.approx(0.65)
    assert prediction.anomaly_detected is False
    assert prediction.explainability.feature_importance == FEATURE_IMPORTANCE
    assert len(prediction.explainability.top_factors) == 3


def test_prediction_attribution_and_top_factors(predictor, make_sample):
    prediction = predictor.predict_accident_risk(make_sample(50), [], [])
    factors = prediction.contributing_factors.model_dump()

    for name, value in prediction.explainability.shap_values.items():
        assert value == pytest.approx((factors[name] - ATTRIBUTION_BASELINE) * FEATURE_IMPORTANCE[name])

    impacts = [t.impact for t in prediction.explainability.top_factors]
    assert impacts == sorted(impacts, reverse=True)
    assert prediction.explainability.top_factors[0].factor == "acceleration"


def test_risky_prediction_stays_in_bounds(predictor, make_window):
    recent = make_window([20, 140] * 20, acceleration_x=15, latitude=12.9179, longitude=77.6228)
    events = DriverBehaviorAnalyzer().analyze_behavior(recent).events
    current = recent[-1]
    prediction = predictor.predict_accident_risk(current, recent, events)

    assert 0.0 <= prediction.risk_score <= 1.0
    assert 0.5 <= prediction.confidence_score <= 1.0
    assert prediction.anomaly_detected is True
    assert prediction.risk_level in (PredictionRiskLevel.HIGH, PredictionRiskLevel.CRITICAL)
    assert prediction.recommendations[0].startswith("IMMEDIATE ACTION")


def test_anomaly_boosts_level_but_not_score():
    assert determine_risk_level(0.6, False) is PredictionRiskLevel.MEDIUM
    assert determine_risk_level(0.6, True) is PredictionRiskLevel.HIGH
    assert determine_risk_level(0.7, True) is PredictionRiskLevel.CRITICAL
    assert estimate_time_to_risk(0.6) == 60


@pytest.mark.parametrize("score,seconds", [(0.1, 300), (0.5, 60), (0.7, 20), (0.85, 5)])
def test_time_to_risk(score, seconds):
    assert estimate_time_to_risk(score) == seconds


def test_confidence_floor(make_window):
    assert confidence_score(make_window([50] * 20), False) == pytest.approx(0.85)
    assert confidence_score([], True) == pytest.approx(0.55)


def test_attribution_values():
    out = attribution_values({"speed": 0.8, "time": 0.3}, {"speed": 0.5, "time": 1.0})
    assert out == {"speed": pytest.approx(0.25), "time": pytest.approx(0.0)}
