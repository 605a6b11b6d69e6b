# tests/conftest.py
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from fleetsafety.db import TelemetryStore
from fleetsafety.schemas import (
    AccidentPrediction,
    ContributingFactors,
    Explainability,
    PredictionRiskLevel,
    TelemetrySample,
)

# away from every default risk zone, mid-morning
T0 = datetime(2024, 5, 6, 10, 0, 0)
LAT, LNG = 12.0, 77.0


@pytest.fixture
def make_sample():
    def _make(speed, t=0, **kw):
        fields = dict(
            timestamp=T0 + timedelta(seconds=t),
            speed=speed,
            latitude=LAT,
            longitude=LNG,
        )
        fields.update(kw)
        return TelemetrySample(**fields)
    return _make


@pytest.fixture
def make_window(make_sample):
    """Samples one second apart, one per speed."""
    def _make(speeds, **kw):
        return [make_sample(s, t=i, **kw) for i, s in enumerate(speeds)]
    return _make


@pytest.fixture
def make_prediction():
    def _make(score=0.2, level=PredictionRiskLevel.LOW, anomaly=None, recommendations=None):
        return AccidentPrediction(
            risk_score=score,
            risk_level=level,
            prediction_model="test",
            contributing_factors=ContributingFactors(
                speed=score, acceleration=score, location=score,
                time=score, weather=score, driver_behavior=score,
            ),
            anomaly_detected=anomaly is not None,
            anomaly_type=anomaly,
            time_to_risk=60,
            confidence_score=0.85,
            explainability=Explainability(feature_importance={}, shap_values={}, top_factors=[]),
            recommendations=recommendations or [],
        )
    return _make


@pytest.fixture
def store():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    s = TelemetryStore(engine)
    s.init_db()
    return s
