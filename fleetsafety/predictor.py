# fleetsafety/predictor.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from .behavior import speed_limit_for
from .features import acceleration_magnitude, haversine_distance, mean, speeds, variance
from .schemas import (
    AccidentPrediction,
    AnomalyType,
    ContributingFactors,
    DrivingEvent,
    EventSeverity,
    Explainability,
    PredictionRiskLevel,
    RiskZone,
    TelemetrySample,
    TopFactor,
)

# -----------------------------------------------------------------------------
# Model constants
# -----------------------------------------------------------------------------
PREDICTION_MODEL = "weighted-factor ensemble v2.1"

FEATURE_IMPORTANCE: Dict[str, float] = {
    "speed": 0.25,
    "acceleration": 0.2,
    "location": 0.15,
    "time": 0.1,
    "weather": 0.1,
    "driver_behavior": 0.2,
}

ATTRIBUTION_BASELINE = 0.3

RISK_THRESHOLD_MEDIUM = 0.5
RISK_THRESHOLD_HIGH = 0.7
RISK_THRESHOLD_CRITICAL = 0.85
ANOMALY_RISK_BOOST = 1.3

ANOMALY_MIN_SAMPLES = 30
ACCELERATION_WINDOW = 10
BEHAVIOR_WINDOW = 20
CONFIDENCE_MIN_SAMPLES = 20

DEFAULT_LOCATION_RISK = 0.2
ZONE_RISK: Dict[PredictionRiskLevel, float] = {
    PredictionRiskLevel.CRITICAL: 0.9,
    PredictionRiskLevel.HIGH: 0.7,
    PredictionRiskLevel.MEDIUM: 0.5,
    PredictionRiskLevel.LOW: 0.3,
}

FACTOR_EXPLANATIONS: Dict[str, str] = {
    "speed": "Current vehicle speed relative to safe limits",
    "acceleration": "Sudden changes in vehicle acceleration patterns",
    "location": "Proximity to known accident-prone areas",
    "time": "Time of day affecting visibility and traffic",
    "weather": "Current weather conditions impacting road safety",
    "driver_behavior": "Recent driving behavior and event patterns",
}

FACTOR_TIPS: Dict[str, Optional[str]] = {
    "speed": "Reduce speed to match road conditions and traffic",
    "acceleration": "Smooth out acceleration and braking inputs",
    "location": "Exercise extra caution - you are in a high-risk area",
    "time": "Increase alertness during low-visibility hours",
    "weather": None,
    "driver_behavior": "Take a short break to refresh and refocus",
}

ANOMALY_TIPS: Dict[AnomalyType, Optional[str]] = {
    AnomalyType.SPEED: "Unusual speed pattern detected - maintain consistent speed",
    AnomalyType.ACCELERATION: "Extreme acceleration detected - check vehicle control",
    AnomalyType.PATTERN: None,
}

DEFAULT_RISK_ZONES: Tuple[RiskZone, ...] = (
    RiskZone(
        name="Silk Board Junction, Bangalore",
        latitude=12.9179,
        longitude=77.6228,
        radius_meters=500,
        risk_level=PredictionRiskLevel.HIGH,
        accident_count=45,
        common_incidents=["rear_end_collision", "lane_change_accident", "overspeeding"],
    ),
    RiskZone(
        name="ORR Flyover, Bangalore",
        latitude=12.9716,
        longitude=77.5946,
        radius_meters=800,
        risk_level=PredictionRiskLevel.MEDIUM,
        accident_count=28,
        common_incidents=["overspeeding", "sharp_turn", "vehicle_breakdown"],
    ),
    RiskZone(
        name="Electronic City Toll, Bangalore",
        latitude=12.8456,
        longitude=77.6772,
        radius_meters=600,
        risk_level=PredictionRiskLevel.MEDIUM,
        accident_count=32,
        common_incidents=["sudden_braking", "lane_cutting", "distracted_driving"],
    ),
)


class AccidentPredictor:
    """
    Weighted six-factor accident risk model with a linear attribution report.

    Risk zones are reference data fixed at construction; pass ``risk_zones``
    to load them from elsewhere.
    """

    def __init__(self, risk_zones: Optional[Sequence[RiskZone]] = None):
        self._risk_zones: Tuple[RiskZone, ...] = tuple(
            DEFAULT_RISK_ZONES if risk_zones is None else risk_zones
        )

    @property
    def risk_zones(self) -> Tuple[RiskZone, ...]:
        return self._risk_zones

    def predict_accident_risk(
        self,
        current: TelemetrySample,
        recent: Sequence[TelemetrySample],
        events: Sequence[DrivingEvent],
    ) -> AccidentPrediction:
        factors = {
            "speed": self.speed_risk(current),
            "acceleration": self.acceleration_risk(current, recent),
            "location": self.location_risk(current),
            "time": self.time_risk(current.timestamp),
            "weather": self.weather_risk(),
            "driver_behavior": self.behavior_risk(events, recent),
        }

        risk_score = weighted_risk_score(factors, FEATURE_IMPORTANCE)
        shap_values = attribution_values(factors, FEATURE_IMPORTANCE)
        anomaly = self.detect_anomaly(current, recent)
        risk_level = determine_risk_level(risk_score, anomaly is not None)
        top_factors = identify_top_factors(shap_values, factors)

        return AccidentPrediction(
            risk_score=risk_score,
            risk_level=risk_level,
            prediction_model=PREDICTION_MODEL,
            contributing_factors=ContributingFactors(**factors),
            anomaly_detected=anomaly is not None,
            anomaly_type=anomaly,
            time_to_risk=estimate_time_to_risk(risk_score),
            confidence_score=confidence_score(recent, anomaly is not None),
            explainability=Explainability(
                feature_importance=dict(FEATURE_IMPORTANCE),
                shap_values=shap_values,
                top_factors=top_factors,
            ),
            recommendations=generate_recommendations(risk_level, top_factors, anomaly),
        )

    # ---- factors -------------------------------------------------------------

    def speed_risk(self, sample: TelemetrySample) -> float:
        ratio = sample.speed / speed_limit_for(sample.speed)
        if ratio <= 0.8:
            return 0.1
        if ratio <= 1.0:
            return 0.3
        if ratio <= 1.2:
            return 0.6
        if ratio <= 1.5:
            return 0.85
        return 0.95

    def acceleration_risk(self, current: TelemetrySample, recent: Sequence[TelemetrySample]) -> float:
        if not recent:
            return 0.1

        magnitude = acceleration_magnitude(current)
        spread = variance(acceleration_magnitude(s) for s in recent[-ACCELERATION_WINDOW:])

        if magnitude > 10 or spread > 15:
            return 0.8
        if magnitude > 7 or spread > 10:
            return 0.6
        if magnitude > 5 or spread > 5:
            return 0.4
        return 0.2

    def location_risk(self, sample: TelemetrySample) -> float:
        zone = self.zone_at(sample.latitude, sample.longitude)
        if zone is None:
            return DEFAULT_LOCATION_RISK
        return ZONE_RISK[zone.risk_level]

    def zone_at(self, latitude: float, longitude: float) -> Optional[RiskZone]:
        """First risk zone whose radius contains the point."""
        for zone in self._risk_zones:
            distance = haversine_distance(latitude, longitude, zone.latitude, zone.longitude)
            if distance <= zone.radius_meters:
                return zone
        return None

    def time_risk(self, timestamp: datetime) -> float:
        hour = timestamp.hour
        if hour >= 22 or hour <= 5:
            return 0.7
        if 7 <= hour <= 9 or 17 <= hour <= 19:
            return 0.6
        if 12 <= hour <= 14:
            return 0.4
        return 0.3

    def weather_risk(self) -> float:
        # no live weather feed yet
        return 0.3

    def behavior_risk(self, events: Sequence[DrivingEvent], recent: Sequence[TelemetrySample]) -> float:
        serious = sum(
            1 for e in events if e.severity in (EventSeverity.CRITICAL, EventSeverity.HIGH)
        )
        if serious >= 3:
            return 0.9
        if serious >= 2:
            return 0.7
        if serious >= 1:
            return 0.5

        if len(recent) > BEHAVIOR_WINDOW:
            if variance(speeds(recent[-BEHAVIOR_WINDOW:])) > 100:
                return 0.6
        return 0.3

    # ---- anomalies -----------------------------------------------------------

    def detect_anomaly(
        self, current: TelemetrySample, recent: Sequence[TelemetrySample]
    ) -> Optional[AnomalyType]:
        if len(recent) < ANOMALY_MIN_SAMPLES:
            return None

        recent_speeds = speeds(recent[-ANOMALY_MIN_SAMPLES:])
        if abs(current.speed - mean(recent_speeds)) > 40:
            return AnomalyType.SPEED
        if acceleration_magnitude(current) > 12:
            return AnomalyType.ACCELERATION
        if variance(recent_speeds) > 200:
            return AnomalyType.PATTERN
        return None


# ---- scoring helpers ---------------------------------------------------------

def weighted_risk_score(factors: Dict[str, float], weights: Dict[str, float]) -> float:
    score = sum(value * weights.get(name, 0.0) for name, value in factors.items())
    return min(1.0, max(0.0, score))


def attribution_values(factors: Dict[str, float], weights: Dict[str, float]) -> Dict[str, float]:
    """Linear contribution of each factor relative to a fixed baseline."""
    return {
        name: (value - ATTRIBUTION_BASELINE) * weights[name]
        for name, value in factors.items()
    }


def determine_risk_level(risk_score: float, anomaly_detected: bool) -> PredictionRiskLevel:
    if anomaly_detected:
        risk_score = min(1.0, risk_score * ANOMALY_RISK_BOOST)

    if risk_score >= RISK_THRESHOLD_CRITICAL:
        return PredictionRiskLevel.CRITICAL
    if risk_score >= RISK_THRESHOLD_HIGH:
        return PredictionRiskLevel.HIGH
    if risk_score >= RISK_THRESHOLD_MEDIUM:
        return PredictionRiskLevel.MEDIUM
    return PredictionRiskLevel.LOW


def estimate_time_to_risk(risk_score: float) -> int:
    if risk_score < RISK_THRESHOLD_MEDIUM:
        return 300
    if risk_score < RISK_THRESHOLD_HIGH:
        return 60
    if risk_score < RISK_THRESHOLD_CRITICAL:
        return 20
    return 5


def confidence_score(recent: Sequence[TelemetrySample], anomaly_detected: bool) -> float:
    confidence = 0.85
    if len(recent) < CONFIDENCE_MIN_SAMPLES:
        confidence -= 0.2
    if anomaly_detected:
        confidence -= 0.1
    return max(0.5, min(1.0, confidence))


def identify_top_factors(
    shap_values: Dict[str, float], factors: Dict[str, float], k: int = 3
) -> List[TopFactor]:
    # sorted() is stable, so ties keep factor order
    ranked = sorted(shap_values.items(), key=lambda kv: abs(kv[1]), reverse=True)
    return [
        TopFactor(
            factor=name,
            impact=abs(value),
            actual_value=factors[name],
            explanation=FACTOR_EXPLANATIONS.get(name, "Contributing risk factor"),
        )
        for name, value in ranked[:k]
    ]


def generate_recommendations(
    risk_level: PredictionRiskLevel,
    top_factors: Sequence[TopFactor],
    anomaly: Optional[AnomalyType],
) -> List[str]:
    tips: List[str] = []

    if risk_level in (PredictionRiskLevel.CRITICAL, PredictionRiskLevel.HIGH):
        tips.append("IMMEDIATE ACTION: Reduce speed and increase following distance")
        tips.append("Find a safe place to pull over if conditions worsen")

    for factor in top_factors:
        tip = FACTOR_TIPS.get(factor.factor)
        if tip:
            tips.append(tip)

    if anomaly is not None:
        tip = ANOMALY_TIPS[anomaly]
        if tip:
            tips.append(tip)

    if not tips:
        tips.append("Continue maintaining safe driving practices")
    return tips
