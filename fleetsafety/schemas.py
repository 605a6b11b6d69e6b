# fleetsafety/schemas.py
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# -----------------------------------------------------------------------------
# Closed sets
# -----------------------------------------------------------------------------
class EventType(str, Enum):
    HARSH_BRAKING = "harsh_braking"
    RAPID_ACCELERATION = "rapid_acceleration"
    SHARP_TURN = "sharp_turn"
    OVERSPEEDING = "overspeeding"
    PHONE_USAGE = "phone_usage"
    FATIGUE = "fatigue"
    DISTRACTED_DRIVING = "distracted_driving"


class EventSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class BehaviorRiskLevel(str, Enum):
    SAFE = "safe"
    MODERATE = "moderate"
    RISKY = "risky"
    DANGEROUS = "dangerous"


class PredictionRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AnomalyType(str, Enum):
    SPEED = "speed_anomaly"
    ACCELERATION = "acceleration_anomaly"
    PATTERN = "pattern_anomaly"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"
    CRITICAL = "critical"


class AlertType(str, Enum):
    HARSH_BRAKING = "harsh_braking"
    RAPID_ACCELERATION = "rapid_acceleration"
    SHARP_TURN = "sharp_turn"
    OVERSPEEDING = "overspeeding"
    PHONE_USAGE = "phone_usage"
    FATIGUE = "fatigue"
    DISTRACTED_DRIVING = "distracted_driving"
    ACCIDENT_RISK = "accident_risk"
    ANOMALY = "anomaly"
    RISK_ZONE = "risk_zone"

    @classmethod
    def from_event(cls, event_type: EventType) -> "AlertType":
        return cls(event_type.value)


class ReportType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RiskTrend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    WORSENING = "worsening"


class Scenario(str, Enum):
    NORMAL = "normal"
    AGGRESSIVE = "aggressive"
    HIGHWAY = "highway"
    CITY = "city"
    DANGEROUS = "dangerous"
    FATIGUE = "fatigue"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# -----------------------------------------------------------------------------
# Telemetry
# -----------------------------------------------------------------------------
class TelemetrySample(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(..., description="Sample time (ISO8601)")
    speed: float = Field(..., description="km/h")
    acceleration_x: float = Field(0.0, description="m/s^2")
    acceleration_y: float = Field(0.0, description="m/s^2")
    acceleration_z: float = Field(0.0, description="m/s^2, includes gravity when reported by the vehicle")
    latitude: float
    longitude: float
    rpm: Optional[float] = None
    throttle_position: Optional[float] = None
    brake_pressure: Optional[float] = None
    steering_angle: Optional[float] = Field(default=None, description="degrees, signed")
    fuel_level: Optional[float] = None
    engine_temp: Optional[float] = None

    @field_validator("timestamp")
    @classmethod
    def _naive_is_utc(cls, v: datetime) -> datetime:
        # naive timestamps are taken as UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


# -----------------------------------------------------------------------------
# Behavior analysis
# -----------------------------------------------------------------------------
class DrivingEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: EventType
    severity: EventSeverity
    timestamp: datetime
    location: Location
    speed_at_event: float
    acceleration_magnitude: Optional[float] = None
    explanation: str
    reasoning: Dict[str, Any] = Field(default_factory=dict)


class BehaviorInsights(BaseModel):
    overspeeding_incidents: int = 0
    harsh_braking_count: int = 0
    rapid_acceleration_count: int = 0
    sharp_turn_count: int = 0
    phone_usage_detected: bool = False
    fatigue_detected: bool = False
    distracted_driving_events: int = 0
    aggressive_driving_score: float = 0.0
    smooth_driving_score: float = 100.0
    attention_score: float = 90.0


class BehaviorAnalysisResult(BaseModel):
    overall_score: float = Field(..., ge=0, le=100)
    risk_level: BehaviorRiskLevel
    events: List[DrivingEvent] = Field(default_factory=list)
    insights: BehaviorInsights
    recommendations: List[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Accident prediction
# -----------------------------------------------------------------------------
class RiskZone(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    latitude: float
    longitude: float
    radius_meters: float
    risk_level: PredictionRiskLevel
    accident_count: int = 0
    common_incidents: List[str] = Field(default_factory=list)


class ContributingFactors(BaseModel):
    model_config = ConfigDict(frozen=True)

    speed: float = Field(..., ge=0, le=1)
    acceleration: float = Field(..., ge=0, le=1)
    location: float = Field(..., ge=0, le=1)
    time: float = Field(..., ge=0, le=1)
    weather: float = Field(..., ge=0, le=1)
    driver_behavior: float = Field(..., ge=0, le=1)


class TopFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    factor: str
    impact: float
    actual_value: float
    explanation: str


class Explainability(BaseModel):
    model_config = ConfigDict(frozen=True)

    feature_importance: Dict[str, float]
    shap_values: Dict[str, float]
    top_factors: List[TopFactor]


class AccidentPrediction(BaseModel):
    model_config = ConfigDict(frozen=True)

    risk_score: float = Field(..., ge=0, le=1)
    risk_level: PredictionRiskLevel
    prediction_model: str
    contributing_factors: ContributingFactors
    anomaly_detected: bool = False
    anomaly_type: Optional[AnomalyType] = None
    time_to_risk: int = Field(..., description="seconds")
    confidence_score: float = Field(..., ge=0.5, le=1.0)
    explainability: Explainability
    recommendations: List[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Alerts
# -----------------------------------------------------------------------------
class AlertReasoning(BaseModel):
    primary_factors: List[str] = Field(default_factory=list)
    contributing_elements: Dict[str, Any] = Field(default_factory=dict)
    risk_score: Optional[float] = None
    confidence_level: float = 0.85


class Alert(BaseModel):
    id: str
    type: AlertType
    severity: AlertSeverity
    timestamp: datetime
    location: Location
    message: str
    explanation: str
    reasoning: AlertReasoning
    recommended_action: str
    is_read: bool = False
    is_acknowledged: bool = False


# -----------------------------------------------------------------------------
# Safety reports
# -----------------------------------------------------------------------------
class TripRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    distance: float = Field(..., ge=0, description="km")
    duration: float = Field(..., ge=0, description="minutes")
    safety_score: float
    timestamp: datetime


class ReportSummary(BaseModel):
    safe_driving_percentage: int
    risk_incidents_count: int
    critical_events_count: int
    average_risk_level: PredictionRiskLevel


class DrivingBehaviorSummary(BaseModel):
    overspeeding_incidents: int = 0
    harsh_braking_count: int = 0
    rapid_acceleration_count: int = 0
    sharp_turn_count: int = 0
    fatigue_detections: int = 0
    distracted_driving_events: int = 0


class RiskAnalysis(BaseModel):
    high_risk_trips: int
    accident_predictions_count: int
    average_risk_score: float
    risk_trend: RiskTrend


class Achievement(BaseModel):
    title: str
    description: str
    icon: str
    earned_at: datetime


class ImprovementArea(BaseModel):
    area: str
    current_score: int
    target_score: int
    priority: Priority
    recommendations: List[str]


class ReportRecommendation(BaseModel):
    category: str
    priority: Priority
    recommendation: str
    expected_impact: str
    implementation_steps: List[str]


class BehaviorChange(BaseModel):
    previous: int
    current: int
    change: int


class PeerComparison(BaseModel):
    your_score: float
    average_score: float
    percentile: int


class ComparativeAnalysis(BaseModel):
    previous_period_score: float
    score_improvement: float
    behavior_comparison: Dict[str, BehaviorChange]
    peer_comparison: Optional[PeerComparison] = None


class ReportInsights(BaseModel):
    safest_time_of_day: str
    riskiest_time_of_day: str
    safest_day_of_week: str
    most_common_risk: str
    best_performing_metric: str
    needs_improvement_metric: str


class SafetyReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    customer_id: str
    vehicle_id: str
    report_type: ReportType
    period_start: datetime
    period_end: datetime
    generated_at: datetime
    overall_safety_score: int
    score_change: float
    total_distance: float
    total_trips: int
    total_driving_time: float
    summary: ReportSummary
    driving_behavior: DrivingBehaviorSummary
    risk_analysis: RiskAnalysis
    achievements: List[Achievement]
    improvement_areas: List[ImprovementArea]
    ai_recommendations: List[ReportRecommendation]
    comparative_analysis: ComparativeAnalysis
    insights: ReportInsights
