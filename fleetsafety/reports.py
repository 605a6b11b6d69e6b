# fleetsafety/reports.py
from __future__ import annotations

import math
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .schemas import (
    AccidentPrediction,
    Achievement,
    BehaviorAnalysisResult,
    BehaviorChange,
    ComparativeAnalysis,
    DrivingBehaviorSummary,
    DrivingEvent,
    EventSeverity,
    EventType,
    ImprovementArea,
    PeerComparison,
    PredictionRiskLevel,
    Priority,
    ReportInsights,
    ReportRecommendation,
    ReportSummary,
    ReportType,
    RiskAnalysis,
    RiskTrend,
    SafetyReport,
    TripRecord,
)

PEER_AVERAGE_SCORE = 78.0
HIGH_RISK_TRIP_SCORE = 60
TREND_MARGIN = 0.1

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

# behavior metric -> display name, in tie-break order
BEHAVIOR_METRICS: List[Tuple[str, str]] = [
    ("overspeeding_incidents", "Speed Control"),
    ("harsh_braking_count", "Smooth Braking"),
    ("rapid_acceleration_count", "Smooth Acceleration"),
    ("sharp_turn_count", "Cornering"),
    ("fatigue_detections", "Alertness"),
    ("distracted_driving_events", "Attention"),
]

EVENT_FIELDS: Dict[EventType, Optional[str]] = {
    EventType.OVERSPEEDING: "overspeeding_incidents",
    EventType.HARSH_BRAKING: "harsh_braking_count",
    EventType.RAPID_ACCELERATION: "rapid_acceleration_count",
    EventType.SHARP_TURN: "sharp_turn_count",
    EventType.FATIGUE: "fatigue_detections",
    EventType.DISTRACTED_DRIVING: "distracted_driving_events",
    EventType.PHONE_USAGE: None,
}


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def report_period(report_type: ReportType, now: datetime) -> Tuple[datetime, datetime]:
    if report_type is ReportType.DAILY:
        start = now - timedelta(days=1)
    elif report_type is ReportType.WEEKLY:
        start = now - timedelta(days=7)
    elif report_type is ReportType.MONTHLY:
        start = (pd.Timestamp(now) - pd.DateOffset(months=1)).to_pydatetime()
    else:
        raise ValueError(f"unknown report type: {report_type!r}")
    return start, now


class SafetyReportGenerator:
    """Pure aggregation of analyses, predictions, events and trips into a SafetyReport."""

    def generate_report(
        self,
        customer_id: str,
        vehicle_id: str,
        report_type: ReportType,
        behavior_analyses: Sequence[BehaviorAnalysisResult] = (),
        accident_predictions: Sequence[AccidentPrediction] = (),
        driving_events: Sequence[DrivingEvent] = (),
        trips: Sequence[TripRecord] = (),
        previous_period_score: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> SafetyReport:
        """
        ``accident_predictions`` are expected newest first, which is how the
        store returns them; the risk trend compares the newer half against the
        older half.
        """
        report_type = ReportType(report_type)
        now = now or datetime.now(timezone.utc)
        period_start, period_end = report_period(report_type, now)

        score = overall_safety_score(behavior_analyses)
        score_change = score - previous_period_score if previous_period_score else 0.0

        behavior = aggregate_driving_behavior(driving_events)
        risk = analyze_risks(trips, accident_predictions)
        areas = identify_improvement_areas(behavior, risk)

        return SafetyReport(
            id=f"report_{uuid.uuid4().hex[:16]}",
            customer_id=customer_id,
            vehicle_id=vehicle_id,
            report_type=report_type,
            period_start=period_start,
            period_end=period_end,
            generated_at=now,
            overall_safety_score=score,
            score_change=score_change,
            total_distance=sum(t.distance for t in trips),
            total_trips=len(trips),
            total_driving_time=sum(t.duration for t in trips),
            summary=summarize(driving_events, accident_predictions),
            driving_behavior=behavior,
            risk_analysis=risk,
            achievements=identify_achievements(score, behavior, trips, report_type, now),
            improvement_areas=areas,
            ai_recommendations=generate_recommendations(areas, behavior, risk),
            comparative_analysis=comparative_analysis(
                score, previous_period_score or score, behavior
            ),
            insights=generate_insights(driving_events, behavior),
        )


# ---- aggregates --------------------------------------------------------------

def overall_safety_score(analyses: Sequence[BehaviorAnalysisResult]) -> int:
    if not analyses:
        return 100
    return round_half_up(sum(a.overall_score for a in analyses) / len(analyses))


def summarize(
    events: Sequence[DrivingEvent], predictions: Sequence[AccidentPrediction]
) -> ReportSummary:
    total = len(events)
    critical = sum(1 for e in events if e.severity is EventSeverity.CRITICAL)
    low = sum(1 for e in events if e.severity is EventSeverity.LOW)
    safe_pct = round_half_up(low / total * 100) if total else 100

    levels = Counter(p.risk_level for p in predictions)
    average_level = levels.most_common(1)[0][0] if levels else PredictionRiskLevel.LOW

    return ReportSummary(
        safe_driving_percentage=safe_pct,
        risk_incidents_count=total,
        critical_events_count=critical,
        average_risk_level=average_level,
    )


def aggregate_driving_behavior(events: Sequence[DrivingEvent]) -> DrivingBehaviorSummary:
    counts = {field: 0 for field, _ in BEHAVIOR_METRICS}
    for event in events:
        field = EVENT_FIELDS[event.type]
        if field is not None:
            counts[field] += 1
    return DrivingBehaviorSummary(**counts)


def analyze_risks(
    trips: Sequence[TripRecord], predictions: Sequence[AccidentPrediction]
) -> RiskAnalysis:
    high_risk_trips = sum(1 for t in trips if t.safety_score < HIGH_RISK_TRIP_SCORE)
    flagged = sum(
        1 for p in predictions
        if p.risk_level in (PredictionRiskLevel.HIGH, PredictionRiskLevel.CRITICAL)
    )
    n = len(predictions)
    average = sum(p.risk_score for p in predictions) / n if n else 0.0

    trend = RiskTrend.STABLE
    if n >= 2:
        half = n // 2
        recent = sum(p.risk_score for p in predictions[:half]) / math.ceil(n / 2)
        older = sum(p.risk_score for p in predictions[half:]) / half
        if recent < older - TREND_MARGIN:
            trend = RiskTrend.IMPROVING
        elif recent > older + TREND_MARGIN:
            trend = RiskTrend.WORSENING

    return RiskAnalysis(
        high_risk_trips=high_risk_trips,
        accident_predictions_count=flagged,
        average_risk_score=average,
        risk_trend=trend,
    )


# ---- rules -------------------------------------------------------------------

def identify_achievements(
    score: int,
    behavior: DrivingBehaviorSummary,
    trips: Sequence[TripRecord],
    report_type: ReportType,
    now: datetime,
) -> List[Achievement]:
    out: List[Achievement] = []

    if score >= 90:
        out.append(Achievement(
            title="Safety Champion",
            description=f"Maintained excellent safety score of {score} this {report_type.value}",
            icon="trophy",
            earned_at=now,
        ))
    if behavior.overspeeding_incidents == 0 and len(trips) > 5:
        out.append(Achievement(
            title="Speed Guardian",
            description="No overspeeding incidents - perfect compliance!",
            icon="shield",
            earned_at=now,
        ))
    if behavior.harsh_braking_count == 0 and len(trips) > 5:
        out.append(Achievement(
            title="Smooth Operator",
            description="Zero harsh braking events - excellent anticipation!",
            icon="sparkles",
            earned_at=now,
        ))
    if len(trips) >= 20 and score >= 85:
        out.append(Achievement(
            title="Consistent Driver",
            description="Maintained high safety standards across multiple trips",
            icon="star",
            earned_at=now,
        ))
    return out


def identify_improvement_areas(
    behavior: DrivingBehaviorSummary, risk: RiskAnalysis
) -> List[ImprovementArea]:
    areas: List[ImprovementArea] = []

    if behavior.overspeeding_incidents > 5:
        areas.append(ImprovementArea(
            area="Speed Management",
            current_score=max(0, 100 - behavior.overspeeding_incidents * 5),
            target_score=90,
            priority=Priority.HIGH,
            recommendations=[
                "Use cruise control on highways",
                "Set speed limit alerts",
                "Leave earlier to avoid rushing",
            ],
        ))
    if behavior.harsh_braking_count > 3:
        areas.append(ImprovementArea(
            area="Smooth Braking",
            current_score=max(0, 100 - behavior.harsh_braking_count * 8),
            target_score=90,
            priority=Priority.MEDIUM,
            recommendations=[
                "Increase following distance",
                "Anticipate traffic flow",
                "Brake gradually in stages",
            ],
        ))
    if risk.high_risk_trips > 2:
        areas.append(ImprovementArea(
            area="Risk Awareness",
            current_score=max(0, 100 - risk.high_risk_trips * 10),
            target_score=85,
            priority=Priority.HIGH,
            recommendations=[
                "Review high-risk trip patterns",
                "Avoid driving during peak fatigue hours",
                "Plan routes through safer roads",
            ],
        ))
    return areas


def generate_recommendations(
    areas: Sequence[ImprovementArea],
    behavior: DrivingBehaviorSummary,
    risk: RiskAnalysis,
) -> List[ReportRecommendation]:
    recs: List[ReportRecommendation] = []

    if any(a.area == "Speed Management" for a in areas):
        recs.append(ReportRecommendation(
            category="Speed Control",
            priority=Priority.HIGH,
            recommendation="Implement systematic speed management strategies",
            expected_impact="Could improve safety score by 15-20 points",
            implementation_steps=[
                "Enable speed limit alerts in the app",
                "Practice maintaining consistent speeds",
                "Review speed patterns after each trip",
            ],
        ))
    if risk.risk_trend is RiskTrend.WORSENING:
        recs.append(ReportRecommendation(
            category="Risk Management",
            priority=Priority.CRITICAL,
            recommendation="Address increasing risk trend immediately",
            expected_impact="Prevent potential accidents and score degradation",
            implementation_steps=[
                "Take a defensive driving refresher course",
                "Review recent high-risk trip footage",
                "Consider taking more breaks during long drives",
            ],
        ))
    if behavior.fatigue_detections > 2:
        recs.append(ReportRecommendation(
            category="Fatigue Management",
            priority=Priority.HIGH,
            recommendation="Implement fatigue prevention strategies",
            expected_impact="Reduce accident risk by up to 40%",
            implementation_steps=[
                "Take 15-minute breaks every 2 hours",
                "Avoid driving during your low-energy hours",
                "Get adequate sleep before long trips",
            ],
        ))
    return recs


def peer_percentile(score: float) -> int:
    if score >= 90:
        return 95
    if score >= 80:
        return 75
    return 50


def comparative_analysis(
    current: float, previous: float, behavior: DrivingBehaviorSummary
) -> ComparativeAnalysis:
    # no stored history per metric, so the previous period is synthesized
    over = behavior.overspeeding_incidents
    brake = behavior.harsh_braking_count
    return ComparativeAnalysis(
        previous_period_score=previous,
        score_improvement=current - previous,
        behavior_comparison={
            "overspeeding": BehaviorChange(
                previous=round_half_up(over * 1.2),
                current=over,
                change=round_half_up(over * -0.2),
            ),
            "harsh_braking": BehaviorChange(
                previous=round_half_up(brake * 1.1),
                current=brake,
                change=round_half_up(brake * -0.1),
            ),
        },
        peer_comparison=PeerComparison(
            your_score=current,
            average_score=PEER_AVERAGE_SCORE,
            percentile=peer_percentile(current),
        ),
    )


# ---- insights ----------------------------------------------------------------

def _least_and_most(counts: Dict[int, int]) -> Tuple[int, int]:
    """Bucket with the fewest and the most events; lowest key wins ties, 0 when empty."""
    if not counts:
        return 0, 0
    keys = sorted(counts)
    # min()/max() return the first extreme, i.e. the lowest key
    return min(keys, key=counts.__getitem__), max(keys, key=counts.__getitem__)


def _hour_range(hour: int) -> str:
    return f"{hour}:00 - {hour + 1}:00"


def generate_insights(
    events: Sequence[DrivingEvent], behavior: DrivingBehaviorSummary
) -> ReportInsights:
    by_hour = Counter(e.timestamp.hour for e in events)
    safest_hour, riskiest_hour = _least_and_most(by_hour)

    by_weekday = Counter(e.timestamp.weekday() for e in events)
    safest_day, _ = _least_and_most(by_weekday)

    types = Counter(e.type.value for e in events)
    most_common = types.most_common(1)[0][0] if types else "None"

    counts = behavior.model_dump()
    best = min(BEHAVIOR_METRICS, key=lambda m: counts[m[0]])
    worst = max(BEHAVIOR_METRICS, key=lambda m: counts[m[0]])

    return ReportInsights(
        safest_time_of_day=_hour_range(safest_hour),
        riskiest_time_of_day=_hour_range(riskiest_hour),
        safest_day_of_week=WEEKDAYS[safest_day],
        most_common_risk=most_common,
        best_performing_metric=best[1],
        needs_improvement_metric=worst[1],
    )
