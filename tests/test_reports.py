# tests/test_reports.py
from datetime import datetime, timedelta, timezone

import pytest

from fleetsafety.behavior import DriverBehaviorAnalyzer
from fleetsafety.reports import (
    SafetyReportGenerator,
    analyze_risks,
    report_period,
    round_half_up,
)
from fleetsafety.schemas import (
    PredictionRiskLevel,
    Priority,
    ReportType,
    RiskTrend,
    TripRecord,
)

NOW = datetime(2024, 3, 31, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def generator():
    return SafetyReportGenerator()


def _trips(n, score=95):
    return [
        TripRecord(distance=10, duration=20, safety_score=score, timestamp=NOW - timedelta(hours=i))
        for i in range(n)
    ]


def test_round_half_up():
    assert round_half_up(72.5) == 73
    assert round_half_up(72.4) == 72
    assert round_half_up(-0.5) == 0


def test_report_periods():
    assert report_period(ReportType.DAILY, NOW) == (NOW - timedelta(days=1), NOW)
    assert report_period(ReportType.WEEKLY, NOW)[0] == NOW - timedelta(days=7)
    # clamps to the end of February
    assert report_period(ReportType.MONTHLY, NOW)[0] == datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)


def test_empty_report(generator):
    report = generator.generate_report("C1", "V1", ReportType.WEEKLY, now=NOW)

    assert report.overall_safety_score == 100
    assert report.score_change == 0
    assert report.total_trips == 0
    assert report.summary.safe_driving_percentage == 100
    assert report.summary.average_risk_level is PredictionRiskLevel.LOW
    assert report.risk_analysis.risk_trend is RiskTrend.STABLE
    assert report.risk_analysis.average_risk_score == 0
    assert report.improvement_areas == []
    assert report.ai_recommendations == []
    assert report.comparative_analysis.previous_period_score == 100
    assert report.comparative_analysis.peer_comparison.percentile == 95
    assert report.insights.safest_time_of_day == "0:00 - 1:00"
    assert report.insights.safest_day_of_week == "Monday"
    assert report.insights.most_common_risk == "None"
    assert report.insights.best_performing_metric == "Speed Control"
    assert report.generated_at == NOW
    assert report.id.startswith("report_")


def test_report_from_analyses(generator, make_window):
    analyzer = DriverBehaviorAnalyzer()
    braking = analyzer.analyze_behavior(make_window([60, 50, 30]))
    quiet = analyzer.analyze_behavior(make_window([50, 50]))

    report = generator.generate_report(
        "C1", "V1", ReportType.DAILY,
        behavior_analyses=[braking, quiet],
        driving_events=braking.events,
        trips=_trips(3),
        previous_period_score=80,
        now=NOW,
    )

    # (72 + 97) / 2 = 84.5
    assert report.overall_safety_score == 85
    assert report.score_change == 5
    assert report.total_distance == 30
    assert report.total_driving_time == 60
    assert report.driving_behavior.harsh_braking_count == 2
    assert report.summary.critical_events_count == 2
    assert report.summary.safe_driving_percentage == 0
    assert report.insights.most_common_risk == "harsh_braking"
    assert report.insights.riskiest_time_of_day == "10:00 - 11:00"
    assert report.insights.needs_improvement_metric == "Smooth Braking"
    assert report.comparative_analysis.behavior_comparison["harsh_braking"].previous == 2


def test_achievements(generator, make_window):
    analysis = DriverBehaviorAnalyzer().analyze_behavior(make_window([50, 50]))
    report = generator.generate_report(
        "C1", "V1", ReportType.MONTHLY,
        behavior_analyses=[analysis], trips=_trips(20), now=NOW,
    )
    titles = [a.title for a in report.achievements]
    assert titles == ["Safety Champion", "Speed Guardian", "Smooth Operator", "Consistent Driver"]
    assert "this monthly" in report.achievements[0].description


def test_improvement_areas_and_recommendations(generator, make_window):
    analyzer = DriverBehaviorAnalyzer()
    events = analyzer.analyze_behavior(make_window([70] * 7)).events
    assert len(events) == 6

    report = generator.generate_report(
        "C1", "V1", ReportType.WEEKLY,
        driving_events=events, trips=_trips(4, score=50), now=NOW,
    )

    areas = {a.area: a for a in report.improvement_areas}
    assert areas["Speed Management"].current_score == 70
    assert areas["Speed Management"].priority is Priority.HIGH
    assert areas["Risk Awareness"].current_score == 60
    assert [r.category for r in report.ai_recommendations] == ["Speed Control"]


def test_risk_trend(make_prediction):
    # newest first
    worsening = [make_prediction(s) for s in (0.9, 0.9, 0.1, 0.1)]
    risk = analyze_risks([], worsening)
    assert risk.risk_trend is RiskTrend.WORSENING
    assert risk.average_risk_score == pytest.approx(0.5)

    improving = list(reversed(worsening))
    assert analyze_risks([], improving).risk_trend is RiskTrend.IMPROVING

    flagged = [make_prediction(0.8, PredictionRiskLevel.HIGH), make_prediction(0.2)]
    assert analyze_risks(_trips(2, score=59), flagged).accident_predictions_count == 1
    assert analyze_risks(_trips(2, score=59), flagged).high_risk_trips == 2


def test_worsening_trend_recommendation(generator, make_prediction):
    predictions = [make_prediction(s) for s in (0.9, 0.9, 0.1, 0.1)]
    report = generator.generate_report(
        "C1", "V1", ReportType.WEEKLY, accident_predictions=predictions, now=NOW,
    )
    [rec] = report.ai_recommendations
    assert rec.category == "Risk Management"
    assert rec.priority is Priority.CRITICAL
