# fleetsafety/behavior.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .features import (
    speed_change_rate,
    speeds,
    steering_angles,
    validate_window,
    variance,
)
from .schemas import (
    BehaviorAnalysisResult,
    BehaviorInsights,
    BehaviorRiskLevel,
    DrivingEvent,
    EventSeverity,
    EventType,
    Location,
    TelemetrySample,
)

# ---- thresholds --------------------------------------------------------------

SPEED_LIMIT_URBAN = 60
SPEED_LIMIT_HIGHWAY = 100
HIGHWAY_SPEED_CUTOFF = 80           # above this the highway limit applies
HARSH_BRAKING_THRESHOLD = -8.0
RAPID_ACCELERATION_THRESHOLD = 4.0
SHARP_TURN_ANGLE = 30.0
SHARP_TURN_MIN_SPEED = 40.0

FATIGUE_MIN_SAMPLES = 100
FATIGUE_HALF_WINDOW = 10
FATIGUE_SPEED_VARIANCE = 100.0
FATIGUE_VARIANCE_HITS = 20
MICRO_SLEEP_SPEED_DROP = 10.0
MICRO_SLEEP_STEERING = 5.0
MICRO_SLEEP_HITS = 5

DISTRACTION_HALF_WINDOW = 5
DISTRACTION_STEERING_VARIANCE = 50.0
DISTRACTION_SPEED_VARIANCE = 30.0
DISTRACTION_HITS_PER_EVENT = 10


def speed_limit_for(speed: float) -> int:
    """Limit inferred from the observed speed (there is no road-type input)."""
    return SPEED_LIMIT_HIGHWAY if speed > HIGHWAY_SPEED_CUTOFF else SPEED_LIMIT_URBAN


def _location(sample: TelemetrySample) -> Location:
    return Location(lat=sample.latitude, lng=sample.longitude)


@dataclass
class EventCounts:
    overspeeding: int = 0
    harsh_braking: int = 0
    rapid_acceleration: int = 0
    sharp_turn: int = 0

    @classmethod
    def from_events(cls, events: Sequence[DrivingEvent]) -> "EventCounts":
        types = [e.type for e in events]
        return cls(
            overspeeding=types.count(EventType.OVERSPEEDING),
            harsh_braking=types.count(EventType.HARSH_BRAKING),
            rapid_acceleration=types.count(EventType.RAPID_ACCELERATION),
            sharp_turn=types.count(EventType.SHARP_TURN),
        )


class DriverBehaviorAnalyzer:
    """
    Turns a trailing telemetry window into driving events, a 0-100 behavior
    score and a risk level. Holds no state between calls.
    """

    def analyze_behavior(self, window: Sequence[TelemetrySample]) -> BehaviorAnalysisResult:
        validate_window(window)

        events: List[DrivingEvent] = []
        for i in range(1, len(window)):
            events.extend(self.detect_pair_events(window[i], window[i - 1]))
        counts = EventCounts.from_events(events)

        fatigue_detected = self.detect_fatigue(window)
        distracted_events = self.detect_distracted_driving(window)

        aggressive = aggressive_driving_score(counts)
        smooth = 100 - aggressive
        attention = 50.0 if fatigue_detected else 90.0

        score = overall_score(aggressive, smooth, attention, len(events))
        risk_level = determine_risk_level(score, events)

        recommendations = generate_recommendations(
            counts, fatigue_detected, distracted_events, risk_level
        )

        return BehaviorAnalysisResult(
            overall_score=score,
            risk_level=risk_level,
            events=events,
            insights=BehaviorInsights(
                overspeeding_incidents=counts.overspeeding,
                harsh_braking_count=counts.harsh_braking,
                rapid_acceleration_count=counts.rapid_acceleration,
                sharp_turn_count=counts.sharp_turn,
                phone_usage_detected=False,
                fatigue_detected=fatigue_detected,
                distracted_driving_events=distracted_events,
                aggressive_driving_score=aggressive,
                smooth_driving_score=smooth,
                attention_score=attention,
            ),
            recommendations=recommendations,
        )

    # ---- pairwise detectors --------------------------------------------------

    def detect_pair_events(
        self, current: TelemetrySample, previous: TelemetrySample
    ) -> List[DrivingEvent]:
        """Events produced by one consecutive pair, in detector order."""
        candidates = (
            self.detect_overspeeding(current),
            self.detect_harsh_braking(current, previous),
            self.detect_rapid_acceleration(current, previous),
            self.detect_sharp_turn(current),
        )
        return [e for e in candidates if e is not None]

    def detect_overspeeding(self, sample: TelemetrySample) -> Optional[DrivingEvent]:
        limit = speed_limit_for(sample.speed)
        excess = sample.speed - limit
        if excess <= 0:
            return None

        return DrivingEvent(
            type=EventType.OVERSPEEDING,
            severity=speed_severity(excess),
            timestamp=sample.timestamp,
            location=_location(sample),
            speed_at_event=sample.speed,
            explanation=(
                f"Vehicle speed ({sample.speed:.1f} km/h) exceeded limit "
                f"({limit} km/h) by {excess:.1f} km/h"
            ),
            reasoning={
                "speed_limit": limit,
                "actual_speed": sample.speed,
                "excess": excess,
                "factors": ["speed_violation", "safety_risk"],
            },
        )

    def detect_harsh_braking(
        self, current: TelemetrySample, previous: TelemetrySample
    ) -> Optional[DrivingEvent]:
        rate = speed_change_rate(previous, current)
        if rate is None or rate >= HARSH_BRAKING_THRESHOLD:
            return None

        magnitude = abs(rate)
        if magnitude > 12:
            severity = EventSeverity.CRITICAL
        elif magnitude > 10:
            severity = EventSeverity.HIGH
        else:
            severity = EventSeverity.MEDIUM

        return DrivingEvent(
            type=EventType.HARSH_BRAKING,
            severity=severity,
            timestamp=current.timestamp,
            location=_location(current),
            speed_at_event=current.speed,
            acceleration_magnitude=rate,
            explanation=(
                f"Harsh braking detected with deceleration of {magnitude:.2f} m/s². "
                "This can cause accidents or discomfort."
            ),
            reasoning={
                "deceleration": rate,
                "magnitude": magnitude,
                "previous_speed": previous.speed,
                "current_speed": current.speed,
                "factors": ["sudden_stop", "passenger_safety", "collision_risk"],
            },
        )

    def detect_rapid_acceleration(
        self, current: TelemetrySample, previous: TelemetrySample
    ) -> Optional[DrivingEvent]:
        rate = speed_change_rate(previous, current)
        if rate is None or rate <= RAPID_ACCELERATION_THRESHOLD:
            return None

        if rate > 8:
            severity = EventSeverity.HIGH
        elif rate > 6:
            severity = EventSeverity.MEDIUM
        else:
            severity = EventSeverity.LOW

        return DrivingEvent(
            type=EventType.RAPID_ACCELERATION,
            severity=severity,
            timestamp=current.timestamp,
            location=_location(current),
            speed_at_event=current.speed,
            acceleration_magnitude=rate,
            explanation=(
                f"Rapid acceleration detected ({rate:.2f} m/s²). "
                "This increases fuel consumption and wear."
            ),
            reasoning={
                "acceleration": rate,
                "previous_speed": previous.speed,
                "current_speed": current.speed,
                "factors": ["aggressive_driving", "fuel_efficiency", "tire_wear"],
            },
        )

    def detect_sharp_turn(self, sample: TelemetrySample) -> Optional[DrivingEvent]:
        if not sample.steering_angle:
            return None

        angle = abs(sample.steering_angle)
        if angle <= SHARP_TURN_ANGLE or sample.speed <= SHARP_TURN_MIN_SPEED:
            return None

        severity = EventSeverity.HIGH if angle > 45 else EventSeverity.MEDIUM
        return DrivingEvent(
            type=EventType.SHARP_TURN,
            severity=severity,
            timestamp=sample.timestamp,
            location=_location(sample),
            speed_at_event=sample.speed,
            explanation=(
                f"Sharp turn at high speed ({sample.speed:.1f} km/h with "
                f"{angle:.1f}° angle). Risk of rollover."
            ),
            reasoning={
                "steering_angle": sample.steering_angle,
                "speed": sample.speed,
                "factors": ["rollover_risk", "loss_of_control", "passenger_safety"],
            },
        )

    # ---- whole-window detectors ----------------------------------------------

    def detect_fatigue(self, window: Sequence[TelemetrySample]) -> bool:
        n = len(window)
        if n < FATIGUE_MIN_SAMPLES:
            return False

        variance_hits = 0
        micro_sleep_hits = 0
        half = FATIGUE_HALF_WINDOW

        for i in range(half, n - half):
            sub = window[i - half:i + half]
            if variance(speeds(sub)) > FATIGUE_SPEED_VARIANCE:
                variance_hits += 1

            now, before = window[i], window[i - 5]
            if (
                now.speed < before.speed - MICRO_SLEEP_SPEED_DROP
                and abs(now.steering_angle or 0.0) > MICRO_SLEEP_STEERING
            ):
                micro_sleep_hits += 1

        return variance_hits > FATIGUE_VARIANCE_HITS or micro_sleep_hits > MICRO_SLEEP_HITS

    def detect_distracted_driving(self, window: Sequence[TelemetrySample]) -> int:
        n = len(window)
        half = DISTRACTION_HALF_WINDOW
        hits = 0

        for i in range(half, n - half):
            sub = window[i - half:i + half]
            if (
                variance(steering_angles(sub)) > DISTRACTION_STEERING_VARIANCE
                and variance(speeds(sub)) > DISTRACTION_SPEED_VARIANCE
            ):
                hits += 1

        return hits // DISTRACTION_HITS_PER_EVENT


# ---- scoring -----------------------------------------------------------------

def speed_severity(excess: float) -> EventSeverity:
    if excess > 40:
        return EventSeverity.CRITICAL
    if excess > 25:
        return EventSeverity.HIGH
    if excess > 15:
        return EventSeverity.MEDIUM
    return EventSeverity.LOW


def aggressive_driving_score(counts: EventCounts) -> float:
    weighted = (
        counts.overspeeding * 2
        + counts.harsh_braking * 3
        + counts.rapid_acceleration * 2
        + counts.sharp_turn * 2.5
    )
    return min(100.0, weighted * 5)


def overall_score(aggressive: float, smooth: float, attention: float, event_count: int) -> float:
    base = smooth * 0.4 + attention * 0.3 + (100 - aggressive) * 0.3
    penalty = min(30, event_count * 2)
    return max(0.0, min(100.0, base - penalty))


def determine_risk_level(score: float, events: Sequence[DrivingEvent]) -> BehaviorRiskLevel:
    has_critical = any(e.severity is EventSeverity.CRITICAL for e in events)
    if has_critical or score < 40:
        return BehaviorRiskLevel.DANGEROUS
    if score < 60:
        return BehaviorRiskLevel.RISKY
    if score < 80:
        return BehaviorRiskLevel.MODERATE
    return BehaviorRiskLevel.SAFE


def generate_recommendations(
    counts: EventCounts,
    fatigue_detected: bool,
    distracted_events: int,
    risk_level: BehaviorRiskLevel,
) -> List[str]:
    tips: List[str] = []

    if counts.overspeeding > 5:
        tips.append("Reduce speed and maintain within legal limits to improve safety and avoid fines")
    if counts.harsh_braking > 3:
        tips.append("Maintain safe following distance and anticipate traffic conditions to reduce harsh braking")
    if counts.rapid_acceleration > 3:
        tips.append("Apply gradual acceleration to improve fuel efficiency and reduce vehicle wear")
    if counts.sharp_turn > 2:
        tips.append("Reduce speed before turns and use smooth steering inputs")
    if fatigue_detected:
        tips.append("Take breaks every 2 hours during long drives to prevent fatigue-related incidents")
    if distracted_events > 2:
        tips.append("Minimize distractions and keep full attention on the road at all times")
    if risk_level in (BehaviorRiskLevel.DANGEROUS, BehaviorRiskLevel.RISKY):
        tips.append("Consider defensive driving training to improve overall safety score")

    return tips
