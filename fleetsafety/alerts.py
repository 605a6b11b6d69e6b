# fleetsafety/alerts.py
from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from .config import ALERT_HISTORY_LIMIT
from .schemas import (
    AccidentPrediction,
    Alert,
    AlertReasoning,
    AlertSeverity,
    AlertType,
    AnomalyType,
    DrivingEvent,
    EventSeverity,
    EventType,
    Location,
    PredictionRiskLevel,
)

logger = logging.getLogger(__name__)

AlertCallback = Callable[[Alert], None]

# -----------------------------------------------------------------------------
# Severity mapping
# -----------------------------------------------------------------------------
RISK_LEVEL_SEVERITY: Dict[PredictionRiskLevel, AlertSeverity] = {
    PredictionRiskLevel.CRITICAL: AlertSeverity.CRITICAL,
    PredictionRiskLevel.HIGH: AlertSeverity.DANGER,
    PredictionRiskLevel.MEDIUM: AlertSeverity.WARNING,
    PredictionRiskLevel.LOW: AlertSeverity.INFO,
}

EVENT_SEVERITY: Dict[EventSeverity, AlertSeverity] = {
    EventSeverity.CRITICAL: AlertSeverity.CRITICAL,
    EventSeverity.HIGH: AlertSeverity.DANGER,
    EventSeverity.MEDIUM: AlertSeverity.WARNING,
    EventSeverity.LOW: AlertSeverity.INFO,
}

# -----------------------------------------------------------------------------
# Message tables
# -----------------------------------------------------------------------------
# (message, recommended action) per event type
EVENT_MESSAGES: Dict[EventType, Tuple[str, str]] = {
    EventType.HARSH_BRAKING: (
        "Harsh Braking Detected",
        "Maintain safe following distance and anticipate traffic flow",
    ),
    EventType.RAPID_ACCELERATION: (
        "Rapid Acceleration Detected",
        "Apply gradual acceleration for better fuel efficiency and safety",
    ),
    EventType.SHARP_TURN: (
        "Sharp Turn at High Speed",
        "Reduce speed before turns to prevent rollover risk",
    ),
    EventType.OVERSPEEDING: (
        "Overspeeding Detected",
        "Reduce speed to legal limits immediately",
    ),
    EventType.PHONE_USAGE: (
        "Phone Usage While Driving",
        "Pull over safely if you need to use your phone",
    ),
    EventType.FATIGUE: (
        "Driver Fatigue Detected",
        "Take a 15-20 minute break immediately",
    ),
    EventType.DISTRACTED_DRIVING: (
        "Distracted Driving Detected",
        "Keep full attention on the road at all times",
    ),
}

ANOMALY_EXPLANATIONS: Dict[AnomalyType, str] = {
    AnomalyType.SPEED: (
        "Unusual speed pattern detected that differs significantly from your normal driving behavior"
    ),
    AnomalyType.ACCELERATION: (
        "Abnormal acceleration pattern detected that may indicate loss of vehicle control"
    ),
    AnomalyType.PATTERN: (
        "Irregular driving pattern detected that deviates from safe driving norms"
    ),
}

TYPE_ACTIONS: Dict[AlertType, str] = {
    AlertType.OVERSPEEDING: "Reduce speed to legal limits",
    AlertType.HARSH_BRAKING: "Maintain safe following distance",
    AlertType.RAPID_ACCELERATION: "Accelerate gradually",
    AlertType.SHARP_TURN: "Slow down before turning",
    AlertType.PHONE_USAGE: "Put the phone away while driving",
    AlertType.FATIGUE: "Take a break for 15-20 minutes",
    AlertType.DISTRACTED_DRIVING: "Focus completely on driving",
    AlertType.ACCIDENT_RISK: "Increase alertness and reduce speed",
    AlertType.ANOMALY: "Check vehicle and adjust driving",
    AlertType.RISK_ZONE: "Exercise extra caution in this area",
}

CRITICAL_ACTION = "IMMEDIATE ACTION REQUIRED: Find safe location to stop"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_alert_id() -> str:
    return f"alert_{uuid.uuid4().hex[:16]}"


class AlertDispatcher:
    """
    Publish/subscribe hub for real-time alerts.

    Keeps the newest ``history_limit`` alerts (newest first) and delivers each
    emitted alert synchronously to every subscriber. One failing subscriber
    never blocks the others. History and subscriptions sit behind one lock;
    subscribers are called outside it, under a separate delivery lock that
    keeps delivery in emission order.
    """

    def __init__(self, history_limit: int = ALERT_HISTORY_LIMIT):
        self._alerts: Deque[Alert] = deque(maxlen=history_limit)
        self._callbacks: List[AlertCallback] = []
        self._lock = threading.RLock()
        self._delivery_lock = threading.RLock()

    # ---- subscriptions -------------------------------------------------------

    def subscribe_to_alerts(self, callback: AlertCallback) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    # ---- producers -----------------------------------------------------------

    def process_accident_prediction(
        self, prediction: AccidentPrediction, location: Location
    ) -> List[Alert]:
        emitted: List[Alert] = []
        if prediction.risk_level in (PredictionRiskLevel.HIGH, PredictionRiskLevel.CRITICAL):
            emitted.append(self._emit(self._accident_risk_alert(prediction, location)))
        if prediction.anomaly_detected:
            emitted.append(self._emit(self._anomaly_alert(prediction, location)))
        return emitted

    def process_driving_event(self, event: DrivingEvent) -> List[Alert]:
        if event.severity not in (EventSeverity.HIGH, EventSeverity.CRITICAL):
            return []
        return [self._emit(self._driving_event_alert(event))]

    def create_custom_alert(
        self,
        type: AlertType,
        severity: AlertSeverity,
        location: Location,
        message: str,
        explanation: str,
        factors: Sequence[str] = (),
        data: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        alert = Alert(
            id=generate_alert_id(),
            type=type,
            severity=severity,
            timestamp=_now(),
            location=location,
            message=message,
            explanation=explanation,
            reasoning=AlertReasoning(
                primary_factors=list(factors),
                contributing_elements=dict(data or {}),
                confidence_level=0.85,
            ),
            recommended_action=recommended_action(type, severity),
        )
        return self._emit(alert)

    # ---- queries -------------------------------------------------------------

    def get_alerts(
        self, unread_only: bool = False, severity: Optional[AlertSeverity] = None
    ) -> List[Alert]:
        with self._lock:
            alerts = list(self._alerts)
        if unread_only:
            alerts = [a for a in alerts if not a.is_read]
        if severity is not None:
            alerts = [a for a in alerts if a.severity == severity]
        return alerts

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    return alert
        return None

    def mark_alert_as_read(self, alert_id: str) -> bool:
        with self._lock:
            alert = self.get_alert(alert_id)
            if alert is None:
                return False
            alert.is_read = True
            return True

    def acknowledge_alert(self, alert_id: str) -> bool:
        with self._lock:
            alert = self.get_alert(alert_id)
            if alert is None:
                return False
            alert.is_acknowledged = True
            alert.is_read = True
            return True

    def clear_alerts(self) -> None:
        with self._lock:
            self._alerts.clear()

    def get_unread_count(self) -> int:
        with self._lock:
            return sum(1 for a in self._alerts if not a.is_read)

    def get_critical_alerts(self) -> List[Alert]:
        with self._lock:
            return [
                a for a in self._alerts
                if a.severity is AlertSeverity.CRITICAL and not a.is_acknowledged
            ]

    # ---- internals -----------------------------------------------------------

    def _emit(self, alert: Alert) -> Alert:
        with self._delivery_lock:
            with self._lock:
                self._alerts.appendleft(alert)
                callbacks = list(self._callbacks)
            logger.debug("alert %s %s/%s emitted", alert.id, alert.type.value, alert.severity.value)

            for callback in callbacks:
                try:
                    callback(alert)
                except Exception:
                    logger.exception("alert subscriber %r failed on %s", callback, alert.id)
        return alert

    def _accident_risk_alert(self, prediction: AccidentPrediction, location: Location) -> Alert:
        pct = prediction.risk_score * 100
        if prediction.risk_level is PredictionRiskLevel.CRITICAL:
            message = "CRITICAL ACCIDENT RISK DETECTED"
            explanation = (
                f"Detected a {pct:.1f}% accident risk. Immediate action required "
                f"within {prediction.time_to_risk} seconds!"
            )
        else:
            message = "HIGH ACCIDENT RISK DETECTED"
            explanation = (
                f"Elevated accident risk ({pct:.1f}%) identified. Take precautions "
                f"within {prediction.time_to_risk} seconds."
            )

        return Alert(
            id=generate_alert_id(),
            type=AlertType.ACCIDENT_RISK,
            severity=RISK_LEVEL_SEVERITY[prediction.risk_level],
            timestamp=_now(),
            location=location,
            message=message,
            explanation=explanation,
            reasoning=AlertReasoning(
                primary_factors=[
                    f"{f.factor}: {f.explanation}" for f in prediction.explainability.top_factors
                ],
                contributing_elements={
                    "model": prediction.prediction_model,
                    "factors": prediction.contributing_factors.model_dump(),
                    "shap_values": dict(prediction.explainability.shap_values),
                },
                risk_score=prediction.risk_score,
                confidence_level=prediction.confidence_score,
            ),
            recommended_action=(
                prediction.recommendations[0]
                if prediction.recommendations
                else "Slow down and increase alertness"
            ),
        )

    def _anomaly_alert(self, prediction: AccidentPrediction, location: Location) -> Alert:
        if prediction.anomaly_type is None:
            explanation = "An unusual driving pattern has been detected"
            factor = "unknown"
        else:
            explanation = ANOMALY_EXPLANATIONS[prediction.anomaly_type]
            factor = prediction.anomaly_type.value

        return Alert(
            id=generate_alert_id(),
            type=AlertType.ANOMALY,
            severity=AlertSeverity.WARNING,
            timestamp=_now(),
            location=location,
            message="DRIVING ANOMALY DETECTED",
            explanation=explanation,
            reasoning=AlertReasoning(
                primary_factors=[factor],
                contributing_elements={
                    "model": prediction.prediction_model,
                    "confidence": prediction.confidence_score,
                },
                confidence_level=prediction.confidence_score,
            ),
            recommended_action="Check vehicle systems and adjust driving to normal patterns",
        )

    def _driving_event_alert(self, event: DrivingEvent) -> Alert:
        message, action = EVENT_MESSAGES[event.type]
        return Alert(
            id=generate_alert_id(),
            type=AlertType.from_event(event.type),
            severity=EVENT_SEVERITY[event.severity],
            timestamp=event.timestamp,
            location=event.location,
            message=message,
            explanation=event.explanation,
            reasoning=AlertReasoning(
                primary_factors=list(event.reasoning.get("factors", [])),
                contributing_elements=dict(event.reasoning),
                confidence_level=0.9,
            ),
            recommended_action=action,
        )


def recommended_action(alert_type: AlertType, severity: AlertSeverity) -> str:
    if severity is AlertSeverity.CRITICAL:
        return CRITICAL_ACTION
    return TYPE_ACTIONS[alert_type]
