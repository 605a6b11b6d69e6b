# fleetsafety/pipeline.py
from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Sequence, Set

from .alerts import AlertDispatcher
from .behavior import DriverBehaviorAnalyzer
from .config import ANALYSIS_HISTORY_LIMIT, TELEMETRY_WINDOW_SIZE
from .db import TelemetryStore
from .errors import InvalidTelemetryError, PersistenceError
from .predictor import AccidentPredictor
from .reports import SafetyReportGenerator, report_period
from .schemas import (
    AccidentPrediction,
    Alert,
    BehaviorAnalysisResult,
    DrivingEvent,
    Location,
    ReportType,
    SafetyReport,
    TelemetrySample,
    TripRecord,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    vehicle_id: str
    sample: TelemetrySample
    analysis: BehaviorAnalysisResult
    prediction: AccidentPrediction
    new_events: List[DrivingEvent] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)
    persistence_error: Optional[str] = None

    @property
    def persisted(self) -> bool:
        return self.persistence_error is None


@dataclass
class _VehicleState:
    window: Deque[TelemetrySample]
    analyses: Deque[BehaviorAnalysisResult]
    predictions: Deque[AccidentPrediction]     # newest first
    events: Deque[DrivingEvent]


class SafetyPipeline:
    """
    Per-vehicle orchestration of the scoring components.

    Each vehicle gets its own trailing telemetry window. The optional store is
    a sink only: when it fails, the computed results are still returned and
    the failure is reported on the result.
    """

    def __init__(
        self,
        dispatcher: Optional[AlertDispatcher] = None,
        store: Optional[TelemetryStore] = None,
        analyzer: Optional[DriverBehaviorAnalyzer] = None,
        predictor: Optional[AccidentPredictor] = None,
        report_generator: Optional[SafetyReportGenerator] = None,
        window_size: int = TELEMETRY_WINDOW_SIZE,
        history_limit: int = ANALYSIS_HISTORY_LIMIT,
    ):
        self.dispatcher = dispatcher or AlertDispatcher()
        self.store = store
        self.analyzer = analyzer or DriverBehaviorAnalyzer()
        self.predictor = predictor or AccidentPredictor()
        self.report_generator = report_generator or SafetyReportGenerator()
        self.window_size = window_size
        self.history_limit = history_limit
        self._vehicles: Dict[str, _VehicleState] = defaultdict(self._new_state)
        self._registered: Set[str] = set()
        self._lock = threading.Lock()

    def _new_state(self) -> _VehicleState:
        return _VehicleState(
            window=deque(maxlen=self.window_size),
            analyses=deque(maxlen=self.history_limit),
            predictions=deque(maxlen=self.history_limit),
            events=deque(maxlen=self.history_limit),
        )

    # ---- queries -------------------------------------------------------------

    def vehicles(self) -> List[str]:
        with self._lock:
            return sorted(self._vehicles)

    def window(self, vehicle_id: str) -> List[TelemetrySample]:
        with self._lock:
            state = self._vehicles.get(vehicle_id)
            return list(state.window) if state else []

    def latest_analysis(self, vehicle_id: str) -> Optional[BehaviorAnalysisResult]:
        with self._lock:
            state = self._vehicles.get(vehicle_id)
            return state.analyses[-1] if state and state.analyses else None

    def latest_prediction(self, vehicle_id: str) -> Optional[AccidentPrediction]:
        with self._lock:
            state = self._vehicles.get(vehicle_id)
            return state.predictions[0] if state and state.predictions else None

    # ---- processing ----------------------------------------------------------

    def process_sample(
        self, vehicle_id: str, customer_id: str, sample: TelemetrySample
    ) -> PipelineResult:
        with self._lock:
            state = self._vehicles[vehicle_id]
            if state.window and sample.timestamp < state.window[-1].timestamp:
                raise InvalidTelemetryError(
                    f"sample for {vehicle_id} at {sample.timestamp.isoformat()} is older "
                    f"than the last one at {state.window[-1].timestamp.isoformat()}"
                )
            state.window.append(sample)
            window = list(state.window)

            analysis = self.analyzer.analyze_behavior(window)
            prediction = self.predictor.predict_accident_risk(sample, window, analysis.events)

            new_events = (
                self.analyzer.detect_pair_events(window[-1], window[-2]) if len(window) > 1 else []
            )

            state.analyses.append(analysis)
            state.predictions.appendleft(prediction)
            state.events.extend(new_events)

        alerts: List[Alert] = []
        for event in new_events:
            alerts.extend(self.dispatcher.process_driving_event(event))
        alerts.extend(
            self.dispatcher.process_accident_prediction(
                prediction, Location(lat=sample.latitude, lng=sample.longitude)
            )
        )

        result = PipelineResult(
            vehicle_id=vehicle_id,
            sample=sample,
            analysis=analysis,
            prediction=prediction,
            new_events=new_events,
            alerts=alerts,
        )
        if self.store is not None:
            result.persistence_error = self._persist(vehicle_id, customer_id, result)
        return result

    def process_stream(
        self, vehicle_id: str, customer_id: str, samples: Sequence[TelemetrySample]
    ) -> List[PipelineResult]:
        return [self.process_sample(vehicle_id, customer_id, s) for s in samples]

    def _persist(self, vehicle_id: str, customer_id: str, result: PipelineResult) -> Optional[str]:
        try:
            if vehicle_id not in self._registered:
                self.store.register_vehicle(vehicle_id, customer_id)
                self._registered.add(vehicle_id)
            self.store.insert_telemetry(vehicle_id, result.sample)
            for event in result.new_events:
                self.store.insert_driving_event(vehicle_id, event)
            self.store.insert_accident_prediction(
                vehicle_id, result.prediction, result.sample, alert_sent=bool(result.alerts)
            )
            for alert in result.alerts:
                self.store.insert_alert(vehicle_id, customer_id, alert)
        except PersistenceError as ex:
            logger.warning("persisting results for %s failed: %s", vehicle_id, ex)
            return str(ex)
        return None

    # ---- reports -------------------------------------------------------------

    def generate_report(
        self,
        customer_id: str,
        vehicle_id: str,
        report_type: ReportType,
        trips: Optional[Sequence[TripRecord]] = None,
        previous_period_score: Optional[float] = None,
    ) -> SafetyReport:
        """
        Report over the vehicle's in-memory history. Without ``trips``, the
        vehicle's stored trips inside the report period are used.
        """
        now = datetime.now(timezone.utc)
        if trips is None:
            trips = self._stored_trips(vehicle_id, report_type, now)

        with self._lock:
            state = self._vehicles.get(vehicle_id) or self._new_state()
            analyses = list(state.analyses)
            predictions = list(state.predictions)
            events = list(state.events)

        report = self.report_generator.generate_report(
            customer_id=customer_id,
            vehicle_id=vehicle_id,
            report_type=report_type,
            behavior_analyses=analyses,
            accident_predictions=predictions,
            driving_events=events,
            trips=trips,
            previous_period_score=previous_period_score,
            now=now,
        )

        if self.store is not None:
            try:
                self.store.insert_safety_report(report)
            except PersistenceError as ex:
                logger.warning("persisting report %s failed: %s", report.id, ex)
        return report

    def _stored_trips(self, vehicle_id: str, report_type: ReportType, now: datetime) -> List[TripRecord]:
        if self.store is None:
            return []
        start, end = report_period(ReportType(report_type), now)
        try:
            return self.store.get_trips(vehicle_id, start=start, end=end)
        except PersistenceError as ex:
            logger.warning("loading trips for %s failed: %s", vehicle_id, ex)
            return []
