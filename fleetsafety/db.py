# fleetsafety/db.py
from __future__ import annotations

import logging
import threading
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import DATABASE_URL
from .errors import PersistenceError
from .features import frame_to_samples
from .schemas import (
    AccidentPrediction,
    Alert,
    DrivingEvent,
    ReportType,
    SafetyReport,
    TelemetrySample,
    TripRecord,
)

logger = logging.getLogger(__name__)

metadata = MetaData()

telemetry_data = Table(
    "telemetry_data", metadata,
    Column("id", String(64), primary_key=True),
    Column("vehicle_id", String(64), nullable=False, index=True),
    Column("timestamp", DateTime(timezone=True), nullable=False, index=True),
    Column("latitude", Float, nullable=False),
    Column("longitude", Float, nullable=False),
    Column("speed", Float, nullable=False),
    Column("acceleration_x", Float, nullable=False),
    Column("acceleration_y", Float, nullable=False),
    Column("acceleration_z", Float, nullable=False),
    Column("rpm", Float),
    Column("throttle_position", Float),
    Column("brake_pressure", Float),
    Column("steering_angle", Float),
    Column("fuel_level", Float),
    Column("engine_temp", Float),
)

driving_events = Table(
    "driving_events", metadata,
    Column("id", String(64), primary_key=True),
    Column("vehicle_id", String(64), nullable=False, index=True),
    Column("trip_id", String(64)),
    Column("event_type", String(32), nullable=False),
    Column("severity", String(16), nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False, index=True),
    Column("latitude", Float, nullable=False),
    Column("longitude", Float, nullable=False),
    Column("speed_at_event", Float, nullable=False),
    Column("acceleration_magnitude", Float),
    Column("event_data", JSON),
)

accident_predictions = Table(
    "accident_predictions", metadata,
    Column("id", String(64), primary_key=True),
    Column("vehicle_id", String(64), nullable=False, index=True),
    Column("trip_id", String(64)),
    Column("prediction_timestamp", DateTime(timezone=True), nullable=False),
    Column("risk_score", Float, nullable=False),
    Column("risk_level", String(16), nullable=False),
    Column("latitude", Float),
    Column("longitude", Float),
    Column("speed", Float),
    Column("payload", JSON, nullable=False),
    Column("alert_sent", Boolean, nullable=False, default=False),
)

real_time_alerts = Table(
    "real_time_alerts", metadata,
    Column("id", String(64), primary_key=True),
    Column("vehicle_id", String(64), nullable=False),
    Column("customer_id", String(64), nullable=False, index=True),
    Column("trip_id", String(64)),
    Column("alert_type", String(32), nullable=False),
    Column("severity", String(16), nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("latitude", Float),
    Column("longitude", Float),
    Column("message", Text, nullable=False),
    Column("explanation", Text),
    Column("reasoning", JSON),
    Column("recommended_action", Text),
    Column("is_read", Boolean, nullable=False, default=False),
    Column("is_acknowledged", Boolean, nullable=False, default=False),
    Column("acknowledged_at", DateTime(timezone=True)),
)

safety_reports = Table(
    "safety_reports", metadata,
    Column("id", String(64), primary_key=True),
    Column("customer_id", String(64), nullable=False, index=True),
    Column("vehicle_id", String(64), nullable=False),
    Column("report_type", String(16), nullable=False),
    Column("period_start", DateTime(timezone=True), nullable=False),
    Column("period_end", DateTime(timezone=True), nullable=False),
    Column("generated_at", DateTime(timezone=True), nullable=False),
    Column("overall_safety_score", Integer, nullable=False),
    Column("payload", JSON, nullable=False),
)

vehicles = Table(
    "vehicles", metadata,
    Column("id", String(64), primary_key=True),
    Column("customer_id", String(64), nullable=False, index=True),
    Column("registered_at", DateTime(timezone=True), nullable=False),
)

trips = Table(
    "trips", metadata,
    Column("id", String(64), primary_key=True),
    Column("vehicle_id", String(64), nullable=False, index=True),
    Column("customer_id", String(64), nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False, index=True),
    Column("distance", Float, nullable=False),
    Column("duration", Float, nullable=False),
    Column("safety_score", Float, nullable=False),
)

TRIP_UPDATABLE = ("distance", "duration", "safety_score")

# table name -> column that insert notifications are keyed by
_SUBSCRIPTION_KEYS = {
    telemetry_data.name: "vehicle_id",
    driving_events.name: "vehicle_id",
    accident_predictions.name: "vehicle_id",
    real_time_alerts.name: "customer_id",
    safety_reports.name: "customer_id",
    trips.name: "vehicle_id",
}

InsertCallback = Callable[[Dict[str, Any]], None]


def make_engine(url: str = DATABASE_URL) -> Engine:
    return create_engine(url, pool_pre_ping=True, future=True)


def _new_id() -> str:
    return uuid.uuid4().hex


class TelemetryStore:
    """
    Persistence sink for telemetry, events, predictions, alerts, reports,
    vehicles and trips.

    Any database failure surfaces as PersistenceError. Subscribers registered
    with ``subscribe`` are called after each committed insert on the table,
    filtered by vehicle id (customer id for alerts and reports).
    """

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine if engine is not None else make_engine()
        self._subscribers: Dict[Tuple[str, str], List[InsertCallback]] = defaultdict(list)
        self._sub_lock = threading.Lock()

    def init_db(self) -> None:
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as ex:
            raise PersistenceError(f"could not create tables: {ex}") from ex

    # ---- inserts -------------------------------------------------------------

    def insert_telemetry(self, vehicle_id: str, sample: TelemetrySample) -> Dict[str, Any]:
        row = {"id": _new_id(), "vehicle_id": vehicle_id, **sample.model_dump()}
        return self._insert(telemetry_data, row)

    def insert_driving_event(
        self, vehicle_id: str, event: DrivingEvent, trip_id: Optional[str] = None
    ) -> Dict[str, Any]:
        row = {
            "id": _new_id(),
            "vehicle_id": vehicle_id,
            "trip_id": trip_id,
            "event_type": event.type.value,
            "severity": event.severity.value,
            "timestamp": event.timestamp,
            "latitude": event.location.lat,
            "longitude": event.location.lng,
            "speed_at_event": event.speed_at_event,
            "acceleration_magnitude": event.acceleration_magnitude,
            "event_data": event.model_dump(mode="json"),
        }
        return self._insert(driving_events, row)

    def insert_accident_prediction(
        self,
        vehicle_id: str,
        prediction: AccidentPrediction,
        sample: TelemetrySample,
        alert_sent: bool = False,
        trip_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        row = {
            "id": _new_id(),
            "vehicle_id": vehicle_id,
            "trip_id": trip_id,
            "prediction_timestamp": sample.timestamp,
            "risk_score": prediction.risk_score,
            "risk_level": prediction.risk_level.value,
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "speed": sample.speed,
            "payload": prediction.model_dump(mode="json"),
            "alert_sent": alert_sent,
        }
        return self._insert(accident_predictions, row)

    def insert_alert(
        self, vehicle_id: str, customer_id: str, alert: Alert, trip_id: Optional[str] = None
    ) -> Dict[str, Any]:
        row = {
            "id": alert.id,
            "vehicle_id": vehicle_id,
            "customer_id": customer_id,
            "trip_id": trip_id,
            "alert_type": alert.type.value,
            "severity": alert.severity.value,
            "timestamp": alert.timestamp,
            "latitude": alert.location.lat,
            "longitude": alert.location.lng,
            "message": alert.message,
            "explanation": alert.explanation,
            "reasoning": alert.reasoning.model_dump(mode="json"),
            "recommended_action": alert.recommended_action,
            "is_read": alert.is_read,
            "is_acknowledged": alert.is_acknowledged,
        }
        return self._insert(real_time_alerts, row)

    def insert_safety_report(self, report: SafetyReport) -> Dict[str, Any]:
        row = {
            "id": report.id,
            "customer_id": report.customer_id,
            "vehicle_id": report.vehicle_id,
            "report_type": report.report_type.value,
            "period_start": report.period_start,
            "period_end": report.period_end,
            "generated_at": report.generated_at,
            "overall_safety_score": report.overall_safety_score,
            "payload": report.model_dump(mode="json"),
        }
        return self._insert(safety_reports, row)

    def insert_trip(self, vehicle_id: str, customer_id: str, trip: TripRecord) -> Dict[str, Any]:
        row = {"id": _new_id(), "vehicle_id": vehicle_id, "customer_id": customer_id, **trip.model_dump()}
        return self._insert(trips, row)

    def update_trip(self, trip_id: str, **updates: float) -> bool:
        unknown = set(updates) - set(TRIP_UPDATABLE)
        if unknown:
            raise ValueError(f"trip fields cannot be updated: {sorted(unknown)}")
        if not updates:
            return False
        stmt = update(trips).where(trips.c.id == trip_id).values(**updates)
        return self._update(stmt, f"could not update trip {trip_id}")

    def register_vehicle(self, vehicle_id: str, customer_id: str) -> bool:
        """Record the vehicle's owner. False when the vehicle was already known."""
        try:
            with self.engine.begin() as conn:
                known = conn.execute(select(vehicles.c.id).where(vehicles.c.id == vehicle_id)).first()
                if known is None:
                    conn.execute(vehicles.insert().values(
                        id=vehicle_id,
                        customer_id=customer_id,
                        registered_at=datetime.now(timezone.utc),
                    ))
        except SQLAlchemyError as ex:
            raise PersistenceError(f"could not register vehicle {vehicle_id}: {ex}") from ex
        return known is None

    # ---- reads ---------------------------------------------------------------

    def get_telemetry(self, vehicle_id: str, limit: int = 100) -> List[TelemetrySample]:
        """Latest ``limit`` samples for the vehicle, oldest first."""
        stmt = (
            select(telemetry_data)
            .where(telemetry_data.c.vehicle_id == vehicle_id)
            .order_by(telemetry_data.c.timestamp.desc())
            .limit(limit)
        )
        try:
            with self.engine.connect() as conn:
                df = pd.read_sql(stmt, conn)
        except (SQLAlchemyError, pd.errors.DatabaseError) as ex:
            raise PersistenceError(f"telemetry read failed for {vehicle_id}: {ex}") from ex
        return frame_to_samples(df.drop(columns=["id", "vehicle_id"]))

    def get_driving_events(
        self,
        vehicle_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[DrivingEvent]:
        """Events newest first, optionally bounded by [start, end]."""
        stmt = select(driving_events.c.event_data).where(driving_events.c.vehicle_id == vehicle_id)
        if start:
            stmt = stmt.where(driving_events.c.timestamp >= start)
        if end:
            stmt = stmt.where(driving_events.c.timestamp <= end)
        stmt = stmt.order_by(driving_events.c.timestamp.desc())
        rows = self._fetch(stmt, f"event read failed for {vehicle_id}")
        return [DrivingEvent.model_validate(r["event_data"]) for r in rows]

    def get_recent_predictions(self, vehicle_id: str, limit: int = 50) -> List[AccidentPrediction]:
        """Newest first."""
        stmt = (
            select(accident_predictions.c.payload)
            .where(accident_predictions.c.vehicle_id == vehicle_id)
            .order_by(accident_predictions.c.prediction_timestamp.desc())
            .limit(limit)
        )
        rows = self._fetch(stmt, f"prediction read failed for {vehicle_id}")
        return [AccidentPrediction.model_validate(r["payload"]) for r in rows]

    def get_unread_alerts(self, customer_id: str) -> List[Dict[str, Any]]:
        stmt = (
            select(real_time_alerts)
            .where(real_time_alerts.c.customer_id == customer_id)
            .where(real_time_alerts.c.is_read.is_(False))
            .order_by(real_time_alerts.c.timestamp.desc())
        )
        return self._fetch(stmt, f"alert read failed for {customer_id}")

    def get_safety_reports(
        self, customer_id: str, report_type: Optional[ReportType] = None
    ) -> List[SafetyReport]:
        stmt = select(safety_reports.c.payload).where(safety_reports.c.customer_id == customer_id)
        if report_type is not None:
            stmt = stmt.where(safety_reports.c.report_type == ReportType(report_type).value)
        stmt = stmt.order_by(safety_reports.c.generated_at.desc())
        rows = self._fetch(stmt, f"report read failed for {customer_id}")
        return [SafetyReport.model_validate(r["payload"]) for r in rows]

    def get_vehicles_by_customer(self, customer_id: str) -> List[Dict[str, Any]]:
        stmt = select(vehicles).where(vehicles.c.customer_id == customer_id).order_by(vehicles.c.id)
        return self._fetch(stmt, f"vehicle read failed for {customer_id}")

    def get_trips(
        self,
        vehicle_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TripRecord]:
        """Trips oldest first, optionally bounded by [start, end]."""
        stmt = select(trips).where(trips.c.vehicle_id == vehicle_id)
        if start:
            stmt = stmt.where(trips.c.timestamp >= start)
        if end:
            stmt = stmt.where(trips.c.timestamp <= end)
        stmt = stmt.order_by(trips.c.timestamp)
        rows = self._fetch(stmt, f"trip read failed for {vehicle_id}")
        return [
            TripRecord(
                distance=r["distance"],
                duration=r["duration"],
                safety_score=r["safety_score"],
                timestamp=r["timestamp"],
            )
            for r in rows
        ]

    # ---- alert flags ---------------------------------------------------------

    def mark_alert_as_read(self, alert_id: str) -> bool:
        stmt = update(real_time_alerts).where(real_time_alerts.c.id == alert_id).values(is_read=True)
        return self._update(stmt, f"could not mark alert {alert_id} read")

    def acknowledge_alert(self, alert_id: str) -> bool:
        stmt = (
            update(real_time_alerts)
            .where(real_time_alerts.c.id == alert_id)
            .values(is_read=True, is_acknowledged=True, acknowledged_at=datetime.now(timezone.utc))
        )
        return self._update(stmt, f"could not acknowledge alert {alert_id}")

    # ---- insert notifications ------------------------------------------------

    def subscribe(self, table: str, key: str, callback: InsertCallback) -> Callable[[], None]:
        if table not in _SUBSCRIPTION_KEYS:
            raise ValueError(f"unknown table: {table}")
        slot = (table, key)
        with self._sub_lock:
            self._subscribers[slot].append(callback)

        def unsubscribe() -> None:
            with self._sub_lock:
                if callback in self._subscribers[slot]:
                    self._subscribers[slot].remove(callback)

        return unsubscribe

    # ---- internals -----------------------------------------------------------

    def _insert(self, table: Table, row: Dict[str, Any]) -> Dict[str, Any]:
        try:
            with self.engine.begin() as conn:
                conn.execute(table.insert().values(**row))
        except SQLAlchemyError as ex:
            raise PersistenceError(f"insert into {table.name} failed: {ex}") from ex
        self._notify(table.name, row)
        return row

    def _fetch(self, stmt, message: str) -> List[Dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                return [dict(r) for r in conn.execute(stmt).mappings()]
        except SQLAlchemyError as ex:
            raise PersistenceError(f"{message}: {ex}") from ex

    def _update(self, stmt, message: str) -> bool:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as ex:
            raise PersistenceError(f"{message}: {ex}") from ex
        return result.rowcount > 0

    def _notify(self, table: str, row: Dict[str, Any]) -> None:
        key = row.get(_SUBSCRIPTION_KEYS[table])
        with self._sub_lock:
            callbacks = list(self._subscribers.get((table, key), []))
        for callback in callbacks:
            try:
                callback(row)
            except Exception:
                logger.exception("insert subscriber failed on %s", table)
