# fleetsafety/api.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import CORS_ORIGINS, LOG_LEVEL
from .db import TelemetryStore
from .errors import InvalidTelemetryError, PersistenceError
from .pipeline import SafetyPipeline
from .schemas import AlertSeverity, ReportType, TelemetrySample, TripRecord

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Request schemas
# -----------------------------------------------------------------------------
class IngestRequest(BaseModel):
    vehicle_id: str = Field(..., description="Vehicle identifier like V_021")
    customer_id: str = Field(..., description="Owning customer")
    sample: TelemetrySample


class ReportRequest(BaseModel):
    customer_id: str
    vehicle_id: str
    report_type: ReportType = ReportType.WEEKLY
    trips: Optional[List[TripRecord]] = Field(default=None, description="Omit to use stored trips")
    previous_period_score: Optional[float] = None


class TripRequest(BaseModel):
    vehicle_id: str
    customer_id: str
    trip: TripRecord


class TripUpdate(BaseModel):
    distance: Optional[float] = Field(default=None, ge=0)
    duration: Optional[float] = Field(default=None, ge=0)
    safety_score: Optional[float] = None


# -----------------------------------------------------------------------------
# App
# -----------------------------------------------------------------------------
def create_app(pipeline: Optional[SafetyPipeline] = None) -> FastAPI:
    """
    Build the API around ``pipeline``. Without one, a pipeline backed by the
    configured database is created and its tables are set up on startup.
    """
    if pipeline is None:
        pipeline = SafetyPipeline(store=TelemetryStore())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = app.state.pipeline.store
        if store is not None:
            try:
                store.init_db()
            except PersistenceError as ex:
                logger.error("DB init failed: %s", ex)
        yield

    app = FastAPI(title="Fleet Safety API", version="0.1.0", lifespan=lifespan)
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def _pipeline(request: Request) -> SafetyPipeline:
    return request.app.state.pipeline


def _store(request: Request) -> TelemetryStore:
    store = _pipeline(request).store
    if store is None:
        raise HTTPException(status_code=503, detail="No database configured")
    return store


def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health(request: Request):
        p = _pipeline(request)
        return {
            "ok": True,
            "store_configured": p.store is not None,
            "vehicles": len(p.vehicles()),
            "alerts_in_memory": len(p.dispatcher.get_alerts()),
            "unread_alerts": p.dispatcher.get_unread_count(),
        }

    @app.post("/ingest")
    def ingest(req: IngestRequest, request: Request):
        try:
            result = _pipeline(request).process_sample(req.vehicle_id, req.customer_id, req.sample)
        except InvalidTelemetryError as ex:
            raise HTTPException(status_code=422, detail=str(ex))

        body = {
            "status": "accepted",
            "vehicle_id": req.vehicle_id,
            "overall_score": result.analysis.overall_score,
            "behavior_risk_level": result.analysis.risk_level,
            "new_events": [e.model_dump(mode="json") for e in result.new_events],
            "prediction": result.prediction.model_dump(mode="json"),
            "alerts": [a.model_dump(mode="json") for a in result.alerts],
        }
        if result.persistence_error:
            body["persistence_error"] = result.persistence_error
        return body

    @app.get("/vehicle/{vehicle_id}/analysis")
    def vehicle_analysis(vehicle_id: str, request: Request):
        analysis = _pipeline(request).latest_analysis(vehicle_id)
        if analysis is None:
            raise HTTPException(status_code=404, detail="No telemetry for this vehicle. Ingest samples first.")
        return {"vehicle_id": vehicle_id, "analysis": analysis.model_dump(mode="json")}

    @app.get("/vehicle/{vehicle_id}/prediction")
    def vehicle_prediction(vehicle_id: str, request: Request):
        prediction = _pipeline(request).latest_prediction(vehicle_id)
        if prediction is None:
            raise HTTPException(status_code=404, detail="No telemetry for this vehicle. Ingest samples first.")
        return {"vehicle_id": vehicle_id, "prediction": prediction.model_dump(mode="json")}

    @app.get("/alerts")
    def alerts(
        request: Request,
        unread_only: bool = Query(default=False),
        severity: Optional[AlertSeverity] = Query(default=None),
    ):
        items = _pipeline(request).dispatcher.get_alerts(unread_only=unread_only, severity=severity)
        return {"count": len(items), "alerts": [a.model_dump(mode="json") for a in items]}

    @app.get("/alerts/critical")
    def critical_alerts(request: Request):
        items = _pipeline(request).dispatcher.get_critical_alerts()
        return {"count": len(items), "alerts": [a.model_dump(mode="json") for a in items]}

    @app.post("/alerts/{alert_id}/read")
    def read_alert(alert_id: str, request: Request):
        p = _pipeline(request)
        if not p.dispatcher.mark_alert_as_read(alert_id):
            raise HTTPException(status_code=404, detail=f"Unknown alert {alert_id}")
        _sync_store(p, alert_id, acknowledged=False)
        return {"id": alert_id, "is_read": True}

    @app.post("/alerts/{alert_id}/ack")
    def ack_alert(alert_id: str, request: Request):
        p = _pipeline(request)
        if not p.dispatcher.acknowledge_alert(alert_id):
            raise HTTPException(status_code=404, detail=f"Unknown alert {alert_id}")
        _sync_store(p, alert_id, acknowledged=True)
        return {"id": alert_id, "is_read": True, "is_acknowledged": True}

    @app.delete("/alerts")
    def clear_alerts(request: Request):
        _pipeline(request).dispatcher.clear_alerts()
        return {"status": "cleared"}

    @app.get("/risk-zones")
    def risk_zones(request: Request):
        zones = _pipeline(request).predictor.risk_zones
        return {"count": len(zones), "zones": [z.model_dump(mode="json") for z in zones]}

    @app.post("/reports")
    def reports(req: ReportRequest, request: Request):
        report = _pipeline(request).generate_report(
            customer_id=req.customer_id,
            vehicle_id=req.vehicle_id,
            report_type=req.report_type,
            trips=req.trips,
            previous_period_score=req.previous_period_score,
        )
        return report.model_dump(mode="json")

    @app.post("/trips")
    def create_trip(req: TripRequest, request: Request):
        try:
            row = _store(request).insert_trip(req.vehicle_id, req.customer_id, req.trip)
        except PersistenceError as ex:
            raise HTTPException(status_code=503, detail=str(ex))
        return {"id": row["id"], "vehicle_id": req.vehicle_id}

    @app.patch("/trips/{trip_id}")
    def update_trip(trip_id: str, req: TripUpdate, request: Request):
        updates = req.model_dump(exclude_none=True)
        if not updates:
            raise HTTPException(status_code=400, detail="Nothing to update")
        try:
            found = _store(request).update_trip(trip_id, **updates)
        except PersistenceError as ex:
            raise HTTPException(status_code=503, detail=str(ex))
        if not found:
            raise HTTPException(status_code=404, detail=f"Unknown trip {trip_id}")
        return {"id": trip_id, **updates}

    @app.get("/vehicle/{vehicle_id}/trips")
    def vehicle_trips(vehicle_id: str, request: Request):
        try:
            items = _store(request).get_trips(vehicle_id)
        except PersistenceError as ex:
            raise HTTPException(status_code=503, detail=str(ex))
        return {"count": len(items), "trips": [t.model_dump(mode="json") for t in items]}

    @app.get("/customers/{customer_id}/vehicles")
    def customer_vehicles(customer_id: str, request: Request):
        try:
            rows = _store(request).get_vehicles_by_customer(customer_id)
        except PersistenceError as ex:
            raise HTTPException(status_code=503, detail=str(ex))
        return {"count": len(rows), "vehicles": [r["id"] for r in rows]}


def _sync_store(p: SafetyPipeline, alert_id: str, acknowledged: bool) -> None:
    if p.store is None:
        return
    try:
        if acknowledged:
            p.store.acknowledge_alert(alert_id)
        else:
            p.store.mark_alert_as_read(alert_id)
    except PersistenceError as ex:
        logger.warning("alert %s flag not persisted: %s", alert_id, ex)


app = create_app()
