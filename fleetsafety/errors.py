# fleetsafety/errors.py
from __future__ import annotations


class FleetSafetyError(Exception):
    """Base class for errors raised by the fleet safety core."""


class InvalidTelemetryError(FleetSafetyError, ValueError):
    """Telemetry window is malformed (e.g. timestamps go backwards)."""


class PersistenceError(FleetSafetyError):
    """The persistence sink failed to read or write."""
