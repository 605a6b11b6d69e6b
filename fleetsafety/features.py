# fleetsafety/features.py
from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import InvalidTelemetryError
from .schemas import TelemetrySample

# ---- constants ---------------------------------------------------------------

EARTH_RADIUS_M = 6_371_000.0
MS_TO_KMH = 3.6

SAMPLE_COLUMNS = [
    "timestamp",
    "speed",
    "acceleration_x",
    "acceleration_y",
    "acceleration_z",
    "latitude",
    "longitude",
    "rpm",
    "throttle_position",
    "brake_pressure",
    "steering_angle",
    "fuel_level",
    "engine_temp",
]

_OPTIONAL_COLUMNS = SAMPLE_COLUMNS[7:]


# ---- window statistics -------------------------------------------------------

def variance(values: Iterable[float]) -> float:
    """Population variance (divides by n). Empty input gives 0.0."""
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return 0.0
    return float(np.var(arr))


def mean(values: Iterable[float]) -> float:
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return 0.0
    return float(arr.mean())


def acceleration_magnitude(sample: TelemetrySample) -> float:
    """Euclidean norm of the 3-axis acceleration."""
    return math.sqrt(
        sample.acceleration_x ** 2
        + sample.acceleration_y ** 2
        + sample.acceleration_z ** 2
    )


def speeds(window: Sequence[TelemetrySample]) -> List[float]:
    return [s.speed for s in window]


def steering_angles(window: Sequence[TelemetrySample]) -> List[float]:
    # missing steering counts as straight ahead
    return [s.steering_angle or 0.0 for s in window]


def seconds_between(previous: TelemetrySample, current: TelemetrySample) -> float:
    return (current.timestamp - previous.timestamp).total_seconds()


def speed_change_rate(previous: TelemetrySample, current: TelemetrySample) -> Optional[float]:
    """
    Rate of speed change between two samples, scaled by 3.6.
    Returns None when both samples share a timestamp.
    """
    dt = seconds_between(previous, current)
    if dt == 0:
        return None
    return (current.speed - previous.speed) / dt * MS_TO_KMH


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def validate_window(window: Sequence[TelemetrySample]) -> None:
    """Raise InvalidTelemetryError unless timestamps are non-decreasing."""
    for i in range(1, len(window)):
        if window[i].timestamp < window[i - 1].timestamp:
            raise InvalidTelemetryError(
                f"telemetry window is not time-ordered at index {i}: "
                f"{window[i].timestamp.isoformat()} < {window[i - 1].timestamp.isoformat()}"
            )


# ---- tabular conversion ------------------------------------------------------

def samples_to_frame(samples: Sequence[TelemetrySample]) -> pd.DataFrame:
    """One row per sample, columns in SAMPLE_COLUMNS order."""
    if not samples:
        return pd.DataFrame(columns=SAMPLE_COLUMNS)
    df = pd.DataFrame([s.model_dump() for s in samples])
    return df[SAMPLE_COLUMNS]


def frame_to_samples(df: pd.DataFrame) -> List[TelemetrySample]:
    """
    Inverse of samples_to_frame. Rows are sorted by timestamp; missing
    optional columns and NaN cells become None.
    """
    if df.empty:
        return []

    df = df.copy()
    if "timestamp" not in df.columns:
        raise InvalidTelemetryError("telemetry frame must include 'timestamp' column")
    df["timestamp"] = pd.to_datetime(df["timestamp"], errors="coerce")
    df = df.dropna(subset=["timestamp"]).sort_values("timestamp", kind="stable")

    for col in _OPTIONAL_COLUMNS:
        if col not in df.columns:
            df[col] = np.nan
    for col, default in [("acceleration_x", 0.0), ("acceleration_y", 0.0), ("acceleration_z", 0.0)]:
        if col not in df.columns:
            df[col] = default
        df[col] = df[col].fillna(default)

    out: List[TelemetrySample] = []
    for row in df[SAMPLE_COLUMNS].to_dict(orient="records"):
        row["timestamp"] = row["timestamp"].to_pydatetime()
        for col in _OPTIONAL_COLUMNS:
            if pd.isna(row[col]):
                row[col] = None
        out.append(TelemetrySample(**row))
    return out
