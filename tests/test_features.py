# tests/test_features.py
from datetime import timedelta

import pandas as pd
import pytest

from fleetsafety.errors import InvalidTelemetryError
from fleetsafety.features import (
    acceleration_magnitude,
    frame_to_samples,
    haversine_distance,
    samples_to_frame,
    speed_change_rate,
    validate_window,
    variance,
)


def test_variance_is_population_variance():
    assert variance([]) == 0.0
    assert variance([5, 5, 5]) == 0.0
    assert variance([1, 2, 3]) == pytest.approx(2 / 3)


def test_acceleration_magnitude(make_sample):
    s = make_sample(50, acceleration_x=3, acceleration_y=4, acceleration_z=0)
    assert acceleration_magnitude(s) == pytest.approx(5.0)


def test_speed_change_rate(make_sample):
    assert speed_change_rate(make_sample(60, t=0), make_sample(48, t=1)) == pytest.approx(-43.2)
    assert speed_change_rate(make_sample(60, t=0), make_sample(48, t=0)) is None


def test_haversine_distance():
    assert haversine_distance(12.9, 77.6, 12.9, 77.6) == 0.0
    # one degree of latitude
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111_195, rel=1e-3)


def test_validate_window_rejects_backwards_time(make_sample):
    validate_window([])
    validate_window([make_sample(10, t=0), make_sample(10, t=0), make_sample(10, t=1)])
    with pytest.raises(InvalidTelemetryError):
        validate_window([make_sample(10, t=1), make_sample(10, t=0)])


def test_frame_to_samples_empty():
    assert frame_to_samples(pd.DataFrame(columns=["timestamp", "speed"])) == []


def test_frame_to_samples_sorts_and_fills_missing(make_window):
    window = make_window([30, 40, 50], steering_angle=2.0)
    df = samples_to_frame(window).iloc[::-1]
    df.loc[df.index[0], "steering_angle"] = float("nan")
    df = df.drop(columns=["rpm"])

    out = frame_to_samples(df)

    assert [s.speed for s in out] == [30, 40, 50]
    assert out[1].timestamp - out[0].timestamp == timedelta(seconds=1)
    assert out[2].steering_angle is None
    assert out[0].steering_angle == 2.0
    assert all(s.rpm is None for s in out)


def test_frame_to_samples_requires_timestamp():
    with pytest.raises(InvalidTelemetryError):
        frame_to_samples(pd.DataFrame({"speed": [1.0]}))


def test_samples_to_frame_columns(make_window):
    df = samples_to_frame(make_window([10, 20]))
    assert df.shape == (2, 13)
    assert list(df.columns[:2]) == ["timestamp", "speed"]
