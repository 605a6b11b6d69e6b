# tests/test_simulator.py
import asyncio
from datetime import datetime, timedelta, timezone
from itertools import islice

import pytest

from fleetsafety.schemas import Scenario
from fleetsafety.simulator import GRAVITY, SimulationConfig, TelemetrySimulator

START = datetime(2024, 5, 6, 8, 0, tzinfo=timezone.utc)


def _sim(scenario=Scenario.NORMAL, seed=7, interval_ms=1000):
    return TelemetrySimulator(SimulationConfig(
        vehicle_id="V_001", scenario=scenario, interval_ms=interval_ms, seed=seed, start_time=START,
    ))


def test_same_seed_same_sequence():
    a = list(islice(_sim().samples(), 50))
    b = list(islice(_sim().samples(), 50))
    assert a == b
    assert a != list(islice(_sim(seed=8).samples(), 50))


def test_samples_restart_from_the_beginning():
    sim = _sim()
    first = list(islice(sim.samples(), 10))
    again = list(islice(sim.samples(), 10))
    assert first == again


def test_timestamps_follow_the_interval():
    samples = list(islice(_sim(interval_ms=250).samples(), 5))
    assert samples[0].timestamp == START
    assert [s.timestamp - samples[0].timestamp for s in samples] == [
        timedelta(milliseconds=250 * i) for i in range(5)
    ]


@pytest.mark.parametrize("scenario", list(Scenario))
def test_every_scenario_produces_plausible_samples(scenario):
    samples = list(islice(_sim(scenario).samples(), 200))
    assert all(s.speed >= 0 for s in samples)
    assert all(0 <= s.throttle_position <= 100 for s in samples)
    # vertical axis carries gravity
    assert abs(sum(s.acceleration_z for s in samples) / len(samples) - GRAVITY) < 1.0
    assert samples[-1].latitude != samples[0].latitude


def test_highway_runs_faster_than_city():
    highway = list(islice(_sim(Scenario.HIGHWAY).samples(), 300))[-100:]
    city = list(islice(_sim(Scenario.CITY).samples(), 300))[-100:]
    assert min(s.speed for s in highway) > max(s.speed for s in city)


def test_run_pushes_samples_until_limit():
    sim = _sim(interval_ms=1)
    received = []

    sent = asyncio.run(sim.run(received.append, max_samples=5))

    assert sent == 5
    assert received == sim.history()
    assert received == list(islice(sim.samples(), 5))
    assert sim.is_running is False


def test_stop_from_callback():
    sim = _sim(interval_ms=1)
    received = []

    def on_sample(sample):
        received.append(sample)
        if len(received) == 3:
            sim.stop()

    assert asyncio.run(sim.run(on_sample)) == 3


def test_second_run_while_running_is_ignored():
    sim = _sim(interval_ms=1)

    async def both():
        first = asyncio.ensure_future(sim.run(lambda s: None, max_samples=20))
        await asyncio.sleep(0)
        second = await sim.run(lambda s: None, max_samples=5)
        return await first, second

    first, second = asyncio.run(both())
    assert (first, second) == (20, 0)
