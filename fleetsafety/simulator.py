# fleetsafety/simulator.py
from __future__ import annotations

import asyncio
import logging
import math
import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, Iterator, List, Optional

from .config import SIM_INTERVAL_MS
from .schemas import Location, Scenario, TelemetrySample

logger = logging.getLogger(__name__)

GRAVITY = 9.81
HISTORY_LIMIT = 1000
KM_PER_DEG_LAT = 111.32


@dataclass
class SimulationConfig:
    vehicle_id: str
    scenario: Scenario = Scenario.NORMAL
    interval_ms: int = SIM_INTERVAL_MS
    start_location: Location = field(default_factory=lambda: Location(lat=12.9716, lng=77.5946))
    seed: Optional[int] = None
    start_time: Optional[datetime] = None


@dataclass
class _Motion:
    """Mutable vehicle state while a sequence is being generated."""
    lat: float
    lng: float
    speed: float = 0.0
    heading: float = 0.0
    step: int = 0


class TelemetrySimulator:
    """
    Synthetic telemetry feed.

    ``samples()`` is a lazy generator; every call restarts from the configured
    start point, so a fixed seed reproduces the same sequence. ``run()`` pushes
    the same samples to a callback on the asyncio loop, one per interval, until
    ``stop()`` is called.
    """

    def __init__(self, config: SimulationConfig):
        self.config = config
        self._running = False
        self._history: Deque[TelemetrySample] = deque(maxlen=HISTORY_LIMIT)

    # ---- lifecycle -----------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        if self._running:
            logger.info("stopping simulation for %s", self.config.vehicle_id)
        self._running = False

    async def run(
        self,
        on_sample: Callable[[TelemetrySample], None],
        max_samples: Optional[int] = None,
    ) -> int:
        """Push samples to ``on_sample`` until stopped. Returns how many were sent."""
        if self._running:
            logger.warning("simulation already running for %s", self.config.vehicle_id)
            return 0

        self._running = True
        self._history.clear()
        interval = self.config.interval_ms / 1000.0
        logger.info(
            "starting %s simulation for %s every %.3fs",
            self.config.scenario.value, self.config.vehicle_id, interval,
        )

        sent = 0
        try:
            for sample in self.samples():
                if not self._running:
                    break
                self._history.append(sample)
                on_sample(sample)
                sent += 1
                if max_samples is not None and sent >= max_samples:
                    break
                await asyncio.sleep(interval)
        finally:
            self._running = False
        return sent

    def history(self) -> List[TelemetrySample]:
        return list(self._history)

    # ---- generation ----------------------------------------------------------

    def samples(self) -> Iterator[TelemetrySample]:
        cfg = self.config
        rng = random.Random(cfg.seed)
        state = _Motion(lat=cfg.start_location.lat, lng=cfg.start_location.lng)
        start = cfg.start_time or datetime.now(timezone.utc)
        step = timedelta(milliseconds=cfg.interval_ms)

        while True:
            yield self._next_sample(rng, state, start + state.step * step)
            state.step += 1

    def _next_sample(self, rng: random.Random, state: _Motion, ts: datetime) -> TelemetrySample:
        motion = SCENARIOS[self.config.scenario](rng, state)
        self._advance(rng, state, motion["speed"])

        sample = TelemetrySample(
            timestamp=ts,
            speed=motion["speed"],
            acceleration_x=motion["acceleration_x"],
            acceleration_y=motion["acceleration_y"],
            acceleration_z=motion["acceleration_z"] + GRAVITY,
            latitude=state.lat,
            longitude=state.lng,
            rpm=_rpm(rng, motion["speed"]),
            throttle_position=motion["throttle_position"],
            brake_pressure=motion["brake_pressure"],
            steering_angle=motion["steering_angle"],
            fuel_level=max(0.0, 100 - state.step * 0.01),
            engine_temp=85 + rng.random() * 10,
        )
        state.speed = motion["speed"]
        return sample

    def _advance(self, rng: random.Random, state: _Motion, speed: float) -> None:
        distance_km = speed / 3.6 * (self.config.interval_ms / 1000.0) / 1000.0

        state.heading = (state.heading + (rng.random() - 0.5) * 10 + 360) % 360
        heading = math.radians(state.heading)

        state.lat += distance_km * math.cos(heading) / KM_PER_DEG_LAT
        state.lng += distance_km * math.sin(heading) / (
            KM_PER_DEG_LAT * math.cos(math.radians(state.lat))
        )


def _rpm(rng: random.Random, speed: float) -> float:
    return float(round(800 + speed * 35 + (rng.random() - 0.5) * 100))


def _clip(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return min(hi, max(lo, x))


def _noise(rng: random.Random, scale: float) -> float:
    return (rng.random() - 0.5) * scale


# ---- scenarios ---------------------------------------------------------------

Motion = Dict[str, float]


def _normal(rng: random.Random, s: _Motion) -> Motion:
    target = 50 + rng.random() * 20
    accel = (target - s.speed) * 0.1 + _noise(rng, 0.5)
    return {
        "speed": max(0.0, s.speed + accel),
        "acceleration_x": accel,
        "acceleration_y": _noise(rng, 1),
        "acceleration_z": _noise(rng, 0.5),
        "throttle_position": _clip(30 + accel * 10),
        "brake_pressure": abs(accel) * 2 if accel < -1 else 0.0,
        "steering_angle": _noise(rng, 10),
    }


def _aggressive(rng: random.Random, s: _Motion) -> Motion:
    target = 70 + rng.random() * 40
    accel = (target - s.speed) * 0.3 + (rng.random() - 0.3) * 3
    harsh = -10 + rng.random() * 2 if rng.random() < 0.1 else 0.0
    rapid = 5 + rng.random() * 3 if rng.random() < 0.15 else accel
    delta = harsh or rapid
    return {
        "speed": max(0.0, s.speed + delta),
        "acceleration_x": delta,
        "acceleration_y": _noise(rng, 3),
        "acceleration_z": _noise(rng, 2),
        "throttle_position": _clip(60 + rapid * 5),
        "brake_pressure": abs(harsh) * 3 if harsh else 0.0,
        "steering_angle": _noise(rng, 35),
    }


def _highway(rng: random.Random, s: _Motion) -> Motion:
    target = 90 + rng.random() * 20
    accel = (target - s.speed) * 0.05 + _noise(rng, 0.3)
    return {
        "speed": max(0.0, s.speed + accel),
        "acceleration_x": accel,
        "acceleration_y": _noise(rng, 0.5),
        "acceleration_z": _noise(rng, 0.3),
        "throttle_position": _clip(50 + accel * 8),
        "brake_pressure": abs(accel) * 2 if accel < -0.5 else 0.0,
        "steering_angle": _noise(rng, 5),
    }


def _city(rng: random.Random, s: _Motion) -> Motion:
    target = 20 + rng.random() * 30
    accel = (target - s.speed) * 0.2 + _noise(rng, 1.5)
    stop_and_go = rng.random() < 0.2
    if stop_and_go:
        brake = 8.0
    elif accel < -1:
        brake = abs(accel) * 2
    else:
        brake = 0.0
    return {
        "speed": max(0.0, s.speed * 0.5 if stop_and_go else s.speed + accel),
        "acceleration_x": -4.0 if stop_and_go else accel,
        "acceleration_y": _noise(rng, 2),
        "acceleration_z": _noise(rng, 1),
        "throttle_position": _clip(40 + accel * 10),
        "brake_pressure": brake,
        "steering_angle": _noise(rng, 20),
    }


def _dangerous(rng: random.Random, s: _Motion) -> Motion:
    target = 100 + rng.random() * 40

    if rng.random() < 0.15:
        kind = rng.random()
        if kind < 0.33:
            return {
                "speed": max(0.0, s.speed - 15),
                "acceleration_x": -12.0,
                "acceleration_y": _noise(rng, 5),
                "acceleration_z": _noise(rng, 3),
                "throttle_position": 0.0,
                "brake_pressure": 15.0,
                "steering_angle": _noise(rng, 50),
            }
        if kind < 0.66:
            return {
                "speed": min(140.0, s.speed + 8),
                "acceleration_x": 8.0,
                "acceleration_y": _noise(rng, 4),
                "acceleration_z": _noise(rng, 2),
                "throttle_position": 100.0,
                "brake_pressure": 0.0,
                "steering_angle": _noise(rng, 45),
            }

    accel = (target - s.speed) * 0.4 + (rng.random() - 0.3) * 4
    return {
        "speed": max(0.0, s.speed + accel),
        "acceleration_x": accel,
        "acceleration_y": _noise(rng, 4),
        "acceleration_z": _noise(rng, 3),
        "throttle_position": _clip(70 + accel * 5),
        "brake_pressure": abs(accel) * 3 if accel < -2 else 0.0,
        "steering_angle": _noise(rng, 40),
    }


def _fatigue(rng: random.Random, s: _Motion) -> Motion:
    wave = math.sin(s.step * 0.1) * 15

    if rng.random() < 0.05:     # micro-sleep
        return {
            "speed": max(0.0, s.speed - 8),
            "acceleration_x": -3.0,
            "acceleration_y": _noise(rng, 6),
            "acceleration_z": _noise(rng, 3),
            "throttle_position": 0.0,
            "brake_pressure": 0.0,
            "steering_angle": _noise(rng, 25),
        }

    accel = (60 + wave - s.speed) * 0.15
    return {
        "speed": max(0.0, s.speed + accel),
        "acceleration_x": accel,
        "acceleration_y": _noise(rng, 3),
        "acceleration_z": _noise(rng, 1.5),
        "throttle_position": _clip(35 + abs(wave) * 2),
        "brake_pressure": abs(accel) * 2 if accel < -1 else 0.0,
        "steering_angle": wave * 0.5 + _noise(rng, 15),
    }


SCENARIOS: Dict[Scenario, Callable[[random.Random, _Motion], Motion]] = {
    Scenario.NORMAL: _normal,
    Scenario.AGGRESSIVE: _aggressive,
    Scenario.HIGHWAY: _highway,
    Scenario.CITY: _city,
    Scenario.DANGEROUS: _dangerous,
    Scenario.FATIGUE: _fatigue,
}
