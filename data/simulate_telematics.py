# data/simulate_telematics.py
import argparse
import json
from datetime import datetime, timezone
from itertools import islice
from pathlib import Path

from fleetsafety.schemas import Scenario
from fleetsafety.simulator import SimulationConfig, TelemetrySimulator


def simulate_events(n_vehicles=10, minutes=10, seed=42, interval_ms=1000,
                    scenarios=None, out_path="data/telemetry.ndjson"):
    """Write one NDJSON line per sample: vehicle_id, customer_id, scenario and the sample fields."""
    scenarios = scenarios or list(Scenario)
    n_samples = minutes * 60 * 1000 // interval_ms
    start = datetime.now(timezone.utc).replace(microsecond=0)

    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    with out.open("w") as f:
        for v in range(n_vehicles):
            vehicle = f"V_{v:03d}"
            scenario = Scenario(scenarios[v % len(scenarios)])
            sim = TelemetrySimulator(SimulationConfig(
                vehicle_id=vehicle,
                scenario=scenario,
                interval_ms=interval_ms,
                seed=seed + v,
                start_time=start,
            ))
            for sample in islice(sim.samples(), n_samples):
                row = {
                    "vehicle_id": vehicle,
                    "customer_id": f"C_{v:03d}",
                    "scenario": scenario.value,
                    **sample.model_dump(mode="json"),
                }
                f.write(json.dumps(row) + "\n")
                written += 1
    return written


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Generate simulated vehicle telemetry as NDJSON")
    ap.add_argument("--vehicles", type=int, default=10)
    ap.add_argument("--minutes", type=int, default=10)
    ap.add_argument("--seed", type=int, default=42)
    ap.add_argument("--interval-ms", type=int, default=1000)
    ap.add_argument("--scenario", action="append", choices=[s.value for s in Scenario],
                    help="repeat to cycle through several; default is all of them")
    ap.add_argument("--out", default="data/telemetry.ndjson")
    args = ap.parse_args()

    n = simulate_events(
        n_vehicles=args.vehicles,
        minutes=args.minutes,
        seed=args.seed,
        interval_ms=args.interval_ms,
        scenarios=args.scenario,
        out_path=args.out,
    )
    print(f"Wrote {n} samples to {args.out}")
