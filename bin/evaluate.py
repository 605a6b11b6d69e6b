# bin/evaluate.py
# Replays an NDJSON telemetry file through the scoring pipeline and writes a
# per-vehicle summary plus a risk-score plot under docs/.
import argparse
import logging
from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd

from fleetsafety.errors import InvalidTelemetryError
from fleetsafety.features import frame_to_samples
from fleetsafety.pipeline import SafetyPipeline
from fleetsafety.schemas import ReportType

logging.basicConfig(level=logging.WARNING)

ap = argparse.ArgumentParser()
ap.add_argument("--events", default="data/telemetry.ndjson")
ap.add_argument("--out-dir", default="docs")
args = ap.parse_args()

df = pd.read_json(args.events, lines=True)
pipeline = SafetyPipeline()

rows = []
series = {}
for (vehicle_id, customer_id), g in df.groupby(["vehicle_id", "customer_id"], sort=True):
    samples = frame_to_samples(g)
    try:
        results = pipeline.process_stream(vehicle_id, customer_id, samples)
    except InvalidTelemetryError as ex:
        print(f"skipping {vehicle_id}: {ex}")
        continue

    scores = [r.prediction.risk_score for r in results]
    series[vehicle_id] = scores
    report = pipeline.generate_report(customer_id, vehicle_id, ReportType.DAILY)
    last = results[-1]
    rows.append({
        "vehicle_id": vehicle_id,
        "scenario": g["scenario"].iloc[0] if "scenario" in g.columns else None,
        "samples": len(results),
        "events": sum(len(r.new_events) for r in results),
        "alerts": sum(len(r.alerts) for r in results),
        "final_behavior_score": last.analysis.overall_score,
        "final_behavior_risk": last.analysis.risk_level.value,
        "mean_risk_score": sum(scores) / len(scores),
        "max_risk_score": max(scores),
        "anomalies": sum(1 for r in results if r.prediction.anomaly_detected),
        "report_score": report.overall_safety_score,
        "risk_trend": report.risk_analysis.risk_trend.value,
    })

summary = pd.DataFrame(rows)
print(summary.to_string(index=False))

out_dir = Path(args.out_dir)
out_dir.mkdir(exist_ok=True)
summary.to_csv(out_dir / "risk_summary.csv", index=False)

# Risk score over time per vehicle
plt.figure(figsize=(10, 5))
for vehicle_id, scores in series.items():
    plt.plot(range(len(scores)), scores, label=vehicle_id, linewidth=1)
plt.axhline(0.7, linestyle="--", color="grey")
plt.title("Accident risk score per sample")
plt.xlabel("Sample"); plt.ylabel("Risk score")
if series:
    plt.legend(fontsize="small", ncol=2)
plt.savefig(out_dir / "risk_scores.png", bbox_inches="tight")

print(f"Saved {out_dir / 'risk_summary.csv'} and {out_dir / 'risk_scores.png'}")
