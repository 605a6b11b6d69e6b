# fleetsafety/config.py
from __future__ import annotations

import os
from pathlib import Path

# -----------------------------------------------------------------------------
# Paths
# -----------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parents[1]          # project root
DATA_DIR = ROOT / "data"

# -----------------------------------------------------------------------------
# Environment
# -----------------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'fleetsafety.db'}")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# comma separated; "*" for any origin (dev only)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# alert ring buffer capacity
ALERT_HISTORY_LIMIT = int(os.getenv("ALERT_HISTORY_LIMIT", "100"))

# trailing samples kept per vehicle; fatigue detection needs >= 100
TELEMETRY_WINDOW_SIZE = int(os.getenv("TELEMETRY_WINDOW_SIZE", "120"))

# analyses / predictions / events kept per vehicle for report generation
ANALYSIS_HISTORY_LIMIT = int(os.getenv("ANALYSIS_HISTORY_LIMIT", "500"))

SIM_INTERVAL_MS = int(os.getenv("SIM_INTERVAL_MS", "1000"))
