"""Configuration loaded from .env"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


# PK defaults
BODY_WEIGHT_KG = _float_env("BODY_WEIGHT_KG", 70.0)

# Analysis window (unset = all available data)
_window = os.getenv("ANALYSIS_WINDOW_DAYS", "").strip()
ANALYSIS_WINDOW_DAYS = int(_window) if _window.isdigit() else None

# Multiple-comparison control
FDR_ALPHA = _float_env("FDR_ALPHA", 0.05)

# Local clock used for time-of-day and weekday bucketing
REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "UTC")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# API CORS (comma separated)
FRONTEND_ORIGINS = [
    o.strip() for o in os.getenv("FRONTEND_ORIGINS", "").split(",") if o.strip()
] or ["http://localhost:3000", "http://127.0.0.1:3000"]

API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(_float_env("API_PORT", 8000))
