"""Time-of-day and weekday helpers over mood entries and dose times."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from config import REPORT_TIMEZONE
from constants import HOUR_MS, METRIC_LABELS, MOOD_METRICS
from models import Dose, MoodEntry

MIN_PATTERN_ENTRIES = 5
MIN_BUCKET_SAMPLES = 2
DOSE_RESPONSE_WINDOW_HOURS = 12

TIME_BUCKETS = ("morning", "afternoon", "evening", "night")


def local_times(timestamps: Sequence[int], tz: str = REPORT_TIMEZONE) -> pd.DatetimeIndex:
    """Epoch-ms → tz-aware DatetimeIndex in the report time zone."""
    return pd.to_datetime(np.asarray(timestamps, dtype="int64"), unit="ms", utc=True).tz_convert(tz)


def time_of_day(hour: int) -> str:
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    return "night"


def _bucket_mean(values: pd.Series) -> Optional[float]:
    return float(values.mean()) if len(values) >= MIN_BUCKET_SAMPLES else None


def analyze_temporal_patterns(
    mood_entries: Sequence[MoodEntry],
    tz: str = REPORT_TIMEZONE,
    metrics: Optional[Sequence[str]] = None,
) -> List[Dict[str, Any]]:
    """Per-metric means by time of day and weekday vs weekend.

    Bucket means need at least two samples, otherwise they are None.
    ``weekday_vs_weekend_diff`` is weekend − weekday.
    """
    if len(mood_entries) < MIN_PATTERN_ENTRIES:
        return []

    when = local_times([e.timestamp for e in mood_entries], tz)
    frame = pd.DataFrame({
        "bucket": [time_of_day(h) for h in when.hour],
        "weekend": when.dayofweek >= 5,
    })

    patterns: List[Dict[str, Any]] = []
    for metric in metrics or MOOD_METRICS:
        frame["value"] = [e.metric(metric) for e in mood_entries]
        rows = frame.dropna(subset=["value"])
        if len(rows) < MIN_PATTERN_ENTRIES:
            continue

        by_bucket = {b: rows.loc[rows["bucket"] == b, "value"] for b in TIME_BUCKETS}
        means = {b: _bucket_mean(v) for b, v in by_bucket.items()}
        weekday = rows.loc[~rows["weekend"], "value"]
        weekend = rows.loc[rows["weekend"], "value"]
        weekday_mean = _bucket_mean(weekday)
        weekend_mean = _bucket_mean(weekend)

        valid = [(b, m) for b, m in means.items() if m is not None]
        best = max(valid, key=lambda bm: bm[1])[0] if valid else None

        patterns.append({
            "metric": metric,
            "metric_label": METRIC_LABELS[metric],
            "patterns": {
                **{f"{b}_mean": means[b] for b in TIME_BUCKETS},
                "weekday_mean": weekday_mean,
                "weekend_mean": weekend_mean,
                "best_time_of_day": best,
                "weekday_vs_weekend_diff": (
                    weekend_mean - weekday_mean
                    if weekday_mean is not None and weekend_mean is not None else None
                ),
            },
            "sample_sizes": {
                **{b: int(len(v)) for b, v in by_bucket.items()},
                "weekday": int(len(weekday)),
                "weekend": int(len(weekend)),
            },
        })
    return patterns


def best_dosing_hour(
    doses: Sequence[Dose],
    mood_entries: Sequence[MoodEntry],
    tz: str = REPORT_TIMEZONE,
) -> Optional[str]:
    """Local dose hour ("HH:00") followed by the best same-day mood.

    Each dose is scored by the mean mood of entries on the same local date
    within 12 h after it; doses are then binned by local hour.
    """
    if not doses or not mood_entries:
        return None

    mood_ts = np.array([m.timestamp for m in mood_entries], dtype=np.int64)
    mood_vals = np.array([m.mood_score for m in mood_entries], dtype=np.float64)
    mood_days = local_times(mood_ts, tz).date

    dose_ts = np.array([d.timestamp for d in doses], dtype=np.int64)
    dose_local = local_times(dose_ts, tz)

    by_hour: Dict[int, List[float]] = {}
    for ts, hour, day in zip(dose_ts, dose_local.hour, dose_local.date):
        hit = (
            (mood_days == day)
            & (mood_ts > ts)
            & (mood_ts < ts + DOSE_RESPONSE_WINDOW_HOURS * HOUR_MS)
            & np.isfinite(mood_vals)
        )
        if hit.any():
            by_hour.setdefault(int(hour), []).append(float(mood_vals[hit].mean()))

    if not by_hour:
        return None
    best = max(sorted(by_hour), key=lambda h: np.mean(by_hour[h]))
    return f"{best:02d}:00"
