"""Adherence analytics: dose regularity, schedule timing, adherence→mood lag."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from analytics.temporal_patterns import local_times
from config import REPORT_TIMEZONE
from constants import DAY_MS, HOUR_MS
from models import Dose, Medication, MoodEntry
from statistics_engine import cross_correlation, pearson_correlation

log = logging.getLogger("adherence")

ON_TIME_TOLERANCE_MINUTES = 30
MIN_ADHERENCE_DOSES = 3
MOOD_AFTER_DOSE_HOURS = (0.5, 8.0)
ADHERENCE_LAG_MAX_DAYS = 7
ADHERENCE_LAG_MIN_DAYS = 5


def _medication_doses(medication: Medication, doses: Sequence[Dose]) -> List[Dose]:
    return sorted((d for d in doses if d.medication_id == medication.id), key=lambda d: d.timestamp)


# ─── Regularity ───────────────────────────────────────────────


def analyze_adherence(
    medication: Medication,
    doses: Sequence[Dose],
    now: int,
) -> Optional[Dict[str, Any]]:
    """Dose counts over 7/14/30 days and interval regularity (daily schedule assumed)."""
    med_doses = _medication_doses(medication, doses)
    if len(med_doses) < MIN_ADHERENCE_DOSES:
        return None

    stamps = np.array([d.timestamp for d in med_doses], dtype=np.int64)
    last_7 = int(((stamps >= now - 7 * DAY_MS) & (stamps <= now)).sum())
    last_14 = int(((stamps >= now - 14 * DAY_MS) & (stamps <= now)).sum())
    last_30 = int(((stamps >= now - 30 * DAY_MS) & (stamps <= now)).sum())

    gaps = np.diff(stamps) / HOUR_MS
    avg_gap = float(gaps.mean())
    sd_gap = float(gaps.std(ddof=1)) if gaps.size > 1 else 0.0

    rate = last_7 / 7
    if rate >= 0.95 and sd_gap < 4:
        consistency = "excellent"
    elif rate >= 0.8 and sd_gap < 8:
        consistency = "good"
    elif rate >= 0.6:
        consistency = "fair"
    else:
        consistency = "poor"
    missed = max(0, 7 - last_7)

    name = medication.name
    interpretation = {
        "excellent": f"Excellent adherence to {name}: regular doses every {avg_gap:.1f}h on average.",
        "good": f"Good adherence to {name}. Some timing variation (±{sd_gap:.1f}h) but within an acceptable range.",
        "fair": f"Moderate adherence to {name}. About {missed} dose(s) may have been missed in the last week.",
        "poor": f"Low adherence to {name}. {missed} missed dose(s) in the last week may weaken the therapeutic effect.",
    }[consistency]

    return {
        "medication_id": medication.id,
        "medication": name,
        "last_7_days": last_7,
        "last_14_days": last_14,
        "last_30_days": last_30,
        "average_hours_between_doses": avg_gap,
        "std_hours_between_doses": sd_gap,
        "consistency": consistency,
        "missed_dose_estimate": missed,
        "interpretation": interpretation,
    }


# ─── Schedule timing ──────────────────────────────────────────


def _parse_hhmm(value: str) -> Optional[int]:
    try:
        hours, minutes = value.strip().split(":")[:2]
        total = int(hours) * 60 + int(minutes)
    except (AttributeError, ValueError):
        return None
    return total if 0 <= total < 24 * 60 else None


def _signed_deviation(actual_minutes: int, scheduled_minutes: int) -> int:
    diff = actual_minutes - scheduled_minutes
    if diff > 720:
        diff -= 1440
    if diff < -720:
        diff += 1440
    return diff


def calculate_temporal_adherence(
    medications: Sequence[Medication],
    doses: Sequence[Dose],
    mood_entries: Sequence[MoodEntry],
    tz: str = REPORT_TIMEZONE,
) -> List[Dict[str, Any]]:
    """Deviation of each dose from the medication's scheduled local time.

    Only medications with a ``scheduled_time`` and ≥ 3 doses are scored.
    Score = max(0, 100 − avg|deviation|/60 · 20).
    """
    moods = sorted(mood_entries, key=lambda m: m.timestamp)
    mood_ts = np.array([m.timestamp for m in moods], dtype=np.int64)
    lo_h, hi_h = MOOD_AFTER_DOSE_HOURS

    results: List[Dict[str, Any]] = []
    for med in medications:
        scheduled = _parse_hhmm(med.scheduled_time) if med.scheduled_time else None
        if scheduled is None:
            continue
        med_doses = _medication_doses(med, doses)
        if len(med_doses) < MIN_ADHERENCE_DOSES:
            continue

        local = local_times([d.timestamp for d in med_doses], tz)
        deviations: List[Dict[str, Any]] = []
        on_time = late = early = 0
        for dose, hour, minute in zip(med_doses, local.hour, local.minute):
            dev = _signed_deviation(int(hour) * 60 + int(minute), scheduled)
            if abs(dev) <= ON_TIME_TOLERANCE_MINUTES:
                on_time += 1
            elif dev > 0:
                late += 1
            else:
                early += 1

            mood_after = None
            if mood_ts.size:
                delta_h = (mood_ts - dose.timestamp) / HOUR_MS
                hits = np.flatnonzero((delta_h > lo_h) & (delta_h < hi_h))
                if hits.size:
                    mood_after = float(moods[hits[0]].mood_score)
            deviations.append({
                "timestamp": dose.timestamp,
                "deviation_minutes": dev,
                "mood_after": mood_after,
            })

        abs_devs = np.abs([d["deviation_minutes"] for d in deviations])
        avg_dev = float(abs_devs.mean())
        if avg_dev > 60:
            pattern = "irregular"
        elif avg_dev > 30:
            pattern = "variable"
        else:
            pattern = "consistent"

        trend = "insufficient_data"
        if len(abs_devs) >= 6:
            recent, older = abs_devs[-3:].mean(), abs_devs[-6:-3].mean()
            if recent < older - 10:
                trend = "improving"
            elif recent > older + 10:
                trend = "declining"
            else:
                trend = "stable"

        correlation = None
        paired = [d for d in deviations if d["mood_after"] is not None]
        if len(paired) >= 5:
            res = pearson_correlation(
                [abs(d["deviation_minutes"]) for d in paired],
                [d["mood_after"] for d in paired],
            )
            correlation = {"deviation_vs_mood": res.r, "p": res.p, "significance": res.significance}

        results.append({
            "medication_id": med.id,
            "medication": med.name,
            "scheduled_time": med.scheduled_time,
            "total_doses": len(med_doses),
            "on_time_doses": on_time,
            "late_doses": late,
            "early_doses": early,
            "average_deviation_minutes": avg_dev,
            "adherence_score": max(0.0, 100.0 - (avg_dev / 60.0) * 20.0),
            "pattern": pattern,
            "recent_trend": trend,
            "deviations": deviations,
            "correlation": correlation,
        })
    return results


# ─── Adherence → mood lag ─────────────────────────────────────


def estimate_adherence_lag(
    medication: Medication,
    doses: Sequence[Dose],
    mood_entries: Sequence[MoodEntry],
    max_lag_days: int = ADHERENCE_LAG_MAX_DAYS,
    tz: str = REPORT_TIMEZONE,
) -> Optional[Dict[str, Any]]:
    """Days between a change in daily adherence and the matching mood change.

    Daily dose counts are cross-correlated against daily mean mood; the
    strongest non-negative lag with enough days wins.  None when adherence
    never varies or there are too few days.
    """
    med_doses = _medication_doses(medication, doses)
    if len(med_doses) < MIN_ADHERENCE_DOSES or not mood_entries:
        return None

    dose_days = pd.Series(1.0, index=local_times([d.timestamp for d in med_doses], tz).normalize())
    mood_days = pd.Series(
        [m.mood_score for m in mood_entries],
        index=local_times([m.timestamp for m in mood_entries], tz).normalize(),
        dtype="float64",
    )
    start = min(dose_days.index.min(), mood_days.index.min())
    end = max(dose_days.index.max(), mood_days.index.max())
    calendar = pd.date_range(start, end, freq="D")

    adherence = dose_days.groupby(level=0).sum().reindex(calendar, fill_value=0.0)
    mood = mood_days.groupby(level=0).mean().reindex(calendar)

    points = cross_correlation(
        adherence.to_numpy(), mood.to_numpy(),
        max_lag=max_lag_days, min_pairs=ADHERENCE_LAG_MIN_DAYS,
    )
    usable = [pt for pt in points if pt.lag >= 0 and pt.sufficient and pt.r != 0.0]
    if not usable:
        log.debug("No adherence lag for %s", medication.id)
        return None
    best = min(usable, key=lambda pt: (-abs(pt.r), pt.lag))
    return {
        "lag_days": best.lag,
        "lag_hours": best.lag * 24,
        "r": best.r,
        "p": best.p,
        "n": best.n,
        "significance": best.significance,
    }
