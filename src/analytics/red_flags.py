"""Red-flag detection and per-metric stability over recent mood entries."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

import numpy as np

from constants import DAY_MS, METRIC_LABELS, MOOD_METRICS
from models import Dose, Medication, MoodEntry
from statistics_engine import descriptive_stats

# metric thresholds: value, entries needed, entries for "alert"
MOOD_LOW = {"value": 4.0, "entries": 3, "alert_entries": 5}
ANXIETY_HIGH = {"value": 7.0, "entries": 2, "alert_entries": 4}
ENERGY_LOW = {"value": 3.0, "entries": 3}
VOLATILITY_CV = 0.4
VOLATILITY_ALERT_CV = 0.5
COGNITIVE_DECLINE_SDS = 2.0
ADHERENCE_MIN_WEEKLY_DOSES = 5
ADHERENCE_ALERT_WEEKLY_DOSES = 3

RECENT_DAYS = 7


def _flag(flag_id: str, flag_type: str, severity: str, title: str, description: str,
          suggestion: str, **extra: Any) -> Dict[str, Any]:
    return {
        "id": flag_id,
        "type": flag_type,
        "severity": severity,
        "title": title,
        "description": description,
        "suggestion": suggestion,
        **extra,
    }


def detect_red_flags(
    mood_entries: Sequence[MoodEntry],
    doses: Sequence[Dose],
    medications: Sequence[Medication],
    now: int,
) -> List[Dict[str, Any]]:
    """Warning / alert flags over the 7 days ending at ``now``.

    Needs at least 3 recent mood entries; returns [] otherwise.
    """
    since = now - RECENT_DAYS * DAY_MS
    recent = sorted(
        (e for e in mood_entries if since <= e.timestamp <= now),
        key=lambda e: e.timestamp,
        reverse=True,
    )
    if len(recent) < 3:
        return []

    flags: List[Dict[str, Any]] = []

    low_mood = [e.mood_score for e in recent if e.mood_score <= MOOD_LOW["value"]]
    if len(low_mood) >= MOOD_LOW["entries"]:
        flags.append(_flag(
            "mood-low-persistent", "mood_low",
            "alert" if len(low_mood) >= MOOD_LOW["alert_entries"] else "warning",
            "Persistent low mood",
            f"Mood has been at or below {MOOD_LOW['value']:.0f}/10 in {len(low_mood)} recent entries.",
            "Consider talking to your doctor about your mood and look for contributing factors.",
            metric="mood", value=float(np.mean(low_mood)), threshold=MOOD_LOW["value"],
            entries_affected=len(low_mood),
        ))

    anxious = [a for a in (e.metric("anxiety") for e in recent) if a is not None and a >= ANXIETY_HIGH["value"]]
    if len(anxious) >= ANXIETY_HIGH["entries"]:
        flags.append(_flag(
            "anxiety-high-persistent", "anxiety_high",
            "alert" if len(anxious) >= ANXIETY_HIGH["alert_entries"] else "warning",
            "Elevated anxiety",
            f"Anxiety has been at or above {ANXIETY_HIGH['value']:.0f}/10 in {len(anxious)} entries.",
            "Try relaxation techniques. If it persists, discuss a medication adjustment with your doctor.",
            metric="anxiety", value=float(np.mean(anxious)), threshold=ANXIETY_HIGH["value"],
            entries_affected=len(anxious),
        ))

    tired = [v for v in (e.metric("energy") for e in recent) if v is not None and v <= ENERGY_LOW["value"]]
    if len(tired) >= ENERGY_LOW["entries"]:
        flags.append(_flag(
            "energy-low-persistent", "energy_low", "warning",
            "Persistent low energy",
            f"Energy has been at or below {ENERGY_LOW['value']:.0f}/10 in {len(tired)} entries.",
            "Check sleep quality and nutrition. It may also point to a stimulant dose that needs review.",
            metric="energy", value=float(np.mean(tired)), threshold=ENERGY_LOW["value"],
            entries_affected=len(tired),
        ))

    moods = [e.mood_score for e in recent]
    if len(moods) >= 5:
        cv = descriptive_stats(moods).coefficient_of_variation
        if cv > VOLATILITY_CV:
            flags.append(_flag(
                "mood-volatile", "volatility",
                "alert" if cv > VOLATILITY_ALERT_CV else "warning",
                "High mood variability",
                f"Mood is swinging a lot (CV={cv * 100:.0f}%). Frequent swings may indicate instability.",
                "Try to identify triggers for the swings. Bring the pattern up with your doctor if it persists.",
                metric="mood", value=cv, threshold=VOLATILITY_CV, entries_affected=len(moods),
            ))

    cognition = [c for c in (e.metric("cognition") for e in recent) if c is not None]
    if len(cognition) >= 5:
        recent_mean = float(np.mean(cognition[:3]))
        older_mean = float(np.mean(cognition[-3:]))
        spread = descriptive_stats(cognition).std_dev
        if recent_mean < older_mean - COGNITIVE_DECLINE_SDS * spread:
            flags.append(_flag(
                "cognitive-decline", "cognitive_decline", "warning",
                "Possible cognitive decline",
                f"Recent cognition ({recent_mean:.1f}) is below the earlier average ({older_mean:.1f}).",
                "Review sleep and stress. If it persists it may be a medication effect.",
                metric="cognition", value=recent_mean, threshold=older_mean, entries_affected=3,
            ))

    for med in medications:
        taken = sum(1 for d in doses if d.medication_id == med.id and since <= d.timestamp <= now)
        if 0 < taken < ADHERENCE_MIN_WEEKLY_DOSES:
            flags.append(_flag(
                f"adherence-{med.id}", "adherence",
                "alert" if taken < ADHERENCE_ALERT_WEEKLY_DOSES else "warning",
                f"Low adherence: {med.name}",
                f"Only {taken} dose(s) of {med.name} logged in the last 7 days.",
                "Regular dosing matters for a consistent therapeutic effect.",
                medication_id=med.id, value=float(taken), threshold=float(ADHERENCE_MIN_WEEKLY_DOSES),
                entries_affected=7 - taken,
            ))

    return flags


def calculate_stability_metrics(
    mood_entries: Sequence[MoodEntry],
    start: int,
    end: int,
) -> List[Dict[str, Any]]:
    """Mean, SD, CV tier and 7/30-day trends per metric inside [start, end].

    trend_7d  = mean(last 7 days) − mean(before that)
    trend_30d = mean(newer half of last 30 days) − mean(older half)
    """
    entries = sorted((e for e in mood_entries if start <= e.timestamp <= end), key=lambda e: e.timestamp)
    if len(entries) < 3:
        return []

    day7 = end - 7 * DAY_MS
    day30 = end - 30 * DAY_MS
    out: List[Dict[str, Any]] = []
    for metric in MOOD_METRICS:
        points = [(e.timestamp, e.metric(metric)) for e in entries]
        points = [(t, v) for t, v in points if v is not None]
        if len(points) < 3:
            continue

        stats = descriptive_stats([v for _, v in points])
        cv = stats.coefficient_of_variation
        if cv < 0.2:
            stability = "stable"
        elif cv < 0.4:
            stability = "variable"
        else:
            stability = "volatile"

        last7 = [v for t, v in points if t >= day7]
        before7 = [v for t, v in points if t < day7]
        trend_7d = float(np.mean(last7) - np.mean(before7)) if last7 and before7 else 0.0

        last30 = [v for t, v in points if t >= day30]
        trend_30d = 0.0
        if len(last30) >= 2:
            half = len(last30) // 2
            trend_30d = float(np.mean(last30[-half:]) - np.mean(last30[:half]))

        out.append({
            "metric": metric,
            "metric_label": METRIC_LABELS[metric],
            "mean": stats.mean,
            "standard_deviation": stats.std_dev,
            "coefficient_of_variation": cv,
            "stability": stability,
            "trend_7d": trend_7d,
            "trend_30d": trend_30d,
            "data_points": stats.n,
        })
    return out
