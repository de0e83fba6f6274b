"""
Concentration variability and dose-interval analyses.

Both compare mood across regimes of the same medication:
  variability   - 7-day sliding windows split at the median concentration CV
                  (stable vs varying levels), Welch t-test on window moods.
  dose interval - interval before each dose vs mood 4–12 h after it,
                  binned into common dosing rhythms.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from config import BODY_WEIGHT_KG
from constants import DAY_MS, HOUR_MS
from models import Dose, Medication, MoodEntry
from pk_model import MEASURABLE_THRESHOLD, concentration_array, has_valid_pk_params
from statistics_engine import pearson_correlation, two_sample_t_test

MIN_WINDOW_SAMPLES = 24
MIN_WINDOWS = 4

INTERVAL_RANGE_HOURS = (4.0, 72.0)
MOOD_AFTER_DOSE_HOURS = (4.0, 12.0)
INTERVAL_BINS = [
    (8, 16, "8-16h (twice daily)"),
    (16, 20, "16-20h"),
    (20, 26, "20-26h (daily)"),
    (26, 36, "26-36h (daily+)"),
    (36, 60, "36-60h (irregular)"),
]


def analyze_concentration_variability(
    medication: Medication,
    doses: Sequence[Dose],
    mood_entries: Sequence[MoodEntry],
    window_days: int = 7,
    body_weight: float = BODY_WEIGHT_KG,
) -> Optional[Dict[str, Any]]:
    """Is mood better when plasma levels are steady?  None when data is too thin."""
    med_doses = sorted((d for d in doses if d.medication_id == medication.id), key=lambda d: d.timestamp)
    if len(med_doses) < 3 or len(mood_entries) < 5 or not has_valid_pk_params(medication):
        return None
    moods = sorted(mood_entries, key=lambda m: m.timestamp)

    window_ms = window_days * DAY_MS
    start = max(med_doses[0].timestamp, moods[0].timestamp)
    end = min(med_doses[-1].timestamp + 7 * DAY_MS, moods[-1].timestamp)
    if end - start < 2 * window_ms:
        return None

    grid = np.arange(start, end + 1, HOUR_MS, dtype=np.int64)
    conc = concentration_array(medication, med_doses, grid, body_weight)
    mood_ts = np.array([m.timestamp for m in moods], dtype=np.int64)
    mood_vals = np.array([m.mood_score for m in moods], dtype=np.float64)

    windows: List[Dict[str, Any]] = []
    w_start = start
    while w_start + window_ms <= end:
        w_end = w_start + window_ms
        lo = (w_start - start) // HOUR_MS
        hi = (w_end - start) // HOUR_MS
        window_conc = conc[lo:hi]
        window_conc = window_conc[window_conc > MEASURABLE_THRESHOLD]
        in_window = (mood_ts >= w_start) & (mood_ts < w_end)
        if window_conc.size >= MIN_WINDOW_SAMPLES and in_window.any():
            mean = float(window_conc.mean())
            windows.append({
                "start": int(w_start),
                "end": int(w_end),
                "concentration_mean": mean,
                "concentration_cv": float(window_conc.std()) / mean if mean > 0 else 0.0,
                "mood_mean": float(mood_vals[in_window].mean()),
                "is_stable": False,
            })
        w_start += DAY_MS

    if len(windows) < MIN_WINDOWS:
        return None

    cvs = [w["concentration_cv"] for w in windows]
    median_cv = sorted(cvs)[len(cvs) // 2]
    for w in windows:
        w["is_stable"] = w["concentration_cv"] < median_cv
    stable = [w["mood_mean"] for w in windows if w["is_stable"]]
    varying = [w["mood_mean"] for w in windows if not w["is_stable"]]
    if len(stable) < 2 or len(varying) < 2:
        return None

    diff = float(np.mean(stable) - np.mean(varying))
    corr = pearson_correlation(cvs, [w["mood_mean"] for w in windows])
    ttest = two_sample_t_test(stable, varying)
    significant = ttest["p"] < 0.05

    name = medication.name
    if significant and diff > 0:
        interpretation = (f"Mood is {diff:.1f} points better when {name} levels are stable "
                          f"(p={ttest['p']:.3f}, d={ttest['cohens_d']:.2f}).")
        recommendation = f"Prioritise strict adherence to {name}. Stable levels go with better mood."
    elif significant:
        interpretation = (f"Mood is {abs(diff):.1f} points better when {name} levels fluctuate "
                          f"(p={ttest['p']:.3f}).")
        recommendation = "Unusual pattern: the peak-to-trough swing may itself help. Discuss with your doctor."
    else:
        interpretation = (f"No significant mood difference between stable and varying {name} levels "
                          f"(p={ttest['p']:.3f}).")
        recommendation = "Keep monitoring. More data may reveal a pattern."

    return {
        "medication_id": medication.id,
        "medication": name,
        "window_days": window_days,
        "total_windows": len(windows),
        "stable_windows": len(stable),
        "varying_windows": len(varying),
        "median_cv": median_cv,
        "stable_period_mood_mean": float(np.mean(stable)),
        "varying_period_mood_mean": float(np.mean(varying)),
        "mood_difference": diff,
        "correlation_cv_vs_mood": corr.r,
        "p_value_cv_vs_mood": corr.p,
        "t_test": {**ttest, "significant": significant},
        "interpretation": interpretation,
        "recommendation": recommendation,
        "windows": windows,
    }


def analyze_optimal_dose_interval(
    medication: Medication,
    doses: Sequence[Dose],
    mood_entries: Sequence[MoodEntry],
) -> Optional[Dict[str, Any]]:
    """Which dosing rhythm precedes the best mood.  None below 5 usable intervals."""
    med_doses = sorted((d for d in doses if d.medication_id == medication.id), key=lambda d: d.timestamp)
    if len(med_doses) < 5:
        return None

    lo_i, hi_i = INTERVAL_RANGE_HOURS
    intervals = [
        ((cur.timestamp - prev.timestamp) / HOUR_MS, cur.timestamp)
        for prev, cur in zip(med_doses, med_doses[1:])
    ]
    intervals = [(h, ts) for h, ts in intervals if lo_i < h < hi_i]
    if len(intervals) < 5:
        return None

    mood_ts = np.array([m.timestamp for m in mood_entries], dtype=np.int64)
    mood_vals = np.array([m.mood_score for m in mood_entries], dtype=np.float64)
    lo_m, hi_m = MOOD_AFTER_DOSE_HOURS
    pairs = []
    for hours, dose_ts in intervals:
        hit = (mood_ts >= dose_ts + lo_m * HOUR_MS) & (mood_ts < dose_ts + hi_m * HOUR_MS)
        if hit.any():
            pairs.append((hours, float(mood_vals[hit].mean())))
    if len(pairs) < 5:
        return None

    bins = []
    for lo, hi, label in INTERVAL_BINS:
        in_bin = [m for h, m in pairs if lo <= h < hi]
        if len(in_bin) < 2:
            continue
        bins.append({
            "label": label,
            "min_hours": lo,
            "max_hours": hi,
            "count": len(in_bin),
            "mood_mean": float(np.mean(in_bin)),
            "mood_sd": float(np.std(in_bin)),
        })
    if len(bins) < 2:
        return None

    best = max(bins, key=lambda b: b["mood_mean"])
    corr = pearson_correlation([h for h, _ in pairs], [m for _, m in pairs])

    name = medication.name
    if corr.significance != "none" and corr.r < -0.2:
        interpretation = f"Shorter intervals go with better mood (r={corr.r:.2f}, p={corr.p:.3f})."
        recommendation = (f"Consider more frequent doses of {name}. {best['label']} intervals show the best "
                          f"average mood ({best['mood_mean']:.1f}/10).")
    elif corr.significance != "none" and corr.r > 0.2:
        interpretation = f"Longer intervals go with better mood (r={corr.r:.2f}, p={corr.p:.3f})."
        recommendation = f"Current spacing may be fine or could be widened. Best mood at {best['label']} intervals."
    elif corr.significance != "none":
        interpretation = f"Weak link between interval and mood (r={corr.r:.2f})."
        recommendation = (f"{best['label']} intervals show the best mood ({best['mood_mean']:.1f}/10). "
                          "Keep monitoring.")
    else:
        interpretation = "No significant link between dosing interval and mood."
        recommendation = (f"Keep a regular schedule. Best average mood at {best['label']} intervals "
                          f"({best['mood_mean']:.1f}/10).")

    return {
        "medication_id": medication.id,
        "medication": name,
        "total_intervals": len(pairs),
        "correlation_interval_vs_mood": corr.r,
        "p_value": corr.p,
        "optimal_interval_hours": (best["min_hours"] + best["max_hours"]) / 2,
        "optimal_interval_label": best["label"],
        "bin_stats": bins,
        "interpretation": interpretation,
        "recommendation": recommendation,
    }
