"""
Insight Analyzer
================
Turns medications, doses and mood entries into an InsightsReport.

Request-scoped pipeline (no state survives a call):

  1. Window selection       - [now − window_days, now]; ``now`` defaults to
                              the latest input timestamp so reruns match.
  2. Candidate lags         - chronic {0,6,12,24,48,72} h, acute {0,1,3,6} h.
  3. Per-lag correlation    - concentration at (mood time − lag) vs metric,
                              pairs with concentration > 0 only; viable at n ≥ 7.
                              Chronic drugs use the trend series, acute the
                              instant one.
  4. Optimal lag            - max |r| among viable lags, else best overall
                              with confidence capped at "low".
  5. Effect & confidence    - median-split mood difference, best dosing hour,
                              adherence lag (chronic only).
  6. FDR correction         - Benjamini-Hochberg across every (medication,
                              metric) p-value of the request.
  7. Emission               - direction, desirability, confidence, impact,
                              text; top positive / negative impacts.

Optional layers (red flags, stability, temporal patterns, per-medication
analyses) never fail the report: an exception is logged and the report is
marked degraded.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from analytics.adherence import analyze_adherence, calculate_temporal_adherence, estimate_adherence_lag
from analytics.red_flags import calculate_stability_metrics, detect_red_flags
from analytics.temporal_patterns import analyze_temporal_patterns, best_dosing_hour, local_times
from analytics.variability import analyze_concentration_variability, analyze_optimal_dose_interval
from concentration_sampler import default_mode, is_chronic_medication, sample_concentration_series
from config import ANALYSIS_WINDOW_DAYS, BODY_WEIGHT_KG, FDR_ALPHA, REPORT_TIMEZONE
from constants import (
    ACUTE_LAGS_HOURS,
    CHRONIC_LAGS_HOURS,
    DAY_MS,
    EXPLORATORY_ALPHA,
    HOUR_MS,
    LOWER_IS_BETTER,
    METRIC_LABELS,
    MIN_ABS_R,
    MIN_DOSES,
    MIN_EFFECT_POINTS,
    MIN_MOOD_ENTRIES,
    MIN_VIABLE_PAIRS,
    MOOD_METRICS,
    TOP_IMPACTS,
)
from models import DataQuality, Dose, Insight, InsightsReport, LagCorrelation, Medication, MoodEntry
from pk_model import has_valid_pk_params, relevant_doses
from statistics_engine import benjamini_hochberg_fdr, best_lag, pearson_correlation, significance_tier

log = logging.getLogger("insight_analyzer")

MIN_IMPACT_P = 1e-4


# ─── Window ───────────────────────────────────────────────────


def _select_window(
    doses: Sequence[Dose],
    mood_entries: Sequence[MoodEntry],
    window_days: Optional[int],
    now: Optional[int],
) -> Tuple[int, int]:
    stamps = [m.timestamp for m in mood_entries if m.timestamp > 0]
    stamps += [d.timestamp for d in doses if d.timestamp > 0]
    end = int(now) if now is not None else (max(stamps) if stamps else 0)
    if window_days:
        start = end - int(window_days) * DAY_MS
    else:
        start = min(stamps) if stamps else end
    return min(start, end), end


def _coverage(mood_entries: Sequence[MoodEntry], start: int, end: int, tz: str = REPORT_TIMEZONE) -> float:
    """Percent of calendar days in the window (report time zone) with a mood entry."""
    days = math.ceil((end - start) / DAY_MS)
    if days <= 0 or not mood_entries:
        return 0.0
    unique_days = len(local_times([m.timestamp for m in mood_entries], tz).normalize().unique())
    return min(100.0, unique_days / days * 100.0)


# ─── Per-lag correlation ──────────────────────────────────────


def _lag_pairs(
    medication: Medication,
    doses: Sequence[Dose],
    times: np.ndarray,
    values: np.ndarray,
    lag_hours: int,
    body_weight: float,
    mode: str = "instant",
) -> Tuple[np.ndarray, np.ndarray]:
    """(concentration, metric) pairs at mood time − lag, concentration > 0.

    ``mode="trend"`` pairs the metric with the smoothed series; sparse trend
    windows come back as None and are dropped with the other non-finite values.
    """
    query = times - lag_hours * HOUR_MS
    conc = np.array(
        [np.nan if c is None else c for c in
         sample_concentration_series(medication, doses, query, mode=mode, body_weight=body_weight)],
        dtype=np.float64,
    )
    keep = np.isfinite(conc) & (conc > 0) & np.isfinite(values)
    return conc[keep], values[keep]


def _scan_lags(
    medication: Medication,
    doses: Sequence[Dose],
    times: np.ndarray,
    values: np.ndarray,
    lags: Sequence[int],
    body_weight: float,
    mode: str = "instant",
) -> List[LagCorrelation]:
    points = []
    for lag in lags:
        conc, vals = _lag_pairs(medication, doses, times, values, lag, body_weight, mode)
        res = pearson_correlation(conc, vals)
        points.append(LagCorrelation(lag=lag, r=res.r, p=res.p, n=res.n,
                                     significance=res.significance,
                                     sufficient=res.n >= MIN_VIABLE_PAIRS))
        log.debug("   %s lag %3dh: r=%.3f p=%.4f n=%d", medication.id, lag, res.r, res.p, res.n)
    return points


def _median_split(conc: np.ndarray, vals: np.ndarray) -> Tuple[float, float, float]:
    """Mean metric at high (≥ median) vs low concentration; returns (high, low, diff)."""
    if conc.size < 2:
        return 0.0, 0.0, 0.0
    median = np.sort(conc)[conc.size // 2]
    high = vals[conc >= median]
    low = vals[conc < median]
    if high.size == 0 or low.size == 0:
        return 0.0, 0.0, 0.0
    hi, lo = float(high.mean()), float(low.mean())
    return hi, lo, hi - lo


# ─── Scoring and text ─────────────────────────────────────────


def _direction(r: float, effect: float) -> str:
    if abs(r) >= MIN_ABS_R:
        return "positive" if r > 0 else "negative"
    if abs(effect) >= MIN_EFFECT_POINTS:
        return "positive" if effect > 0 else "negative"
    return "neutral"


def _confidence(adjusted_p: float, n: int, lag_viable: bool) -> str:
    if not lag_viable:
        return "low"
    if adjusted_p < 0.01 and n >= 20:
        return "high"
    if adjusted_p < 0.05 and n >= 10:
        return "medium"
    return "low"


def impact_score(r: float, p: float) -> float:
    return abs(r) * -math.log10(max(p, MIN_IMPACT_P))


def _interpretation(r: float, p: float, adjusted_p: float, n: int, lag: int,
                    metric: str, effect: float) -> str:
    strength = abs(r)
    strength_label = "strong" if strength > 0.7 else "moderate" if strength > 0.4 else "weak"
    sign = "positive" if r > 0 else "negative" if r < 0 else "no"
    if adjusted_p < 0.01:
        confidence = "high confidence"
    elif adjusted_p < 0.05:
        confidence = "moderate confidence"
    else:
        confidence = "low confidence"
    parts = [
        f"{strength_label.capitalize()} {sign} correlation (r={r:.2f})",
        f"{confidence} (p={p:.3f}, adjusted {adjusted_p:.3f})",
        f"n={n}",
    ]
    if lag:
        parts.append(f"lag +{lag}h")
    if abs(effect) >= MIN_EFFECT_POINTS:
        higher = "higher" if effect > 0 else "lower"
        parts.append(f"{METRIC_LABELS[metric].lower()} {abs(effect):.1f} points {higher} at high concentration")
    return " · ".join(parts)


def _recommendation(name: str, metric: str, direction: str, desirable: bool) -> str:
    label = METRIC_LABELS[metric].lower()
    if direction == "neutral":
        return f"No clear link between {name} and your {label} yet. Keep logging to sharpen the estimate."
    if desirable:
        if metric in LOWER_IS_BETTER:
            return f"{name} is associated with lower {label}. Keep taking it as prescribed."
        return f"{name} is associated with better {label}. Keep monitoring to confirm the pattern."
    if metric in LOWER_IS_BETTER:
        return f"{name} may be increasing your {label}. Discuss this with your doctor."
    return f"{name} may be affecting your {label} negatively. Track the data and talk to your doctor."


# ─── Pipeline ─────────────────────────────────────────────────


def _analyze_medication(
    medication: Medication,
    doses: Sequence[Dose],
    window_doses: Sequence[Dose],
    moods: Sequence[MoodEntry],
    start: int,
    end: int,
    body_weight: float,
    tz: str,
) -> List[Dict[str, Any]]:
    """Best-lag candidate per metric for one medication (before FDR)."""
    chronic = is_chronic_medication(medication, window_doses)
    mode = default_mode(medication, window_doses)
    lags = CHRONIC_LAGS_HOURS if chronic else ACUTE_LAGS_HOURS
    lookback = relevant_doses(medication, doses, start - max(lags) * HOUR_MS, end)

    dosing_hour = best_dosing_hour(window_doses, moods, tz)
    adherence_lag = None
    if chronic:
        lag_info = estimate_adherence_lag(medication, window_doses, moods, tz=tz)
        adherence_lag = lag_info["lag_days"] if lag_info else None

    candidates: List[Dict[str, Any]] = []
    for metric in MOOD_METRICS:
        rows = [(m.timestamp, m.metric(metric)) for m in moods]
        rows = [(t, v) for t, v in rows if v is not None]
        if len(rows) < 3:
            continue
        times = np.array([t for t, _ in rows], dtype=np.int64)
        values = np.array([v for _, v in rows], dtype=np.float64)

        points = _scan_lags(medication, lookback, times, values, lags, body_weight, mode)
        best = best_lag(points)
        lag_viable = best is not None
        if best is None:
            best = min(points, key=lambda pt: (-abs(pt.r), pt.lag))
        if best.n < 3:
            continue

        conc, vals = _lag_pairs(medication, lookback, times, values, best.lag, body_weight, mode)
        high, low, effect = _median_split(conc, vals)
        candidates.append({
            "medication": medication,
            "metric": metric,
            "best": best,
            "lag_viable": lag_viable,
            "effect": effect,
            "high": high,
            "low": low,
            "chronic": chronic,
            "best_dosing_hour": dosing_hour,
            "adherence_lag_days": adherence_lag,
        })
    return candidates


def _emit(candidate: Dict[str, Any], adjusted_p: float, fdr_alpha: float) -> Insight:
    med: Medication = candidate["medication"]
    metric = candidate["metric"]
    best: LagCorrelation = candidate["best"]
    effect = candidate["effect"]

    direction = _direction(best.r, effect)
    if direction == "neutral":
        desirable = False
    else:
        desirable = (direction == "negative") if metric in LOWER_IS_BETTER else (direction == "positive")

    return Insight(
        medication_id=med.id,
        medication=med.name,
        metric=metric,
        metric_label=METRIC_LABELS[metric],
        correlation=best.r,
        p_value=best.p,
        adjusted_p_value=adjusted_p,
        sample_size=best.n,
        lag_hours=best.lag,
        lag_viable=candidate["lag_viable"],
        effect_size=effect,
        mood_high_concentration=candidate["high"],
        mood_low_concentration=candidate["low"],
        direction=direction,
        is_desirable=desirable,
        is_significant=adjusted_p < fdr_alpha,
        significance=significance_tier(adjusted_p),
        confidence=_confidence(adjusted_p, best.n, candidate["lag_viable"]),
        impact_score=impact_score(best.r, adjusted_p),
        interpretation=_interpretation(best.r, best.p, adjusted_p, best.n, best.lag, metric, effect),
        recommendation=_recommendation(med.name, metric, direction, desirable),
        is_chronic=candidate["chronic"],
        best_dosing_hour=candidate["best_dosing_hour"],
        adherence_lag_days=candidate["adherence_lag_days"],
    )


def _is_top_impact(insight: Insight) -> bool:
    if insight.direction == "neutral":
        return False
    if insight.adjusted_p_value < EXPLORATORY_ALPHA:
        return True
    return insight.lag_viable and abs(insight.effect_size) >= MIN_EFFECT_POINTS


def _run_optional(name: str, quality: DataQuality, fn: Callable[[], Any], default: Any) -> Any:
    try:
        return fn()
    except Exception as e:
        log.warning("%s layer failed; continuing in degraded mode: %s", name, e)
        quality.analysis_status = "degraded"
        quality.degraded_reasons.append(f"{name}_failed")
        return default


def _medication_analyses(
    medications: Sequence[Medication],
    doses: Sequence[Dose],
    moods: Sequence[MoodEntry],
    end: int,
    body_weight: float,
    tz: str,
) -> List[Dict[str, Any]]:
    timing = {row["medication_id"]: row for row in calculate_temporal_adherence(medications, doses, moods, tz)}
    out = []
    for med in sorted(medications, key=lambda m: m.id):
        out.append({
            "medication_id": med.id,
            "medication": med.name,
            "adherence": analyze_adherence(med, doses, end),
            "temporal_adherence": timing.get(med.id),
            "concentration_variability": analyze_concentration_variability(
                med, doses, moods, body_weight=body_weight),
            "dose_interval": analyze_optimal_dose_interval(med, doses, moods),
        })
    return out


def generate_insights_report(
    medications: Sequence[Medication],
    doses: Sequence[Dose],
    mood_entries: Sequence[MoodEntry],
    window_days: Optional[int] = ANALYSIS_WINDOW_DAYS,
    now: Optional[int] = None,
    body_weight: float = BODY_WEIGHT_KG,
    tz: str = REPORT_TIMEZONE,
    fdr_alpha: float = FDR_ALPHA,
) -> InsightsReport:
    """Full insights report.  Never raises on data problems.

    Medications are excluded (and listed in ``data_quality``) when the
    window holds < 7 mood entries, the medication has < 5 doses in the
    window, or its PK parameters are invalid.
    """
    start, end = _select_window(doses, mood_entries, window_days, now)
    moods = sorted((m for m in mood_entries if start <= m.timestamp <= end), key=lambda m: m.timestamp)
    window_doses = sorted((d for d in doses if start <= d.timestamp <= end),
                          key=lambda d: (d.timestamp, d.medication_id))
    log.info("Insights window %d -> %d: %d mood entries, %d doses, %d medications",
             start, end, len(moods), len(window_doses), len(medications))

    quality = DataQuality(
        mood_entries=len(moods),
        doses=len(window_doses),
        medications=len(medications),
        coverage=_coverage(moods, start, end, tz),
    )

    # ── exclusions and per-medication candidates
    candidates: List[Dict[str, Any]] = []
    enough_moods = len(moods) >= MIN_MOOD_ENTRIES
    if not enough_moods and medications:
        quality.degraded_reasons.append("insufficient_mood_entries")

    for med in sorted(medications, key=lambda m: m.id):
        med_doses = [d for d in window_doses if d.medication_id == med.id]
        if not enough_moods:
            reason = "insufficient_mood_entries"
        elif not has_valid_pk_params(med):
            reason = "missing_pk_parameters"
        elif len(med_doses) < MIN_DOSES:
            reason = "insufficient_doses"
        else:
            reason = None
        if reason:
            quality.excluded_medications.append({"medication_id": med.id, "medication": med.name, "reason": reason})
            log.info("   Excluding %s: %s", med.id, reason)
            continue

        quality.analyzed_medications.append(med.id)
        candidates.extend(_analyze_medication(med, doses, med_doses, moods, start, end, body_weight, tz))

    if medications and not quality.analyzed_medications and "insufficient_mood_entries" not in quality.degraded_reasons:
        quality.degraded_reasons.append("no_medications_analyzed")

    # ── FDR across the whole request
    fdr = benjamini_hochberg_fdr([c["best"].p for c in candidates], alpha=fdr_alpha)
    insights = [_emit(c, q, fdr_alpha) for c, q in zip(candidates, fdr.adjusted)]
    insights.sort(key=lambda i: (-i.impact_score, i.medication_id, i.metric))
    log.info("   %d insights, %d significant after FDR", len(insights), len(fdr.significant_indices))

    top = [i for i in insights if _is_top_impact(i)]
    positive = [i for i in top if i.is_desirable][:TOP_IMPACTS]
    negative = [i for i in top if not i.is_desirable][:TOP_IMPACTS]

    if quality.degraded_reasons:
        quality.analysis_status = "degraded"

    red_flags = _run_optional("red_flags", quality,
                              lambda: detect_red_flags(moods, window_doses, medications, end), [])
    stability = _run_optional("stability", quality,
                              lambda: calculate_stability_metrics(moods, start, end), [])
    temporal = _run_optional("temporal_patterns", quality,
                             lambda: analyze_temporal_patterns(moods, tz), [])
    analyses = _run_optional("medication_analyses", quality,
                             lambda: _medication_analyses(medications, window_doses, moods, end, body_weight, tz),
                             [])

    if quality.analysis_status != "success":
        log.warning("Insights report degraded: %s", ", ".join(quality.degraded_reasons))

    return InsightsReport(
        generated_at=end,
        timeframe_start=start,
        timeframe_end=end,
        data_quality=quality,
        top_positive_impacts=positive,
        top_negative_impacts=negative,
        all_insights=insights,
        red_flags=red_flags,
        stability_metrics=stability,
        temporal_patterns=temporal,
        medication_analyses=analyses,
    )
