"""
Concentration Sampler
=====================
Turns the PK model into a concentration series over a caller-supplied
timestamp grid.

  instant - PK evaluation at each grid point (0.0 = measured zero) over
            this medication's doses within the bounded lookback of
            ``relevant_doses``; older doses are dropped
  trend   - trailing time-window moving average over instant samples;
            windows with fewer than TREND_MIN_POINTS values are None
            ("not enough information", never coerced to 0)

Window width follows the medication class: chronic drugs are smoothed over
48 h so adherence-level changes show, acute drugs over a few half-lives.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from config import BODY_WEIGHT_KG
from constants import (
    CHRONIC_ACCUMULATION_RATIO,
    CHRONIC_CLASSES,
    CHRONIC_HALF_LIFE_HOURS,
    HOUR_MS,
)
from models import Dose, Medication
from pk_model import (
    accumulation_ratio,
    concentration_array,
    has_valid_pk_params,
    relevant_doses,
)

log = logging.getLogger("concentration_sampler")

SAMPLING_MODES = ("instant", "trend")

CHRONIC_TREND_WINDOW_HOURS = 48.0
ACUTE_TREND_MIN_HOURS = 6.0
ACUTE_TREND_HALF_LIVES = 3.5
TREND_MIN_POINTS = 3


def median_dosing_interval(medication: Medication, doses: Sequence[Dose]) -> Optional[float]:
    """Median hours between consecutive doses of ``medication``; None with < 3 doses."""
    stamps = sorted(d.timestamp for d in doses if d.medication_id == medication.id)
    if len(stamps) < 3:
        return None
    gaps = np.diff(np.asarray(stamps, dtype=np.float64)) / HOUR_MS
    gaps = gaps[gaps > 0]
    if gaps.size == 0:
        return None
    return float(np.median(gaps))


def is_chronic_medication(medication: Medication, doses: Optional[Sequence[Dose]] = None) -> bool:
    """Classify a medication as chronic (steady-state) or acute.

    Chronic when any of:
      1. its class is a steady-state class (SSRI, SNRI, mood stabilizer, antipsychotic)
      2. half-life ≥ 24 h
      3. the observed median dosing interval gives an accumulation ratio ≥ 1.5
    """
    med_class = (medication.med_class or "").strip().upper()
    if med_class in CHRONIC_CLASSES:
        return True
    half_life = medication.half_life
    if not (isinstance(half_life, (int, float)) and math.isfinite(half_life) and half_life > 0):
        return False
    if half_life >= CHRONIC_HALF_LIFE_HOURS:
        return True
    if doses:
        tau = median_dosing_interval(medication, doses)
        if tau is not None and accumulation_ratio(half_life, tau) >= CHRONIC_ACCUMULATION_RATIO:
            return True
    return False


def default_mode(medication: Medication, doses: Optional[Sequence[Dose]] = None) -> str:
    # Chronic drugs correlate with mood on a days scale, not with peaks
    return "trend" if is_chronic_medication(medication, doses) else "instant"


def trend_window_hours(medication: Medication, doses: Optional[Sequence[Dose]] = None) -> float:
    if is_chronic_medication(medication, doses):
        return CHRONIC_TREND_WINDOW_HOURS
    half_life = medication.half_life if has_valid_pk_params(medication) else 0.0
    return max(ACUTE_TREND_MIN_HOURS, ACUTE_TREND_HALF_LIVES * half_life)


def compute_trend(
    timestamps: Sequence[float],
    values: Sequence[Optional[float]],
    window_hours: float,
    min_points: int = TREND_MIN_POINTS,
) -> List[Optional[float]]:
    """Trailing moving average over [t − window, t] for each timestamp.

    Works on irregular grids.  Non-finite values are ignored; a window with
    fewer than ``min_points`` finite values yields None.
    """
    n = len(timestamps)
    if n == 0:
        return []
    ts = np.asarray(timestamps, dtype=np.float64)
    vals = np.array([np.nan if v is None else float(v) for v in values], dtype=np.float64)
    result: List[Optional[float]] = [None] * n

    valid_ts = np.isfinite(ts)
    idx = np.flatnonzero(valid_ts)
    if idx.size == 0:
        return result
    idx = idx[np.argsort(ts[idx], kind="stable")]

    series = pd.Series(vals[idx], index=pd.to_datetime(ts[idx], unit="ms"))
    rolled = series.rolling(
        pd.Timedelta(hours=window_hours), min_periods=min_points, closed="both"
    ).mean()
    for pos, value in zip(idx, rolled.to_numpy()):
        if np.isfinite(value):
            result[int(pos)] = float(value)
    return result


def sample_concentration_series(
    medication: Medication,
    doses: Sequence[Dose],
    timestamps: Sequence[float],
    mode: str = "instant",
    body_weight: float = BODY_WEIGHT_KG,
    model: str = "bolus",
) -> List[Optional[float]]:
    """Concentration (ng/mL) at every timestamp, same length and order.

    None marks an undefined sample: invalid PK parameters, a non-finite
    timestamp, or (trend mode) a sparse window.  Empty dose lists give 0.0
    in instant mode.
    """
    if mode not in SAMPLING_MODES:
        raise ValueError(f"Unknown sampling mode '{mode}' (expected one of {SAMPLING_MODES})")

    n = len(timestamps)
    if n == 0:
        return []
    if not has_valid_pk_params(medication):
        log.debug("Skipping %s: invalid PK parameters", medication.id)
        return [None] * n

    ts = np.asarray(timestamps, dtype=np.float64)
    finite = np.isfinite(ts)
    if not finite.any():
        return [None] * n

    med_doses = relevant_doses(medication, doses, float(ts[finite].min()), float(ts[finite].max()))
    instant = concentration_array(medication, med_doses, np.where(finite, ts, -np.inf), body_weight, model)
    samples: List[Optional[float]] = [
        float(c) if ok else None for c, ok in zip(instant, finite)
    ]

    if mode == "instant":
        return samples
    window = trend_window_hours(medication, med_doses)
    return compute_trend(ts, samples, window, TREND_MIN_POINTS)
