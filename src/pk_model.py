"""
Pharmacokinetic Model
=====================
One-compartment, linear PK.  Plasma concentration at time T is the
superposition of every dose taken at or before T.

Two absorption models share the same parameters:
  bolus    - instantaneous absorption:  C0 · e^(−ke·Δt)
  bateman  - first-order absorption:    C0 · ka/(ka−ke) · (e^(−ke·Δt) − e^(−ka·Δt))

with  C0 = dose_mg · 1000 · F / (Vd · bodyweight)   [ng/mL]
      ke = ln 2 / half-life

Invalid parameters never raise: the model degrades to 0.0 and callers are
expected to gate on ``has_valid_pk_params`` first.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from config import BODY_WEIGHT_KG
from constants import DAY_MS, HOUR_MS
from models import Dose, Medication

log = logging.getLogger("pk_model")

PK_MODELS = ("bolus", "bateman")

# Display convention: below this a drug is "not measurably present".
# The model itself never applies it.
MEASURABLE_THRESHOLD = 0.01

# Default dose lookback, in half-lives
LOOKBACK_HALF_LIVES = 5


def _finite_positive(value: Any) -> bool:
    try:
        return math.isfinite(value) and value > 0
    except TypeError:
        return False


def has_valid_pk_params(medication: Medication) -> bool:
    """True when the medication has physically meaningful PK parameters."""
    return (
        _finite_positive(medication.half_life)
        and _finite_positive(medication.volume_of_distribution)
        and _finite_positive(medication.absorption_rate)
        and _finite_positive(medication.bioavailability)
        and medication.bioavailability <= 1
    )


def elimination_constant(half_life: float) -> float:
    """ke = ln 2 / t½ (1/h)."""
    return math.log(2) / half_life


def accumulation_ratio(half_life: float, interval_hours: float) -> float:
    """Steady-state accumulation factor 1 / (1 − e^(−ke·τ)) for a fixed dosing interval."""
    if not (_finite_positive(half_life) and _finite_positive(interval_hours)):
        return 1.0
    return 1.0 / (1.0 - math.exp(-elimination_constant(half_life) * interval_hours))


def initial_concentration(medication: Medication, dose_amount: float,
                          body_weight: float = BODY_WEIGHT_KG) -> float:
    """Per-dose peak for instantaneous absorption, in ng/mL."""
    return (dose_amount * 1000.0 * medication.bioavailability) / (
        medication.volume_of_distribution * body_weight
    )


def _contribution(c0: np.ndarray, dt: np.ndarray, ke: float, ka: float, model: str) -> np.ndarray:
    if model == "bolus":
        return c0 * np.exp(-ke * dt)
    # ka ≈ ke: limit of the Bateman function
    if abs(ka - ke) <= 1e-9 * max(ka, ke):
        return c0 * ka * dt * np.exp(-ke * dt)
    return c0 * (ka / (ka - ke)) * (np.exp(-ke * dt) - np.exp(-ka * dt))


def concentration_array(
    medication: Medication,
    doses: Sequence[Dose],
    timestamps: Sequence[float],
    body_weight: float = BODY_WEIGHT_KG,
    model: str = "bolus",
) -> np.ndarray:
    """Vectorised concentration at every timestamp (epoch ms), ng/mL.

    Cost is O(len(timestamps) · len(doses)); pre-filter doses with
    ``relevant_doses`` before sampling long grids.
    """
    if model not in PK_MODELS:
        raise ValueError(f"Unknown PK model '{model}' (expected one of {PK_MODELS})")

    t = np.asarray(timestamps, dtype=np.float64).reshape(-1)
    out = np.zeros(t.shape[0], dtype=np.float64)
    if t.size == 0 or not doses:
        return out
    if not has_valid_pk_params(medication) or not _finite_positive(body_weight):
        return out
    doses = [d for d in doses if d.medication_id == medication.id]
    if not doses:
        return out

    dose_t = np.array([d.timestamp for d in doses], dtype=np.float64)
    amounts = np.array([d.dose_amount for d in doses], dtype=np.float64)
    usable = np.isfinite(dose_t) & np.isfinite(amounts) & (amounts > 0)
    if not usable.any():
        return out
    dose_t = dose_t[usable]
    amounts = amounts[usable]

    ke = elimination_constant(medication.half_life)
    ka = float(medication.absorption_rate)
    c0 = initial_concentration(medication, 1.0, body_weight) * amounts

    dt = (t[:, None] - dose_t[None, :]) / HOUR_MS
    taken = np.isfinite(dt) & (dt >= 0)
    dt_safe = np.where(taken, dt, 0.0)
    with np.errstate(over="ignore", invalid="ignore"):
        contrib = _contribution(c0[None, :], dt_safe, ke, ka, model)
    contrib = np.where(taken & np.isfinite(contrib), contrib, 0.0)
    out = np.clip(contrib, 0.0, None).sum(axis=1)
    out[~np.isfinite(out)] = 0.0
    return out


def compute_concentration(
    medication: Medication,
    doses: Sequence[Dose],
    timestamp: float,
    body_weight: float = BODY_WEIGHT_KG,
    model: str = "bolus",
) -> float:
    """Plasma concentration (ng/mL, ≥ 0) at ``timestamp`` from ``doses``.

    Doses after ``timestamp`` and doses of other medications contribute
    nothing.  Returns exactly 0.0 when no
    dose qualifies or the PK parameters are invalid.  Values below
    ``MEASURABLE_THRESHOLD`` are returned as-is.
    """
    return float(concentration_array(medication, doses, [timestamp], body_weight, model)[0])


def relevant_doses(
    medication: Medication,
    doses: Sequence[Dose],
    start: float,
    end: float,
    half_lives: float = LOOKBACK_HALF_LIVES,
) -> List[Dose]:
    """Doses of ``medication`` that can still matter inside [start, end].

    Lookback is max(7 days, ``half_lives`` half-lives) before ``start``.
    """
    lookback = 7 * DAY_MS
    if _finite_positive(medication.half_life):
        lookback = max(lookback, half_lives * medication.half_life * HOUR_MS)
    lo = start - lookback
    picked = [
        d for d in doses
        if d.medication_id == medication.id and lo <= d.timestamp <= end
    ]
    picked.sort(key=lambda d: d.timestamp)
    return picked


def concentration_curve(
    medication: Medication,
    doses: Sequence[Dose],
    start: float,
    end: float,
    points: int = 100,
    body_weight: float = BODY_WEIGHT_KG,
    model: str = "bolus",
) -> List[Dict[str, float]]:
    """``points + 1`` evenly spaced samples over [start, end]."""
    if points < 1 or end < start:
        return []
    times = np.linspace(start, end, points + 1)
    values = concentration_array(medication, doses, times, body_weight, model)
    return [{"time": float(t), "concentration": float(c)} for t, c in zip(times, values)]


def compute_pk_metrics(
    medication: Medication,
    dose_amount: float,
    body_weight: float = BODY_WEIGHT_KG,
    model: str = "bolus",
    interval_hours: Optional[float] = None,
) -> Dict[str, Any]:
    """Single-dose Cmax/Tmax/AUC consistent with ``compute_concentration``.

    When ``interval_hours`` is given, steady-state figures for repeated dosing
    (accumulation ratio, average and peak concentration) are added.
    """
    if model not in PK_MODELS:
        raise ValueError(f"Unknown PK model '{model}' (expected one of {PK_MODELS})")
    if not has_valid_pk_params(medication) or not _finite_positive(dose_amount) \
            or not _finite_positive(body_weight):
        return {"valid": False, "model": model}

    ke = elimination_constant(medication.half_life)
    ka = float(medication.absorption_rate)
    c0 = initial_concentration(medication, dose_amount, body_weight)

    if model == "bolus":
        tmax = 0.0
    elif abs(ka - ke) <= 1e-9 * max(ka, ke):
        tmax = 1.0 / ke
    else:
        tmax = math.log(ka / ke) / (ka - ke)
    cmax = float(_contribution(np.array([c0]), np.array([tmax]), ke, ka, model)[0])

    metrics: Dict[str, Any] = {
        "valid": True,
        "model": model,
        "c0": c0,
        "cmax": cmax,
        "tmax_hours": tmax,
        "auc": c0 / ke,
        "half_life": float(medication.half_life),
        "elimination_constant": ke,
    }
    if _finite_positive(interval_hours):
        ratio = accumulation_ratio(medication.half_life, interval_hours)
        metrics.update({
            "interval_hours": float(interval_hours),
            "accumulation_ratio": ratio,
            "steady_state_average": c0 / ke / interval_hours,
            "steady_state_peak": cmax * ratio,
        })
    return metrics


def therapeutic_status(medication: Medication, concentration: float) -> Dict[str, Any]:
    """Position of ``concentration`` relative to the therapeutic range.

    The range is converted to ng/mL first; a missing or unconvertible range
    yields ``has_therapeutic_range=False`` and ``status=None``.
    """
    rng = medication.therapeutic_range.to_ng_per_ml() if medication.therapeutic_range else None
    if rng is None or not math.isfinite(concentration):
        return {"has_therapeutic_range": False, "status": None}
    if concentration < rng.min:
        status = "below"
    elif concentration > rng.max:
        status = "above"
    else:
        status = "within"
    return {
        "has_therapeutic_range": True,
        "status": status,
        "min": rng.min,
        "max": rng.max,
        "unit": rng.unit,
    }
