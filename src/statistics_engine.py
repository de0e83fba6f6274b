"""
Statistics Engine
=================
Statistical primitives shared by every analysis path.

  Descriptive  - mean, sample SD (n−1), quartiles over finite values only.
  Correlation  - Pearson / Spearman on pairwise-complete data, two-tailed
                 t-test p-value on n−2 df, one significance tier table.
  Lagged       - cross-correlation over every integer lag in [−L, +L],
                 insufficient lags are flagged, never dropped.
  Multiple     - correlation matrices and Benjamini-Hochberg FDR.
  Supplements  - OLS regression, autocorrelation, IQR outliers, Welch
                 t-test, nearest-timestamp alignment.

Non-finite inputs are "missing", never zero.  Nothing here raises on data:
degenerate input gives r=0, p=1, significance 'none' with the real n.
Unknown method/transform names are programming errors and raise ValueError.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats as sp_stats
from statsmodels.stats.multitest import multipletests
from statsmodels.tsa.stattools import acf

from config import FDR_ALPHA
from constants import HOUR_MS
from models import (
    CorrelationMatrix,
    CorrelationResult,
    DescriptiveStats,
    FDRResult,
    LagCorrelation,
)

log = logging.getLogger("statistics_engine")

# Single threshold table used by every call site: (tier, p strictly below)
SIGNIFICANCE_TIERS: Tuple[Tuple[str, float], ...] = (
    ("high", 0.01),
    ("medium", 0.05),
    ("low", 0.1),
)

CORRELATION_METHODS = ("pearson", "spearman")
LAG_TRANSFORMS = ("levels", "differences")


def significance_tier(p: float) -> str:
    if p is None or not math.isfinite(p):
        return "none"
    for tier, threshold in SIGNIFICANCE_TIERS:
        if p < threshold:
            return tier
    return "none"


def _as_float_array(values: Sequence[Any]) -> np.ndarray:
    """None / non-numeric → NaN; keeps positions."""
    out = np.empty(len(values), dtype=np.float64)
    for i, v in enumerate(values):
        try:
            out[i] = np.nan if v is None else float(v)
        except (TypeError, ValueError):
            out[i] = np.nan
    return out


def _complete_pairs(x: Sequence[Any], y: Sequence[Any]) -> Tuple[np.ndarray, np.ndarray]:
    n = min(len(x), len(y))
    xa = _as_float_array(x[:n])
    ya = _as_float_array(y[:n])
    mask = np.isfinite(xa) & np.isfinite(ya)
    return xa[mask], ya[mask]


# ─── Descriptive ──────────────────────────────────────────────


def descriptive_stats(values: Sequence[Any]) -> DescriptiveStats:
    arr = _as_float_array(values)
    arr = arr[np.isfinite(arr)]
    n = int(arr.size)
    if n == 0:
        return DescriptiveStats(mean=0.0, std_dev=0.0, n=0)

    variance = float(np.var(arr, ddof=1)) if n >= 2 else 0.0
    q1, median, q3 = np.percentile(arr, [25, 50, 75])
    return DescriptiveStats(
        mean=float(np.mean(arr)),
        std_dev=math.sqrt(variance),
        n=n,
        median=float(median),
        min=float(arr.min()),
        max=float(arr.max()),
        q1=float(q1),
        q3=float(q3),
        variance=variance,
    )


# ─── Correlation ──────────────────────────────────────────────


def _pearson_arrays(x: np.ndarray, y: np.ndarray) -> Tuple[float, float, int]:
    """r, two-tailed p, n on already-cleaned arrays."""
    n = int(x.size)
    if n < 3 or np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0, 1.0, n

    dx = x - x.mean()
    dy = y - y.mean()
    denom = math.sqrt(float(np.dot(dx, dx)) * float(np.dot(dy, dy)))
    if denom == 0 or not math.isfinite(denom):
        return 0.0, 1.0, n

    r = max(-1.0, min(1.0, float(np.dot(dx, dy)) / denom))
    if abs(r) >= 1.0:
        return r, 0.0, n
    t_stat = r * math.sqrt((n - 2) / (1.0 - r * r))
    p = float(2 * sp_stats.t.sf(abs(t_stat), n - 2))
    return r, max(0.0, min(1.0, p)), n


def pearson_correlation(x: Sequence[Any], y: Sequence[Any]) -> CorrelationResult:
    """Pearson r on pairwise-complete data.

    n < 3 or a zero-variance side gives r=0, p=1, 'none' (with the real n).
    """
    xa, ya = _complete_pairs(x, y)
    r, p, n = _pearson_arrays(xa, ya)
    return CorrelationResult(r=r, p=p, n=n, significance=significance_tier(p), method="pearson")


def spearman_correlation(x: Sequence[Any], y: Sequence[Any]) -> CorrelationResult:
    """Pearson on average ranks (ties share the mean rank)."""
    xa, ya = _complete_pairs(x, y)
    if xa.size:
        xa = sp_stats.rankdata(xa, method="average")
        ya = sp_stats.rankdata(ya, method="average")
    r, p, n = _pearson_arrays(xa, ya)
    return CorrelationResult(r=r, p=p, n=n, significance=significance_tier(p), method="spearman")


def correlate(x: Sequence[Any], y: Sequence[Any], method: str = "pearson") -> CorrelationResult:
    if method == "pearson":
        return pearson_correlation(x, y)
    if method == "spearman":
        return spearman_correlation(x, y)
    raise ValueError(f"Unknown correlation method '{method}' (expected one of {CORRELATION_METHODS})")


# ─── Lagged correlation ───────────────────────────────────────


def _first_differences(arr: np.ndarray) -> np.ndarray:
    out = np.full(arr.shape, np.nan)
    if arr.size > 1:
        out[1:] = arr[1:] - arr[:-1]
    return out


def cross_correlation(
    series_a: Sequence[Any],
    series_b: Sequence[Any],
    max_lag: int = 24,
    min_pairs: int = 5,
    method: str = "pearson",
    transform: str = "levels",
) -> List[LagCorrelation]:
    """Correlation of A with B shifted by every lag in [−max_lag, +max_lag].

    Positive lag means B is measured ``lag`` steps after A, i.e. a[i] is
    paired with b[i + lag].  With ``transform="differences"`` both series are
    first-differenced, which removes level and trend.

    Always returns exactly ``2 * max_lag + 1`` points in ascending lag order.
    Lags with fewer than ``min_pairs`` complete pairs carry r=0, p=1,
    'none', ``sufficient=False`` and their true n.
    """
    if method not in CORRELATION_METHODS:
        raise ValueError(f"Unknown correlation method '{method}' (expected one of {CORRELATION_METHODS})")
    if transform not in LAG_TRANSFORMS:
        raise ValueError(f"Unknown transform '{transform}' (expected one of {LAG_TRANSFORMS})")
    if max_lag < 0:
        raise ValueError("max_lag must be >= 0")

    n = min(len(series_a), len(series_b))
    a = _as_float_array(series_a[:n])
    b = _as_float_array(series_b[:n])
    if transform == "differences":
        a = _first_differences(a)
        b = _first_differences(b)

    points: List[LagCorrelation] = []
    for lag in range(-max_lag, max_lag + 1):
        if abs(lag) >= n:
            xa = ya = np.empty(0)
        elif lag >= 0:
            xa, ya = a[: n - lag], b[lag:]
        else:
            xa, ya = a[-lag:], b[: n + lag]

        mask = np.isfinite(xa) & np.isfinite(ya)
        count = int(mask.sum())
        if count < min_pairs:
            points.append(LagCorrelation(lag=lag, r=0.0, p=1.0, n=count,
                                         significance="none", sufficient=False))
            continue
        res = correlate(xa[mask], ya[mask], method)
        points.append(LagCorrelation(lag=lag, r=res.r, p=res.p, n=res.n,
                                     significance=res.significance, sufficient=True))

    log.debug("cross-correlation: %d lags, %d sufficient",
              len(points), sum(1 for pt in points if pt.sufficient))
    return points


def best_lag(points: Sequence[LagCorrelation]) -> Optional[LagCorrelation]:
    """Strongest |r| among sufficient lags; ties go to the smaller |lag|."""
    usable = [pt for pt in points if pt.sufficient]
    if not usable:
        return None
    return min(usable, key=lambda pt: (-abs(pt.r), abs(pt.lag), pt.lag))


# ─── Multi-variable ───────────────────────────────────────────


def correlation_matrix(named_series: Mapping[str, Sequence[Any]],
                       method: str = "pearson") -> CorrelationMatrix:
    """Full r / p matrices (diagonal r=1, p=0) plus significant pairs (p < 0.05)
    sorted by |r| descending."""
    names = list(named_series.keys())
    k = len(names)
    r_mat = [[0.0] * k for _ in range(k)]
    p_mat = [[1.0] * k for _ in range(k)]
    pairs: List[Dict[str, Any]] = []

    for i in range(k):
        r_mat[i][i] = 1.0
        p_mat[i][i] = 0.0
        for j in range(i + 1, k):
            res = correlate(named_series[names[i]], named_series[names[j]], method)
            r_mat[i][j] = r_mat[j][i] = res.r
            p_mat[i][j] = p_mat[j][i] = res.p
            if res.p < 0.05:
                pairs.append({
                    "a": names[i],
                    "b": names[j],
                    "r": res.r,
                    "p": res.p,
                    "n": res.n,
                    "significance": res.significance,
                })

    pairs.sort(key=lambda pr: abs(pr["r"]), reverse=True)
    return CorrelationMatrix(variables=names, r=r_mat, p=p_mat, significant_pairs=pairs)


def benjamini_hochberg_fdr(p_values: Sequence[Any], alpha: float = FDR_ALPHA) -> FDRResult:
    """Benjamini-Hochberg step-up procedure.

    Adjusted q-values are returned in the original order; they are monotone
    in raw-p order, never below the raw p and never above 1.  Non-finite p
    counts as 1.0.
    """
    if len(p_values) == 0:
        return FDRResult(adjusted=[], significant_indices=[], alpha=alpha)

    raw = _as_float_array(p_values)
    raw = np.where(np.isfinite(raw), np.clip(raw, 0.0, 1.0), 1.0)
    reject, adjusted, _, _ = multipletests(raw, alpha=alpha, method="fdr_bh")
    adjusted = np.clip(np.maximum(adjusted, raw), 0.0, 1.0)
    return FDRResult(
        adjusted=[float(q) for q in adjusted],
        significant_indices=[int(i) for i in np.flatnonzero(reject)],
        alpha=alpha,
    )


# ─── Supplements ──────────────────────────────────────────────


def linear_regression(x: Sequence[Any], y: Sequence[Any]) -> Dict[str, Any]:
    """Ordinary least squares  y = slope·x + intercept."""
    xa, ya = _complete_pairs(x, y)
    n = int(xa.size)
    if n < 3 or np.ptp(xa) == 0:
        return {
            "slope": 0.0,
            "intercept": float(ya.mean()) if n else 0.0,
            "r_squared": 0.0,
            "p": 1.0,
            "std_err": 0.0,
            "n": n,
        }
    fit = sp_stats.linregress(xa, ya)
    p = float(fit.pvalue) if math.isfinite(fit.pvalue) else 1.0
    return {
        "slope": float(fit.slope),
        "intercept": float(fit.intercept),
        "r_squared": float(fit.rvalue ** 2) if math.isfinite(fit.rvalue) else 0.0,
        "p": p,
        "std_err": float(fit.stderr) if math.isfinite(fit.stderr) else 0.0,
        "n": n,
    }


def autocorrelation(values: Sequence[Any], max_lag: int = 24) -> List[Dict[str, Any]]:
    """Autocorrelation at lags 0..max_lag; missing values are skipped pairwise.

    Lags with no usable pairs, and every lag of a constant series, report 0.
    """
    arr = _as_float_array(values)
    n = int(arr.size)
    finite = np.isfinite(arr)
    coeffs = np.zeros(max_lag + 1)

    if finite.sum() >= 3 and np.ptp(arr[finite]) > 0:
        nlags = min(max_lag, n - 1)
        est = acf(arr, nlags=nlags, fft=False, missing="conservative")
        est = np.where(np.isfinite(est), est, 0.0)
        coeffs[: est.size] = np.clip(est, -1.0, 1.0)

    out: List[Dict[str, Any]] = []
    for lag in range(max_lag + 1):
        pairs = int((finite[: n - lag] & finite[lag:]).sum()) if lag < n else 0
        out.append({"lag": lag, "r": float(coeffs[lag]), "n": pairs})
    return out


def detect_outliers(values: Sequence[Any], k: float = 1.5) -> Dict[str, Any]:
    """Tukey fences: points outside [Q1 − k·IQR, Q3 + k·IQR].

    Indices refer to positions in ``values``.
    """
    arr = _as_float_array(values)
    finite = np.isfinite(arr)
    if finite.sum() < 4:
        return {"indices": [], "values": [], "lower_bound": None, "upper_bound": None,
                "q1": None, "q3": None, "iqr": None}

    q1, q3 = np.percentile(arr[finite], [25, 75])
    iqr = q3 - q1
    lower, upper = q1 - k * iqr, q3 + k * iqr
    idx = np.flatnonzero(finite & ((arr < lower) | (arr > upper)))
    return {
        "indices": [int(i) for i in idx],
        "values": [float(arr[i]) for i in idx],
        "lower_bound": float(lower),
        "upper_bound": float(upper),
        "q1": float(q1),
        "q3": float(q3),
        "iqr": float(iqr),
    }


def two_sample_t_test(a: Sequence[Any], b: Sequence[Any]) -> Dict[str, Any]:
    """Welch's unequal-variance t-test with Cohen's d (pooled SD).

    Positive t / d mean ``a`` is larger.
    """
    xa = _as_float_array(a)
    xb = _as_float_array(b)
    xa = xa[np.isfinite(xa)]
    xb = xb[np.isfinite(xb)]
    na, nb = int(xa.size), int(xb.size)
    result: Dict[str, Any] = {
        "t": 0.0,
        "p": 1.0,
        "df": 0.0,
        "cohens_d": 0.0,
        "mean_a": float(xa.mean()) if na else 0.0,
        "mean_b": float(xb.mean()) if nb else 0.0,
        "n_a": na,
        "n_b": nb,
        "significance": "none",
    }
    if na < 2 or nb < 2:
        return result

    va, vb = float(np.var(xa, ddof=1)), float(np.var(xb, ddof=1))
    pooled = math.sqrt(((na - 1) * va + (nb - 1) * vb) / (na + nb - 2))
    if pooled > 0:
        result["cohens_d"] = (result["mean_a"] - result["mean_b"]) / pooled

    se2 = va / na + vb / nb
    if se2 <= 0:
        return result
    t_stat, p = sp_stats.ttest_ind(xa, xb, equal_var=False)
    if not (math.isfinite(t_stat) and math.isfinite(p)):
        return result
    df = se2 ** 2 / ((va / na) ** 2 / (na - 1) + (vb / nb) ** 2 / (nb - 1))
    result.update({
        "t": float(t_stat),
        "p": float(max(0.0, min(1.0, p))),
        "df": float(df),
        "significance": significance_tier(float(p)),
    })
    return result


def _series_frame(series: Sequence[Any], column: str) -> pd.DataFrame:
    rows = []
    for item in series:
        if isinstance(item, Mapping):
            rows.append((item.get("timestamp"), item.get("value")))
        else:
            rows.append((item[0], item[1]))
    df = pd.DataFrame(rows, columns=["timestamp", column])
    df["timestamp"] = pd.to_numeric(df["timestamp"], errors="coerce")
    df[column] = pd.to_numeric(df[column], errors="coerce")
    df = df.dropna(subset=["timestamp"])
    df["timestamp"] = df["timestamp"].astype("int64")
    return df.sort_values("timestamp", kind="stable").reset_index(drop=True)


def align_time_series(
    series_a: Sequence[Any],
    series_b: Sequence[Any],
    window_ms: int = HOUR_MS,
) -> Dict[str, List[Any]]:
    """Pair each point of A with the nearest point of B within ``window_ms``.

    Points are ``(timestamp, value)`` tuples or ``{"timestamp", "value"}``
    dicts.  Unmatched A points are dropped.  Output is sorted by timestamp.
    """
    left = _series_frame(series_a, "a")
    right = _series_frame(series_b, "b")
    if left.empty or right.empty:
        return {"timestamps": [], "a": [], "b": []}

    merged = pd.merge_asof(
        left, right, on="timestamp", direction="nearest", tolerance=int(window_ms)
    ).dropna(subset=["a", "b"])
    return {
        "timestamps": [int(t) for t in merged["timestamp"]],
        "a": [float(v) for v in merged["a"]],
        "b": [float(v) for v in merged["b"]],
    }


# Public names used by outer layers
cross_correlate = cross_correlation
multi_variable_correlation = correlation_matrix
adjust_p_values_fdr = benjamini_hochberg_fdr
