"""
Domain records consumed and produced by the insights engine.

Inputs (Medication, Dose, MoodEntry) are immutable and owned by the caller.
Outputs are plain dataclasses rebuilt on every call; ``to_dict`` gives a
JSON-safe view for the CLI and API.
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from constants import MOOD_METRICS


def _camel_to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _normalise_keys(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {_camel_to_snake(k): v for k, v in raw.items()}


def _opt_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


# ─── Inputs ───────────────────────────────────────────────────


# Unit -> multiplier to ng/mL
_UNIT_TO_NG_PER_ML = {
    "ng/ml": 1.0,
    "mcg/l": 1.0,
    "ug/l": 1.0,
    "µg/l": 1.0,
    "mcg/ml": 1000.0,
    "ug/ml": 1000.0,
    "µg/ml": 1000.0,
    "mg/l": 1000.0,
}


@dataclass(frozen=True)
class TherapeuticRange:
    min: float
    max: float
    unit: str = "ng/mL"

    def to_ng_per_ml(self) -> Optional["TherapeuticRange"]:
        """Return the range in ng/mL, or None when the unit is not convertible."""
        factor = _UNIT_TO_NG_PER_ML.get(self.unit.strip().lower())
        if factor is None:
            return None
        return TherapeuticRange(self.min * factor, self.max * factor, "ng/mL")


@dataclass(frozen=True)
class Medication:
    id: str
    name: str
    half_life: float
    volume_of_distribution: float
    bioavailability: float
    absorption_rate: float
    therapeutic_range: Optional[TherapeuticRange] = None
    med_class: Optional[str] = None
    scheduled_time: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Medication":
        data = _normalise_keys(raw)
        tr = data.get("therapeutic_range")
        if tr is None and data.get("therapeutic_range_min") is not None:
            tr = {
                "min": data.get("therapeutic_range_min"),
                "max": data.get("therapeutic_range_max"),
                "unit": data.get("therapeutic_range_unit") or "ng/mL",
            }
        therapeutic = None
        if isinstance(tr, dict) and tr.get("min") is not None and tr.get("max") is not None:
            therapeutic = TherapeuticRange(float(tr["min"]), float(tr["max"]), str(tr.get("unit") or "ng/mL"))
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            half_life=_opt_float(data.get("half_life")) or 0.0,
            volume_of_distribution=_opt_float(data.get("volume_of_distribution")) or 0.0,
            bioavailability=_opt_float(data.get("bioavailability")) or 0.0,
            absorption_rate=_opt_float(data.get("absorption_rate")) or 0.0,
            therapeutic_range=therapeutic,
            med_class=data.get("med_class") or data.get("class") or data.get("category"),
            scheduled_time=data.get("scheduled_time"),
        )


@dataclass(frozen=True)
class Dose:
    medication_id: str
    timestamp: int
    dose_amount: float

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Dose":
        data = _normalise_keys(raw)
        return cls(
            medication_id=str(data["medication_id"]),
            timestamp=int(data["timestamp"]),
            dose_amount=float(data["dose_amount"]),
        )


@dataclass(frozen=True)
class MoodEntry:
    timestamp: int
    mood_score: float
    anxiety_level: Optional[float] = None
    energy_level: Optional[float] = None
    focus_level: Optional[float] = None
    cognitive_score: Optional[float] = None
    attention_shift: Optional[float] = None

    def metric(self, name: str) -> Optional[float]:
        """Value of a mood metric ('mood', 'anxiety', ...) or None when not recorded."""
        attr = MOOD_METRICS[name]
        value = getattr(self, attr)
        if value is None:
            return None
        value = float(value)
        return value if math.isfinite(value) else None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "MoodEntry":
        data = _normalise_keys(raw)
        return cls(
            timestamp=int(data["timestamp"]),
            mood_score=float(data["mood_score"]),
            anxiety_level=_opt_float(data.get("anxiety_level")),
            energy_level=_opt_float(data.get("energy_level")),
            focus_level=_opt_float(data.get("focus_level")),
            cognitive_score=_opt_float(data.get("cognitive_score")),
            attention_shift=_opt_float(data.get("attention_shift")),
        )


# ─── Statistical results ──────────────────────────────────────


@dataclass
class DescriptiveStats:
    mean: float
    std_dev: float
    n: int
    median: float = 0.0
    min: float = 0.0
    max: float = 0.0
    q1: float = 0.0
    q3: float = 0.0
    variance: float = 0.0

    @property
    def coefficient_of_variation(self) -> float:
        return self.std_dev / self.mean if self.mean > 0 else 0.0


@dataclass
class CorrelationResult:
    r: float
    p: float
    n: int
    significance: str
    method: str = "pearson"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LagCorrelation:
    lag: int
    r: float
    p: float
    n: int
    significance: str
    sufficient: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FDRResult:
    adjusted: List[float]
    significant_indices: List[int]
    alpha: float


@dataclass
class CorrelationMatrix:
    variables: List[str]
    r: List[List[float]]
    p: List[List[float]]
    significant_pairs: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ─── Insights ─────────────────────────────────────────────────


@dataclass
class Insight:
    medication_id: str
    medication: str
    metric: str
    metric_label: str
    correlation: float
    p_value: float
    adjusted_p_value: float
    sample_size: int
    lag_hours: int
    lag_viable: bool
    effect_size: float
    mood_high_concentration: float
    mood_low_concentration: float
    direction: str
    is_desirable: bool
    is_significant: bool
    significance: str
    confidence: str
    impact_score: float
    interpretation: str = ""
    recommendation: str = ""
    is_chronic: bool = False
    best_dosing_hour: Optional[str] = None
    adherence_lag_days: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DataQuality:
    mood_entries: int
    doses: int
    medications: int
    coverage: float
    analyzed_medications: List[str] = field(default_factory=list)
    excluded_medications: List[Dict[str, str]] = field(default_factory=list)
    analysis_status: str = "success"
    degraded_reasons: List[str] = field(default_factory=list)


@dataclass
class InsightsReport:
    generated_at: int
    timeframe_start: int
    timeframe_end: int
    data_quality: DataQuality
    top_positive_impacts: List[Insight] = field(default_factory=list)
    top_negative_impacts: List[Insight] = field(default_factory=list)
    all_insights: List[Insight] = field(default_factory=list)
    red_flags: List[Dict[str, Any]] = field(default_factory=list)
    stability_metrics: List[Dict[str, Any]] = field(default_factory=list)
    temporal_patterns: List[Dict[str, Any]] = field(default_factory=list)
    medication_analyses: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_export(payload: Dict[str, Any]) -> Tuple[List[Medication], List[Dose], List[MoodEntry]]:
    """Split an app export ``{"medications", "doses", "moodEntries"}`` into records."""
    data = _normalise_keys(payload)
    medications = [Medication.from_dict(m) for m in data.get("medications") or []]
    doses = [Dose.from_dict(d) for d in data.get("doses") or []]
    moods = [MoodEntry.from_dict(m) for m in data.get("mood_entries") or []]
    return medications, doses, moods
