"""
Shared helpers for API routes.
Contains: request → domain record conversion, JSON-safe coercion.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, List

import numpy as np
from pydantic import BaseModel

from models import Dose, Medication, MoodEntry


# ─── Conversion ─────────────────────────────────────────────

def _medications(items: Iterable[BaseModel]) -> List[Medication]:
    return [Medication.from_dict(m.model_dump()) for m in items]


def _doses(items: Iterable[BaseModel]) -> List[Dose]:
    return [Dose.from_dict(d.model_dump()) for d in items]


def _moods(items: Iterable[BaseModel]) -> List[MoodEntry]:
    return [MoodEntry.from_dict(m.model_dump()) for m in items]


# ─── JSON safety ────────────────────────────────────────────

def _to_jsonable(value: Any) -> Any:
    """Recursively coerce numpy scalars and drop NaN/inf (→ None)."""
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value
