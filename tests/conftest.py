"""
Shared test configuration.

Adds both the project root and src/ to sys.path so that flat modules
(pk_model, statistics_engine, insight_analyzer, ...) and the analytics /
pipeline / routes packages import with plain `import module_name`.

Also provides small record factories used across test modules.
"""

import os
import sys

import pytest

_project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_src_dir = os.path.join(_project_root, "src")

if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

if _src_dir not in sys.path:
    sys.path.insert(1, _src_dir)

from constants import DAY_MS, HOUR_MS  # noqa: E402
from models import Dose, Medication, MoodEntry  # noqa: E402

# 2024-01-01 00:00 UTC, a Monday
T0 = 1_704_067_200_000


@pytest.fixture
def make_medication():
    def _make(**overrides) -> Medication:
        params = dict(
            id="med-a",
            name="Medicine A",
            half_life=24.0,
            volume_of_distribution=20.0,
            bioavailability=0.5,
            absorption_rate=1.0,
        )
        params.update(overrides)
        return Medication(**params)
    return _make


@pytest.fixture
def daily_doses():
    def _make(medication_id: str = "med-a", days: int = 30, hour: int = 8,
              amount: float = 100.0, start: int = T0):
        return [Dose(medication_id, start + d * DAY_MS + hour * HOUR_MS, amount) for d in range(days)]
    return _make


@pytest.fixture
def mood_series():
    def _make(values, start: int = T0, step_hours: float = 24.0, **metrics):
        entries = []
        for i, v in enumerate(values):
            extra = {k: (vals[i] if vals is not None else None) for k, vals in metrics.items()}
            entries.append(MoodEntry(timestamp=int(start + i * step_hours * HOUR_MS), mood_score=v, **extra))
        return entries
    return _make
