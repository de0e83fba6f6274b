"""
Tests for the concentration sampler: instant/trend modes and the
chronic vs acute classification that drives window width.
"""
import pytest

from concentration_sampler import (
    compute_trend,
    default_mode,
    is_chronic_medication,
    sample_concentration_series,
    trend_window_hours,
)
from constants import HOUR_MS
from models import Dose
from pk_model import compute_concentration

T0 = 1_704_067_200_000


# ─── Classification ───────────────────────────────────────────


class TestClassification:

    @pytest.mark.parametrize("med_class", ["SSRI", "snri", "Mood Stabilizer", "Antipsychotic"])
    def test_steady_state_classes_are_chronic(self, make_medication, med_class):
        med = make_medication(half_life=5.0, med_class=med_class)
        assert is_chronic_medication(med)
        assert default_mode(med) == "trend"

    def test_long_half_life_is_chronic(self, make_medication):
        assert is_chronic_medication(make_medication(half_life=30.0))

    def test_short_half_life_daily_dosing_is_acute(self, make_medication, daily_doses):
        med = make_medication(half_life=4.0, med_class="Stimulant")
        assert not is_chronic_medication(med, daily_doses(days=10))
        assert default_mode(med, daily_doses(days=10)) == "instant"

    def test_accumulating_schedule_is_chronic(self, make_medication):
        med = make_medication(half_life=6.0)
        doses = [Dose(med.id, T0 + i * 4 * HOUR_MS, 10.0) for i in range(6)]
        # 1 / (1 − 2^(−4/6)) ≈ 2.7
        assert is_chronic_medication(med, doses)

    def test_window_hours(self, make_medication):
        assert trend_window_hours(make_medication(half_life=48.0)) == 48.0
        assert trend_window_hours(make_medication(half_life=1.0)) == 6.0
        assert trend_window_hours(make_medication(half_life=4.0)) == pytest.approx(14.0)


# ─── Instant mode ─────────────────────────────────────────────


class TestInstant:

    def test_matches_pk_model_and_keeps_order(self, make_medication):
        med = make_medication(half_life=6.0)
        doses = [Dose(med.id, T0, 100.0), Dose(med.id, T0 + 12 * HOUR_MS, 50.0)]
        times = [T0 + 20 * HOUR_MS, T0 - HOUR_MS, T0 + 3 * HOUR_MS, T0 + 12 * HOUR_MS]
        series = sample_concentration_series(med, doses, times)
        assert len(series) == len(times)
        for t, c in zip(times, series):
            assert c == pytest.approx(compute_concentration(med, doses, t))
        assert series[1] == 0.0

    def test_mixed_medication_doses_agree_with_pk_model(self, make_medication):
        med = make_medication(half_life=6.0)
        doses = [Dose(med.id, T0, 100.0), Dose("other", T0 + HOUR_MS, 100.0)]
        times = [T0 + 2 * HOUR_MS, T0 + 8 * HOUR_MS]
        series = sample_concentration_series(med, doses, times)
        assert series == pytest.approx([compute_concentration(med, doses, t) for t in times])
        assert series == pytest.approx([compute_concentration(med, doses[:1], t) for t in times])

    def test_empty_doses_give_zeros(self, make_medication):
        times = [T0 + h * HOUR_MS for h in range(5)]
        assert sample_concentration_series(make_medication(), [], times) == [0.0] * 5

    def test_empty_grid(self, make_medication):
        assert sample_concentration_series(make_medication(), [], []) == []

    def test_invalid_params_are_undefined(self, make_medication):
        med = make_medication(volume_of_distribution=0.0)
        series = sample_concentration_series(med, [Dose(med.id, T0, 1.0)], [T0, T0 + HOUR_MS])
        assert series == [None, None]

    def test_unknown_mode_raises(self, make_medication):
        with pytest.raises(ValueError):
            sample_concentration_series(make_medication(), [], [T0], mode="smoothed")

    def test_other_medications_ignored(self, make_medication):
        med = make_medication()
        series = sample_concentration_series(med, [Dose("other", T0, 100.0)], [T0 + HOUR_MS])
        assert series == [0.0]


# ─── Trend mode ───────────────────────────────────────────────


class TestTrend:

    def test_sparse_windows_are_none_not_zero(self, make_medication):
        times = [T0 + h * HOUR_MS for h in range(6)]
        series = sample_concentration_series(make_medication(), [], times, mode="trend")
        assert series[:2] == [None, None]
        assert series[2:] == [0.0] * 4

    def test_trend_smooths_instant(self, make_medication, daily_doses):
        med = make_medication(half_life=30.0)
        doses = daily_doses(days=10)
        times = [T0 + h * HOUR_MS for h in range(0, 240, 2)]
        instant = sample_concentration_series(med, doses, times, mode="instant")
        trend = sample_concentration_series(med, doses, times, mode="trend")
        assert len(trend) == len(times)
        tail_instant = instant[-48:]
        tail_trend = [v for v in trend[-48:] if v is not None]
        assert max(tail_trend) - min(tail_trend) < max(tail_instant) - min(tail_instant)


class TestComputeTrend:

    def test_trailing_mean(self):
        times = [0, HOUR_MS, 2 * HOUR_MS, 3 * HOUR_MS]
        assert compute_trend(times, [1.0, 2.0, 3.0, 4.0], window_hours=6) == [None, None, 2.0, 2.5]

    def test_window_excludes_old_points(self):
        times = [0, HOUR_MS, 2 * HOUR_MS, 10 * HOUR_MS]
        out = compute_trend(times, [1.0, 2.0, 3.0, 4.0], window_hours=2)
        assert out[2] == pytest.approx(2.0)
        assert out[3] is None

    def test_unsorted_input_mapped_back(self):
        times = [2 * HOUR_MS, 0, HOUR_MS]
        out = compute_trend(times, [3.0, 1.0, 2.0], window_hours=6)
        assert out == [2.0, None, None]

    def test_missing_values_do_not_count(self):
        times = [0, HOUR_MS, 2 * HOUR_MS, 3 * HOUR_MS]
        out = compute_trend(times, [1.0, None, 3.0, 5.0], window_hours=6)
        assert out == [None, None, None, 3.0]

    def test_empty(self):
        assert compute_trend([], [], window_hours=6) == []
