"""
Tests for the one-compartment PK model.

Covers: bolus decay and superposition, invalid parameters, Bateman
absorption, dose lookback filtering, curves, PK metrics, therapeutic range.
"""
import math

import numpy as np
import pytest

from constants import DAY_MS, HOUR_MS
from models import Dose, TherapeuticRange
from pk_model import (
    MEASURABLE_THRESHOLD,
    accumulation_ratio,
    compute_concentration,
    compute_pk_metrics,
    concentration_array,
    concentration_curve,
    has_valid_pk_params,
    relevant_doses,
    therapeutic_status,
)

T0 = 1_704_067_200_000


# ─── Bolus model ──────────────────────────────────────────────


class TestBolus:

    def test_reference_scenario(self, make_medication):
        med = make_medication(half_life=24.0, volume_of_distribution=20.0, bioavailability=0.5)
        doses = [Dose(med.id, T0, 100.0)]
        c0 = compute_concentration(med, doses, T0, body_weight=70)
        c24 = compute_concentration(med, doses, T0 + 24 * HOUR_MS, body_weight=70)
        assert c0 == pytest.approx(100 * 1000 * 0.5 / (20 * 70))
        assert round(c0, 1) == 35.7
        assert round(c24, 1) == 17.9

    @pytest.mark.parametrize("half_life", [1.5, 6.0, 24.0, 96.0])
    def test_one_half_life_halves_concentration(self, make_medication, half_life):
        med = make_medication(half_life=half_life)
        doses = [Dose(med.id, T0, 50.0)]
        start = compute_concentration(med, doses, T0)
        later = compute_concentration(med, doses, T0 + int(half_life * HOUR_MS))
        assert later == pytest.approx(start / 2, rel=1e-9)

    def test_zero_before_dose(self, make_medication):
        med = make_medication()
        doses = [Dose(med.id, T0, 100.0)]
        for offset_h in (1, 5, 48):
            assert compute_concentration(med, doses, T0 - offset_h * HOUR_MS) == 0.0

    def test_future_doses_ignored(self, make_medication):
        med = make_medication()
        past = Dose(med.id, T0, 100.0)
        future = Dose(med.id, T0 + 10 * HOUR_MS, 100.0)
        t = T0 + 5 * HOUR_MS
        assert compute_concentration(med, [past, future], t) == compute_concentration(med, [past], t)

    def test_monotone_after_last_dose(self, make_medication):
        med = make_medication(half_life=8.0)
        doses = [Dose(med.id, T0 + d * DAY_MS, 100.0) for d in range(3)]
        times = T0 + 2 * DAY_MS + np.arange(0, 72) * HOUR_MS
        values = concentration_array(med, doses, times)
        assert np.all(np.diff(values) <= 0)
        assert np.all(values >= 0)

    def test_superposition(self, make_medication):
        med = make_medication(half_life=12.0)
        d1 = Dose(med.id, T0, 100.0)
        d2 = Dose(med.id, T0 + 6 * HOUR_MS, 50.0)
        t = T0 + 20 * HOUR_MS
        combined = compute_concentration(med, [d1, d2], t)
        assert combined == pytest.approx(
            compute_concentration(med, [d1], t) + compute_concentration(med, [d2], t)
        )

    def test_tiny_values_not_cut_off(self, make_medication):
        med = make_medication(half_life=1.0)
        doses = [Dose(med.id, T0, 100.0)]
        c = compute_concentration(med, doses, T0 + 20 * HOUR_MS)
        assert 0 < c < MEASURABLE_THRESHOLD

    def test_unordered_doses(self, make_medication):
        med = make_medication()
        doses = [Dose(med.id, T0 + 5 * HOUR_MS, 10.0), Dose(med.id, T0, 20.0)]
        t = T0 + 8 * HOUR_MS
        assert compute_concentration(med, doses, t) == pytest.approx(
            compute_concentration(med, list(reversed(doses)), t)
        )

    def test_other_medications_ignored(self, make_medication):
        med = make_medication()
        own = Dose(med.id, T0, 100.0)
        t = T0 + 6 * HOUR_MS
        assert compute_concentration(med, [own, Dose("other", T0, 100.0)], t) == compute_concentration(med, [own], t)
        assert compute_concentration(med, [Dose("other", T0, 100.0)], t) == 0.0

    def test_empty_doses(self, make_medication):
        assert compute_concentration(make_medication(), [], T0) == 0.0


# ─── Invalid parameters ───────────────────────────────────────


class TestInvalidParameters:

    @pytest.mark.parametrize("override", [
        {"half_life": 0.0},
        {"half_life": -3.0},
        {"half_life": float("nan")},
        {"volume_of_distribution": 0.0},
        {"absorption_rate": 0.0},
        {"bioavailability": 0.0},
        {"bioavailability": 1.5},
        {"volume_of_distribution": float("inf")},
    ])
    def test_invalid_params_give_zero(self, make_medication, override):
        med = make_medication(**override)
        assert not has_valid_pk_params(med)
        assert compute_concentration(med, [Dose(med.id, T0, 100.0)], T0 + HOUR_MS) == 0.0

    def test_valid_params(self, make_medication):
        assert has_valid_pk_params(make_medication(bioavailability=1.0))

    def test_bad_body_weight_gives_zero(self, make_medication):
        med = make_medication()
        assert compute_concentration(med, [Dose(med.id, T0, 100.0)], T0, body_weight=0) == 0.0

    def test_unknown_model_raises(self, make_medication):
        with pytest.raises(ValueError):
            compute_concentration(make_medication(), [], T0, model="two-compartment")


# ─── Bateman model ────────────────────────────────────────────


class TestBateman:

    def test_zero_at_dose_time_then_rises(self, make_medication):
        med = make_medication(half_life=12.0, absorption_rate=1.5)
        doses = [Dose(med.id, T0, 100.0)]
        assert compute_concentration(med, doses, T0, model="bateman") == 0.0
        assert compute_concentration(med, doses, T0 + HOUR_MS, model="bateman") > 0.0

    def test_peak_matches_metrics(self, make_medication):
        med = make_medication(half_life=12.0, absorption_rate=1.5)
        metrics = compute_pk_metrics(med, 100.0, model="bateman")
        tmax = metrics["tmax_hours"]
        ke = math.log(2) / 12.0
        assert tmax == pytest.approx(math.log(1.5 / ke) / (1.5 - ke))
        doses = [Dose(med.id, T0, 100.0)]
        at_peak = compute_concentration(med, doses, T0 + tmax * HOUR_MS, model="bateman")
        assert at_peak == pytest.approx(metrics["cmax"], rel=1e-6)
        for shift in (-0.5, 0.5):
            assert compute_concentration(med, doses, T0 + (tmax + shift) * HOUR_MS, model="bateman") < at_peak

    def test_equal_rates_use_limit(self, make_medication):
        ke = math.log(2) / 10.0
        med = make_medication(half_life=10.0, absorption_rate=ke)
        c = compute_concentration(med, [Dose(med.id, T0, 100.0)], T0 + 5 * HOUR_MS, model="bateman")
        assert math.isfinite(c) and c > 0


# ─── Lookback, curves, metrics ────────────────────────────────


class TestHelpers:

    def test_relevant_doses_filters_medication_and_window(self, make_medication):
        med = make_medication(half_life=24.0)  # 5 half-lives = 120 h < 7 days
        doses = [
            Dose(med.id, T0 - 8 * DAY_MS, 1.0),     # too old
            Dose(med.id, T0 - 6 * DAY_MS, 1.0),
            Dose("other", T0, 1.0),
            Dose(med.id, T0 + 2 * DAY_MS, 1.0),
            Dose(med.id, T0 + 5 * DAY_MS, 1.0),     # after end
        ]
        picked = relevant_doses(med, doses, T0, T0 + 3 * DAY_MS)
        assert [d.timestamp for d in picked] == [T0 - 6 * DAY_MS, T0 + 2 * DAY_MS]

    def test_relevant_doses_long_half_life_extends_lookback(self, make_medication):
        med = make_medication(half_life=72.0)  # 5 × 72 h = 15 days
        old = Dose(med.id, T0 - 14 * DAY_MS, 1.0)
        assert relevant_doses(med, [old], T0, T0) == [old]

    def test_curve_has_points_plus_one_samples(self, make_medication):
        med = make_medication()
        curve = concentration_curve(med, [Dose(med.id, T0, 100.0)], T0, T0 + DAY_MS, points=24)
        assert len(curve) == 25
        assert curve[0]["time"] == T0
        assert curve[-1]["time"] == T0 + DAY_MS

    def test_bolus_metrics(self, make_medication):
        med = make_medication()
        m = compute_pk_metrics(med, 100.0, interval_hours=24.0)
        ke = math.log(2) / 24.0
        assert m["valid"] is True
        assert m["tmax_hours"] == 0.0
        assert m["cmax"] == pytest.approx(m["c0"])
        assert m["auc"] == pytest.approx(m["c0"] / ke)
        assert m["accumulation_ratio"] == pytest.approx(2.0)
        assert m["steady_state_peak"] == pytest.approx(2 * m["c0"])

    def test_metrics_invalid(self, make_medication):
        assert compute_pk_metrics(make_medication(half_life=0.0), 100.0) == {"valid": False, "model": "bolus"}

    def test_accumulation_ratio_degenerate(self):
        assert accumulation_ratio(0.0, 24.0) == 1.0


class TestTherapeuticStatus:

    def test_within_range_after_unit_conversion(self, make_medication):
        med = make_medication(therapeutic_range=TherapeuticRange(0.02, 0.05, "mcg/mL"))
        status = therapeutic_status(med, 30.0)
        assert status["has_therapeutic_range"] is True
        assert status["status"] == "within"
        assert status["min"] == pytest.approx(20.0)

    @pytest.mark.parametrize("conc,expected", [(5.0, "below"), (80.0, "above")])
    def test_below_and_above(self, make_medication, conc, expected):
        med = make_medication(therapeutic_range=TherapeuticRange(10.0, 50.0, "ng/mL"))
        assert therapeutic_status(med, conc)["status"] == expected

    def test_unknown_unit(self, make_medication):
        med = make_medication(therapeutic_range=TherapeuticRange(1.0, 2.0, "mEq/L"))
        assert therapeutic_status(med, 1.5) == {"has_therapeutic_range": False, "status": None}

    def test_no_range(self, make_medication):
        assert therapeutic_status(make_medication(), 10.0)["has_therapeutic_range"] is False
