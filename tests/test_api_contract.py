"""
Contract/behavior tests for src/api.py.

These tests drive the FastAPI app in-process and validate:
- camelCase request bodies and snake_case responses
- concentration series values and validation errors
- cross-correlation payload shape
- insights report degraded mode and optional summary
"""

import pytest
from fastapi.testclient import TestClient

import api as api_mod
from routes.helpers import _to_jsonable

T0 = 1_704_067_200_000
HOUR_MS = 3_600_000

MEDICATION = {
    "id": "med-a",
    "name": "Medicine A",
    "halfLife": 24,
    "volumeOfDistribution": 20,
    "bioavailability": 0.5,
    "absorptionRate": 1.0,
}


@pytest.fixture
def client():
    return TestClient(api_mod.app)


def test_health_check(client):
    res = client.get("/health-check")
    assert res.status_code == 200
    assert res.json() == {"status": "Online", "message": "Online"}


def test_concentration_series_reference_values(client):
    res = client.post("/api/v1/concentration/series", json={
        "medication": MEDICATION,
        "doses": [{"medicationId": "med-a", "timestamp": T0, "doseAmount": 100}],
        "timestamps": [T0 - HOUR_MS, T0, T0 + 24 * HOUR_MS],
        "mode": "instant",
        "bodyWeight": 70,
    })
    assert res.status_code == 200
    out = res.json()
    assert out["medication_id"] == "med-a"
    assert out["mode"] == "instant"
    assert out["valid_pk_parameters"] is True
    values = [s["concentration"] for s in out["samples"]]
    assert values[0] == 0.0
    assert round(values[1], 1) == 35.7
    assert round(values[2], 1) == 17.9
    assert [s["timestamp"] for s in out["samples"]] == [T0 - HOUR_MS, T0, T0 + 24 * HOUR_MS]
    assert out["therapeutic_status"] == {"has_therapeutic_range": False, "status": None}
    assert out["pk_metrics"]["valid"] is True


def test_concentration_series_defaults_mode_by_class(client):
    med = {**MEDICATION, "medClass": "SSRI"}
    res = client.post("/api/v1/concentration/series", json={
        "medication": med,
        "timestamps": [T0, T0 + HOUR_MS],
    })
    assert res.status_code == 200
    out = res.json()
    assert out["mode"] == "trend"
    assert [s["concentration"] for s in out["samples"]] == [None, None]
    assert out["pk_metrics"] is None


def test_concentration_series_invalid_params_are_null(client):
    med = {**MEDICATION, "volumeOfDistribution": 0}
    res = client.post("/api/v1/concentration/series", json={
        "medication": med,
        "doses": [{"medicationId": "med-a", "timestamp": T0, "doseAmount": 100}],
        "timestamps": [T0],
        "mode": "instant",
    })
    out = res.json()
    assert out["valid_pk_parameters"] is False
    assert out["samples"] == [{"timestamp": T0, "concentration": None}]


def test_concentration_series_rejects_unknown_mode(client):
    res = client.post("/api/v1/concentration/series", json={
        "medication": MEDICATION,
        "timestamps": [T0],
        "mode": "smoothed",
    })
    assert res.status_code == 422


def test_cross_correlation_returns_every_lag(client):
    a = [float(i % 7) for i in range(30)]
    b = [0.0, 0.0] + a[:-2]
    res = client.post("/api/v1/statistics/cross-correlation", json={
        "seriesA": a,
        "seriesB": b,
        "maxLag": 3,
    })
    assert res.status_code == 200
    out = res.json()
    assert [p["lag"] for p in out["points"]] == [-3, -2, -1, 0, 1, 2, 3]
    assert out["best"]["lag"] == 2
    assert out["best"]["r"] == pytest.approx(1.0)


def test_cross_correlation_validates_max_lag(client):
    res = client.post("/api/v1/statistics/cross-correlation", json={
        "seriesA": [1, 2, 3], "seriesB": [1, 2, 3], "maxLag": -1,
    })
    assert res.status_code == 422


def test_insights_report_degraded_with_summary(client):
    res = client.post("/api/v1/insights/report", json={
        "medications": [MEDICATION],
        "doses": [{"medicationId": "med-a", "timestamp": T0 + d * 24 * HOUR_MS, "doseAmount": 100}
                  for d in range(2)],
        "moodEntries": [{"timestamp": T0 + i * 6 * HOUR_MS, "moodScore": 5} for i in range(3)],
        "includeSummary": True,
    })
    assert res.status_code == 200
    out = res.json()
    quality = out["data_quality"]
    assert quality["analysis_status"] == "degraded"
    assert quality["mood_entries"] == 3
    assert quality["excluded_medications"][0]["reason"] == "insufficient_mood_entries"
    assert out["all_insights"] == []
    assert out["summary"].startswith("- What changed: Insufficient data")


def test_insights_report_failure_maps_to_500(client, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(api_mod, "generate_insights_report", boom)
    res = client.post("/api/v1/insights/report", json={})
    assert res.status_code == 500
    assert res.json()["detail"] == "boom"


def test_to_jsonable_replaces_non_finite():
    import numpy as np

    out = _to_jsonable({"a": np.float64("nan"), "b": [np.int64(3), float("inf")], "c": (1.5,)})
    assert out == {"a": None, "b": [3, None], "c": [1.5]}
