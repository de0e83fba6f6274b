"""
FastAPI backend contract for the medication / mood insights frontend.

The core is pure; these handlers only validate bodies, convert them to
domain records and serialise the results.  Shared utilities live in
routes/helpers.py.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from concentration_sampler import default_mode, sample_concentration_series
from config import (
    ANALYSIS_WINDOW_DAYS,
    API_HOST,
    API_PORT,
    BODY_WEIGHT_KG,
    FRONTEND_ORIGINS,
    LOG_LEVEL,
    REPORT_TIMEZONE,
)
from insight_analyzer import generate_insights_report
from pipeline.summary_builder import build_concise_summary
from pk_model import compute_pk_metrics, has_valid_pk_params, therapeutic_status
from routes.helpers import _doses, _medications, _moods, _to_jsonable
from statistics_engine import best_lag, cross_correlation

log = logging.getLogger("api")


# ─── App setup ─────────────────────────────────────────────

app = FastAPI(title="Medication Insights API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=FRONTEND_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# ─── Request bodies (camelCase or snake_case) ──────────────

class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TherapeuticRangeIn(_Body):
    min: float
    max: float
    unit: str = "ng/mL"


class MedicationIn(_Body):
    id: str
    name: str
    half_life: float
    volume_of_distribution: float
    bioavailability: float
    absorption_rate: float
    therapeutic_range: Optional[TherapeuticRangeIn] = None
    med_class: Optional[str] = None
    scheduled_time: Optional[str] = None


class DoseIn(_Body):
    medication_id: str
    timestamp: int
    dose_amount: float


class MoodEntryIn(_Body):
    timestamp: int
    mood_score: float
    anxiety_level: Optional[float] = None
    energy_level: Optional[float] = None
    focus_level: Optional[float] = None
    cognitive_score: Optional[float] = None
    attention_shift: Optional[float] = None


class InsightsRequest(_Body):
    medications: List[MedicationIn] = []
    doses: List[DoseIn] = []
    mood_entries: List[MoodEntryIn] = []
    window_days: Optional[int] = Field(default=ANALYSIS_WINDOW_DAYS, ge=1)
    now: Optional[int] = None
    body_weight: float = Field(default=BODY_WEIGHT_KG, gt=0)
    timezone: str = REPORT_TIMEZONE
    include_summary: bool = False


class ConcentrationRequest(_Body):
    medication: MedicationIn
    doses: List[DoseIn] = []
    timestamps: List[int]
    mode: Optional[Literal["instant", "trend"]] = None
    body_weight: float = Field(default=BODY_WEIGHT_KG, gt=0)
    model: Literal["bolus", "bateman"] = "bolus"


class CrossCorrelationRequest(_Body):
    series_a: List[Optional[float]]
    series_b: List[Optional[float]]
    max_lag: int = Field(default=24, ge=0, le=720)
    min_pairs: int = Field(default=5, ge=3)
    method: Literal["pearson", "spearman"] = "pearson"
    transform: Literal["levels", "differences"] = "levels"


# ─── Routes ────────────────────────────────────────────────

@app.get("/")
def root() -> Dict[str, Any]:
    return {"service": "medication-insights-api", "status": "ok"}


@app.get("/health-check")
def health_check() -> JSONResponse:
    return JSONResponse({"status": "Online", "message": "Online"})


@app.post("/api/v1/insights/report")
def insights_report(body: InsightsRequest) -> Dict[str, Any]:
    try:
        report = generate_insights_report(
            _medications(body.medications),
            _doses(body.doses),
            _moods(body.mood_entries),
            window_days=body.window_days,
            now=body.now,
            body_weight=body.body_weight,
            tz=body.timezone,
        )
        out = _to_jsonable(report.to_dict())
        if body.include_summary:
            out["summary"] = build_concise_summary(report)
        return out
    except Exception as e:
        log.exception("Insights report failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/v1/concentration/series")
def concentration_series(body: ConcentrationRequest) -> Dict[str, Any]:
    try:
        medication = _medications([body.medication])[0]
        doses = _doses(body.doses)
        mode = body.mode or default_mode(medication, doses)
        samples = sample_concentration_series(
            medication, doses, body.timestamps,
            mode=mode, body_weight=body.body_weight, model=body.model,
        )
        latest = next((c for c in reversed(samples) if c is not None), None)
        typical_dose = doses[-1].dose_amount if doses else None
        return _to_jsonable({
            "medication_id": medication.id,
            "mode": mode,
            "model": body.model,
            "valid_pk_parameters": has_valid_pk_params(medication),
            "samples": [
                {"timestamp": t, "concentration": c} for t, c in zip(body.timestamps, samples)
            ],
            "therapeutic_status": therapeutic_status(medication, latest) if latest is not None else None,
            "pk_metrics": (
                compute_pk_metrics(medication, typical_dose, body.body_weight, body.model)
                if typical_dose else None
            ),
        })
    except Exception as e:
        log.exception("Concentration series failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/v1/statistics/cross-correlation")
def statistics_cross_correlation(body: CrossCorrelationRequest) -> Dict[str, Any]:
    try:
        points = cross_correlation(
            body.series_a, body.series_b,
            max_lag=body.max_lag, min_pairs=body.min_pairs,
            method=body.method, transform=body.transform,
        )
        best = best_lag(points)
        return _to_jsonable({
            "points": [pt.to_dict() for pt in points],
            "best": best.to_dict() if best else None,
        })
    except Exception as e:
        log.exception("Cross-correlation failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    uvicorn.run(app, host=API_HOST, port=API_PORT)
