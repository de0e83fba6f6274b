"""
Shared constants used across multiple modules.
Single source of truth for time units, mood metrics and analysis thresholds.
"""

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

# Mood metrics: report key -> MoodEntry field
MOOD_METRICS = {
    "mood":            "mood_score",
    "anxiety":         "anxiety_level",
    "energy":          "energy_level",
    "focus":           "focus_level",
    "cognition":       "cognitive_score",
    "attention_shift": "attention_shift",
}

METRIC_LABELS = {
    "mood":            "Mood",
    "anxiety":         "Anxiety",
    "energy":          "Energy",
    "focus":           "Focus",
    "cognition":       "Cognition",
    "attention_shift": "Attentional flexibility",
}

# For these metrics LOWER is better
LOWER_IS_BETTER = {"anxiety"}

# Medication classes whose effect builds over days (steady-state drugs)
CHRONIC_CLASSES = {"SSRI", "SNRI", "MOOD STABILIZER", "ANTIPSYCHOTIC"}
CHRONIC_HALF_LIFE_HOURS = 24.0
CHRONIC_ACCUMULATION_RATIO = 1.5

# Candidate pharmacodynamic delays (hours)
CHRONIC_LAGS_HOURS = [0, 6, 12, 24, 48, 72]
ACUTE_LAGS_HOURS = [0, 1, 3, 6]

# Sample-size gates
MIN_MOOD_ENTRIES = 7
MIN_DOSES = 5
MIN_VIABLE_PAIRS = 7

# Effect thresholds
MIN_ABS_R = 0.15
MIN_EFFECT_POINTS = 0.5
EXPLORATORY_ALPHA = 0.1
TOP_IMPACTS = 5
