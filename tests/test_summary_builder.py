"""
Tests for the summary builder module.

Covers: build_concise_summary defaults, insight/red-flag precedence and clipping.
"""
from models import DataQuality, Insight, InsightsReport
from pipeline.summary_builder import bullet, build_concise_summary, clip


def _insight(**overrides) -> Insight:
    params = dict(
        medication_id="med-a", medication="Sertraline", metric="mood", metric_label="Mood",
        correlation=0.62, p_value=0.001, adjusted_p_value=0.004, sample_size=40, lag_hours=24,
        lag_viable=True, effect_size=1.4, mood_high_concentration=6.8, mood_low_concentration=5.4,
        direction="positive", is_desirable=True, is_significant=True, significance="high",
        confidence="high", impact_score=1.5, interpretation="Moderate positive correlation (r=0.62)",
        recommendation="Sertraline is associated with better mood. Keep monitoring to confirm the pattern.",
    )
    params.update(overrides)
    return Insight(**params)


def _report(insights=(), positive=(), negative=(), red_flags=(), reasons=()) -> InsightsReport:
    quality = DataQuality(mood_entries=40, doses=30, medications=1, coverage=90.0,
                          degraded_reasons=list(reasons))
    return InsightsReport(
        generated_at=0, timeframe_start=0, timeframe_end=0, data_quality=quality,
        top_positive_impacts=list(positive), top_negative_impacts=list(negative),
        all_insights=list(insights), red_flags=list(red_flags),
    )


class TestBuildConciseSummary:

    def test_none_input_returns_defaults(self):
        result = build_concise_summary(None)
        assert "Insufficient data" in result
        assert result.count("\n") == 2

    def test_empty_report_lists_degraded_reasons(self):
        result = build_concise_summary(_report(reasons=["insufficient_mood_entries"]))
        assert "Insufficient data in this window (insufficient_mood_entries)" in result

    def test_insufficient_moods_wins_over_red_flags(self):
        flags = [{"id": "adherence-low", "severity": "alert", "title": "Low adherence",
                  "description": "Only 2 doses.", "suggestion": "Set a reminder."}]
        result = build_concise_summary(_report(red_flags=flags, reasons=["insufficient_mood_entries"]))
        assert result.startswith("- What changed: Insufficient data in this window (insufficient_mood_entries)")
        assert "Low adherence" not in result
        assert result.count("\n") == 2

    def test_three_bullets_from_positive_insight(self):
        top = _insight()
        result = build_concise_summary(_report(insights=[top], positive=[top]))
        lines = result.split("\n")
        assert len(lines) == 3
        assert lines[0].startswith("- What changed: Sertraline concentration tracks mood after 24h")
        assert "adjusted p=0.004" in lines[0]
        assert lines[1] == "- Why it matters: Moderate positive correlation (r=0.62)"
        assert lines[2].startswith("- Next steps: Sertraline is associated with better mood")

    def test_negative_insight_drives_next_steps(self):
        good = _insight()
        bad = _insight(medication="Caffeine", metric="anxiety", metric_label="Anxiety", is_desirable=False,
                       recommendation="Caffeine may be increasing your anxiety. Discuss this with your doctor.")
        result = build_concise_summary(_report(insights=[good, bad], positive=[good], negative=[bad]))
        assert "Watch out: Caffeine concentration tracks anxiety" in result
        assert "anxiety worsens at higher levels" in result
        assert result.endswith("Discuss this with your doctor.")

    def test_alert_red_flag_takes_priority(self):
        flags = [
            {"id": "energy-low-persistent", "severity": "warning", "title": "Persistent low energy",
             "description": "Energy low.", "suggestion": "Check sleep."},
            {"id": "mood-low-persistent", "severity": "alert", "title": "Persistent low mood",
             "description": "Mood low in 6 entries.", "suggestion": "Talk to your doctor."},
        ]
        top = _insight()
        result = build_concise_summary(_report(insights=[top], positive=[top], red_flags=flags))
        lines = result.split("\n")
        assert lines[1] == "- Why it matters: Persistent low mood: Mood low in 6 entries."
        assert lines[2] == "- Next steps: Talk to your doctor."

    def test_weak_signals_only(self):
        weak = _insight(correlation=0.05, direction="neutral", is_desirable=False, lag_hours=0)
        result = build_concise_summary(_report(insights=[weak]))
        assert "No strong medication effect yet" in result
        assert "exploratory" in result

    def test_truncation_of_long_lines(self):
        top = _insight(interpretation="Strong link " + "x" * 500)
        result = build_concise_summary(_report(insights=[top], positive=[top]))
        for line in result.split("\n"):
            assert len(line) <= 280
        assert result.split("\n")[1].endswith("...")


class TestHelpers:

    def test_clip_flattens_newlines(self):
        assert clip("a\nb ") == "a b"

    def test_clip_limit(self):
        assert clip("y" * 20, limit=10) == "y" * 7 + "..."

    def test_bullet_prefix(self):
        assert bullet("Next steps", "rest") == "- Next steps: rest"
