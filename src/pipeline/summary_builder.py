"""Helpers for building concise insight text for UI consumption."""

from __future__ import annotations

from typing import List, Optional

from models import Insight, InsightsReport


def clip(s: str, limit: int = 260) -> str:
    s = s.replace("\n", " ").strip()
    if len(s) <= limit:
        return s
    return s[: limit - 3].rstrip() + "..."


def bullet(label: str, value: str) -> str:
    prefix = f"- {label}: "
    allowed = max(48, 280 - len(prefix))
    return prefix + clip(value, allowed)


def _strongest(insights: List[Insight]) -> Optional[Insight]:
    return insights[0] if insights else None


def _describe(insight: Insight) -> str:
    lag = f" after {insight.lag_hours}h" if insight.lag_hours else ""
    verb = "improves" if insight.is_desirable else "worsens"
    return (
        f"{insight.medication} concentration tracks {insight.metric_label.lower()}{lag} "
        f"(r={insight.correlation:.2f}, adjusted p={insight.adjusted_p_value:.3f}, n={insight.sample_size}); "
        f"{insight.metric_label.lower()} {verb} at higher levels"
    )


def build_concise_summary(report: Optional[InsightsReport]) -> str:
    """Create a strict 3-bullet, human-friendly summary for UI cards."""
    if (
        report is None
        or "insufficient_mood_entries" in report.data_quality.degraded_reasons
        or (not report.all_insights and not report.red_flags)
    ):
        reasons = ""
        if report is not None and report.data_quality.degraded_reasons:
            reasons = f" ({', '.join(report.data_quality.degraded_reasons)})"
        return (
            f"- What changed: Insufficient data in this window{reasons}.\n"
            "- Why it matters: Without a stable signal, links between medication and mood stay unconfirmed.\n"
            "- Next steps: Keep logging doses and mood entries daily and regenerate the report in a week."
        )

    positive = _strongest(report.top_positive_impacts)
    negative = _strongest(report.top_negative_impacts)
    alerts = [f for f in report.red_flags if f.get("severity") == "alert"]
    flags = alerts or report.red_flags

    if positive is not None:
        what_changed = _describe(positive)
    elif negative is not None:
        what_changed = _describe(negative)
    elif report.all_insights:
        top = report.all_insights[0]
        what_changed = (f"No strong medication effect yet; strongest signal is {top.medication} vs "
                        f"{top.metric_label.lower()} (r={top.correlation:.2f}, n={top.sample_size})")
    else:
        what_changed = "No medication could be analysed in this window"

    if flags:
        why_it_matters = f"{flags[0]['title']}: {flags[0]['description']}"
    elif negative is not None and negative is not positive:
        why_it_matters = f"Watch out: {_describe(negative)}"
    elif positive is not None:
        why_it_matters = positive.interpretation
    else:
        why_it_matters = "Signals are weak, so treat any pattern as exploratory."

    if flags:
        next_steps = flags[0]["suggestion"]
    elif negative is not None:
        next_steps = negative.recommendation
    elif positive is not None:
        next_steps = positive.recommendation
    else:
        next_steps = "Keep logging consistently so the next report has enough data to confirm a pattern."

    return (
        f"{bullet('What changed', what_changed)}\n"
        f"{bullet('Why it matters', why_it_matters)}\n"
        f"{bullet('Next steps', next_steps)}"
    )
