"""Sanitized summary prompt for the LLM translator.

The translator only ever sees categorical conclusions (healthy / concerning /
critical, trend labels, anomaly areas). Amounts, percentiles and counts stay
inside the process.
"""

from typing import List

from src.constants import BenchmarkStatus, TrendDirection
from src.models.insight import ProprietaryAnalysisResult
from src.tools.llm_client import assert_sanitized

AUDIENCES = ("founder", "investor", "technical")

CRITICAL_RUNWAY_MONTHS = 6
HEALTHY_RUNWAY_MONTHS = 12


def runway_status(runway_months: float) -> str:
    if runway_months < CRITICAL_RUNWAY_MONTHS:
        return "critical"
    if runway_months < HEALTHY_RUNWAY_MONTHS:
        return "concerning"
    return "healthy"


def generic_risk(risk: str) -> str:
    """Replace a risk sentence with a fixed phrase carrying no figures."""
    text = risk.lower()
    if "runway" in text:
        return "runway concerns identified"
    if "survival" in text:
        return "survival probability below target"
    if "increasing" in text:
        return "burn rate trending upward"
    return "risk identified"


def _unique(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def build_llm_summary_prompt(analysis: ProprietaryAnalysisResult, audience: str = "founder") -> str:
    """
    Build the translator prompt from an analysis.

    Args:
        analysis: Result of InsightEngine.run_full_analysis()
        audience: founder, investor or technical

    Returns:
        Prompt text with categorical statements only

    Raises:
        ValueError: If the audience is unknown
        UnsanitizedPromptError: If numeric data slipped into the prompt
    """
    if audience not in AUDIENCES:
        raise ValueError(f"Unknown audience: {audience}")

    results = analysis.results
    parts = [
        "Translate the following high-level financial assessment into clear, actionable language.",
        f"Target audience: {audience}",
        "",
        "=== HIGH-LEVEL ASSESSMENT (no raw data, only categorical conclusions) ===",
    ]

    if results.forecast is not None:
        forecast = results.forecast
        parts.append(f"\nRUNWAY STATUS: {runway_status(forecast.runway_months).upper()}")
        parts.append(f"- Burn rate trend: {TrendDirection(forecast.burn_rate_trend).value}")
        if forecast.key_risks:
            risks = _unique([generic_risk(r) for r in forecast.key_risks])
            parts.append(f"- Risk factors: {'; '.join(risks)}")

    if results.anomalies is not None and results.anomalies.anomalies_detected > 0:
        by_severity = results.anomalies.by_severity
        urgent = by_severity.get("critical", 0) + by_severity.get("high", 0)
        if urgent > 0:
            overall = "high-priority"
        elif by_severity.get("medium", 0) > 0:
            overall = "moderate"
        else:
            overall = "minor"
        parts.append(f"\nSPENDING PATTERNS: {overall.upper()} anomalies detected")

        levels = []
        if urgent > 0:
            levels.append("some high-priority issues")
        if by_severity.get("medium", 0) > 0:
            levels.append("moderate concerns")
        if by_severity.get("low", 0) > 0:
            levels.append("minor items")
        parts.append(f"- Severity distribution: {', '.join(levels)}")

        areas = _unique([a.type.replace("_", " ") for a in results.anomalies.top_anomalies])
        if areas:
            parts.append(f"- Areas: {', '.join(areas)}")

    if results.benchmarks is not None and results.benchmarks.comparisons:
        statuses = {c.status for c in results.benchmarks.comparisons}
        if BenchmarkStatus.TOP_PERFORMER in statuses:
            position = "strong"
        elif BenchmarkStatus.ABOVE_AVERAGE in statuses:
            position = "above average"
        elif BenchmarkStatus.BELOW_AVERAGE in statuses:
            position = "needs improvement"
        else:
            position = "average"
        parts.append(f"\nINDUSTRY POSITION: {position.upper()}")
        if results.benchmarks.strengths:
            parts.append("- Strengths: several metrics above industry average")
        if results.benchmarks.improvements:
            parts.append("- Areas for improvement: some metrics below industry average")

    parts.extend([
        "",
        "=== INSTRUCTIONS ===",
        "First, explain the categorical assessments above in plain language.",
        "Do not invent specific numbers, you do not have that data.",
        "Focus on what actions the user should consider.",
        "Keep the summary to a short paragraph of a few sentences.",
    ])

    prompt = "\n".join(parts)
    assert_sanitized(prompt)
    return prompt
