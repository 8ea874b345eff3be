"""Insight engine - runs every local model for an organization and ranks what they found.

All analytical work happens here, in-process. The LLM translator only ever
receives the categorical prompt built from the result.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from src.constants import (
    INSIGHT_SEVERITY_RANK,
    ANALYSIS_MAX_WORKERS,
    DEFAULT_CURRENT_CASH,
    DEFAULT_FORECAST_HORIZON,
    HIGH_CONFIDENCE_CLASSIFICATION,
    MAX_INSIGHTS,
    InsightSeverity,
    InsightType,
    Severity,
    TrendDirection,
)
from src.ml.benchmarks import BenchmarkCatalogue, organization_metrics
from src.ml.coa_mapper import COAMapper
from src.ml.forecast_model import burn_trend
from src.ml.registry import ModelRegistry
from src.models.insight import (
    AnalysisResults,
    AnomalyAnalysis,
    AnomalySummaryItem,
    BenchmarkAnalysis,
    ClassificationAnalysis,
    ForecastAnalysis,
    ForecastPoint,
    InsightReport,
    LowConfidenceTransaction,
    ModelAttribution,
    ProprietaryAnalysisResult,
    ProprietaryInsight,
    RunwayInterval,
    VendorAnalysis,
    VendorSpend,
)
from src.orchestrator.prompt_builder import build_llm_summary_prompt
from src.tools.ledger_client import LedgerClient
from src.tools.llm_client import translate_summary
from src.utils.logging import get_logger
from src.utils.metrics import analysis_duration, analysis_subtask_failures

logger = get_logger(__name__)

CLASSIFICATION_WINDOW_MONTHS = 3
CLASSIFICATION_LIMIT = 500
VENDOR_WINDOW_MONTHS = 6
RECURRING_MIN_MONTHS = 3
KNOWN_VENDOR_CONFIDENCE = 0.8
MAX_LOW_CONFIDENCE = 10
MAX_TOP_VENDORS = 10
MAX_TOP_ANOMALIES = 5

# Anomaly severities collapse onto the three insight levels
INSIGHT_SEVERITY = {
    Severity.CRITICAL: InsightSeverity.HIGH,
    Severity.HIGH: InsightSeverity.HIGH,
    Severity.MEDIUM: InsightSeverity.MEDIUM,
    Severity.LOW: InsightSeverity.LOW,
}

SubtaskResult = Tuple[Any, ModelAttribution]


def run_settled(executor: ThreadPoolExecutor,
                tasks: Dict[str, Callable[[], Any]]) -> Tuple[Dict[str, Any], Dict[str, BaseException]]:
    """
    Run tasks concurrently and wait for all of them.

    Returns:
        (successes by name, failures by name); one failure never cancels the others
    """
    futures = {name: executor.submit(task) for name, task in tasks.items()}
    successes: Dict[str, Any] = {}
    failures: Dict[str, BaseException] = {}
    for name, future in futures.items():
        error = future.exception()
        if error is None:
            successes[name] = future.result()
        else:
            failures[name] = error
    return successes, failures


def _months_ago(months: int, as_of: date) -> date:
    return (pd.Timestamp(as_of) - pd.DateOffset(months=months)).date()


class InsightEngine:
    """Coordinates the per-organization models into one analysis"""

    def __init__(self, ledger: LedgerClient, registry: ModelRegistry, coa_mapper: COAMapper,
                 benchmarks: BenchmarkCatalogue, config: Optional[Dict[str, Any]] = None):
        self.ledger = ledger
        self.registry = registry
        self.coa_mapper = coa_mapper
        self.benchmarks = benchmarks
        self.config = config or {}
        self.max_workers = self.config.get("max_workers", ANALYSIS_MAX_WORKERS)

    # -- sub-analyses ----------------------------------------------------------

    def _run_classification(self, organization_id: str, as_of: date) -> SubtaskResult:
        start_time = time.time()
        frame = self.ledger.get_transactions(
            organization_id,
            since=_months_ago(CLASSIFICATION_WINDOW_MONTHS, as_of),
            until=as_of,
            limit=self.config.get("classification_limit", CLASSIFICATION_LIMIT),
        )

        distribution: Dict[str, int] = {}
        low_confidence: List[LowConfidenceTransaction] = []
        high_confidence = 0
        for row in frame.itertuples(index=False):
            text = row.description or row.vendor or ""
            account_type = "Expense" if row.amount < 0 else "Income"
            result = self.coa_mapper.classify_text(organization_id, text, account_type)
            account = result.canonical_code if result else "unclassified"
            confidence = result.confidence if result else 0.0

            if confidence > HIGH_CONFIDENCE_CLASSIFICATION:
                high_confidence += 1
            else:
                low_confidence.append(LowConfidenceTransaction(
                    transaction_id=row.txn_id,
                    vendor_name=row.vendor or row.description or "",
                    suggested_account=result.canonical_code if result else None,
                    confidence=confidence,
                ))
            distribution[account] = distribution.get(account, 0) + 1

        rate = high_confidence / max(1, len(frame))
        classifier = self.registry.classifier(organization_id)
        return (
            ClassificationAnalysis(
                transactions_classified=len(frame),
                account_distribution=distribution,
                high_confidence_rate=rate,
                low_confidence_transactions=low_confidence[:MAX_LOW_CONFIDENCE],
            ),
            ModelAttribution(
                model_name="AccountClassifier",
                version=classifier.version or "untrained",
                confidence=rate,
                execution_time_ms=(time.time() - start_time) * 1000,
            ),
        )

    def _run_vendor_analysis(self, organization_id: str, as_of: date) -> SubtaskResult:
        start_time = time.time()
        matcher = self.registry.vendor(organization_id)
        frame = self.ledger.get_transactions(
            organization_id, since=_months_ago(VENDOR_WINDOW_MONTHS, as_of), until=as_of
        )
        debits = frame[(frame['amount'] < 0) & (frame['vendor'].fillna('') != '')].copy()
        debits['spend'] = -debits['amount']
        debits['month'] = debits['date'].dt.strftime('%Y-%m')

        normalized_names: Dict[str, str] = {}
        matches_to_known = 0
        for raw in debits['vendor'].unique():
            match = matcher.normalize(raw)
            if match is not None and match.confidence > KNOWN_VENDOR_CONFIDENCE:
                matches_to_known += 1
            annotated = debits.loc[debits['vendor'] == raw, 'vendor_normalized'].dropna()
            if len(annotated):
                normalized_names[raw] = annotated.iloc[-1]
            elif match is not None:
                normalized_names[raw] = match.normalized_name
        debits['normalized'] = debits['vendor'].map(lambda raw: normalized_names.get(raw, raw))

        months_active = debits.groupby('normalized')['month'].nunique()
        recurring = set(months_active[months_active >= RECURRING_MIN_MONTHS].index)
        flagged = debits['is_recurring'].fillna(False).astype(bool)
        to_flag = debits[debits['normalized'].isin(recurring) & ~flagged]
        for txn_id in to_flag['txn_id']:
            self.ledger.annotate_transaction(txn_id, is_recurring=True)

        top = []
        by_vendor = debits.groupby('normalized').agg(
            total=('spend', 'sum'), name=('vendor', 'last'), category=('category_id', 'last')
        ).sort_values('total', ascending=False)
        for normalized, row in by_vendor.head(MAX_TOP_VENDORS).iterrows():
            top.append(VendorSpend(
                name=row['name'],
                normalized_name=normalized,
                total_spend=round(float(row['total']), 2),
                category=row['category'] if isinstance(row['category'], str) else None,
            ))

        distinct = debits['vendor'].nunique()
        return (
            VendorAnalysis(
                vendors_normalized=len(normalized_names),
                matches_to_known=matches_to_known,
                new_vendors=distinct - matches_to_known,
                recurring_vendors=len(recurring),
                top_vendors_by_spend=top,
            ),
            ModelAttribution(
                model_name="VendorMatcher",
                version=matcher.version or "untrained",
                confidence=0.85 if distinct > 0 else 0.5,
                execution_time_ms=(time.time() - start_time) * 1000,
            ),
        )

    def _run_anomaly_detection(self, organization_id: str, as_of: date) -> SubtaskResult:
        start_time = time.time()
        model = self.registry.anomaly(organization_id)
        anomalies = model.detect_all_anomalies(as_of=as_of)

        by_severity = {s.value: 0 for s in Severity}
        for anomaly in anomalies:
            by_severity[anomaly.severity.value] += 1

        ranked = sorted(anomalies, key=lambda a: abs(a.score), reverse=True)[:MAX_TOP_ANOMALIES]
        top = [
            AnomalySummaryItem(
                type=a.anomaly_type.value,
                description=a.description,
                severity=a.severity.value,
                value=a.value,
                expected_min=a.expected_range.min,
                expected_max=a.expected_range.max,
                confidence=a.confidence,
            )
            for a in ranked
        ]
        confidence = sum(a.confidence for a in anomalies) / len(anomalies) if anomalies else 0.8
        return (
            AnomalyAnalysis(anomalies_detected=len(anomalies), by_severity=by_severity, top_anomalies=top),
            ModelAttribution(
                model_name="AnomalyModel",
                version=model.version or "untrained",
                confidence=confidence,
                execution_time_ms=(time.time() - start_time) * 1000,
            ),
        )

    def _run_forecast(self, organization_id: str, current_cash: float) -> SubtaskResult:
        start_time = time.time()
        model = self.registry.forecast(organization_id)
        forecast = model.forecast(DEFAULT_FORECAST_HORIZON)
        runway = model.runway_probabilities(current_cash)
        trend = burn_trend(forecast.forecasts)

        key_risks = []
        if runway.p50_months < 6:
            key_risks.append("Critical runway: less than 6 months at median forecast")
        if runway.survival_probabilities.get("6_months", 1.0) < 0.9:
            key_risks.append("Less than 90% probability of 6-month survival")
        if trend == TrendDirection.INCREASING:
            key_risks.append("Burn rate trend is increasing")

        return (
            ForecastAnalysis(
                runway_months=round(runway.p50_months),
                runway_confidence_interval=RunwayInterval(
                    p10=runway.p10_months, p50=runway.p50_months, p90=runway.p90_months
                ),
                survival_probabilities=runway.survival_probabilities,
                monthly_forecasts=[
                    ForecastPoint(
                        month=f.month,
                        predicted_cash_flow=f.predicted,
                        lower=f.lower,
                        upper=f.upper,
                        confidence=f.confidence,
                    )
                    for f in forecast.forecasts
                ],
                burn_rate_trend=trend,
                key_risks=key_risks,
            ),
            ModelAttribution(
                model_name="ForecastModel",
                version=model.version,
                confidence=forecast.model_confidence,
                execution_time_ms=(time.time() - start_time) * 1000,
            ),
        )

    def _run_benchmark_comparison(self, organization_id: str, current_cash: float,
                                  as_of: date) -> SubtaskResult:
        start_time = time.time()
        organization = self.ledger.get_organization(organization_id)
        business_type = organization.business_type.value if organization else "other"

        metrics = organization_metrics(self.ledger, organization_id, current_cash, as_of=as_of)
        comparisons = self.benchmarks.compare(business_type, metrics)

        strengths, improvements = [], []
        for c in comparisons:
            if c.status in ("above_average", "top_performer"):
                strengths.append(f"{c.metric} is in the {c.percentile}th percentile")
            elif c.status == "below_average":
                improvements.append(f"{c.metric} is below industry average ({c.percentile}th percentile)")

        return (
            BenchmarkAnalysis(
                business_type=business_type,
                comparisons=comparisons,
                strengths=strengths,
                improvements=improvements,
            ),
            ModelAttribution(
                model_name="BenchmarkCatalogue",
                version="config",
                confidence=0.75 if self.benchmarks.benchmarks_for(business_type) else 0.5,
                execution_time_ms=(time.time() - start_time) * 1000,
            ),
        )

    # -- aggregate -------------------------------------------------------------

    def run_full_analysis(self, organization_id: str, current_cash: Optional[float] = None,
                          as_of: Optional[date] = None) -> ProprietaryAnalysisResult:
        """
        Run every sub-analysis concurrently for one organization.

        A sub-analysis that raises is logged and left out; the rest still
        return. overall_confidence is the mean of the successful ones.

        Args:
            organization_id: Organization ID
            current_cash: Cash on hand for runway estimates (default 100000)
            as_of: Analysis date (default today)

        Returns:
            ProprietaryAnalysisResult
        """
        start_time = time.time()
        as_of = as_of or date.today()
        cash = current_cash if current_cash is not None else self.config.get(
            "default_current_cash", DEFAULT_CURRENT_CASH
        )
        logger.info(f"Running full analysis for org {organization_id}")

        tasks = {
            "classification": lambda: self._run_classification(organization_id, as_of),
            "vendor_analysis": lambda: self._run_vendor_analysis(organization_id, as_of),
            "anomalies": lambda: self._run_anomaly_detection(organization_id, as_of),
            "forecast": lambda: self._run_forecast(organization_id, cash),
            "benchmarks": lambda: self._run_benchmark_comparison(organization_id, cash, as_of),
        }
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="analysis") as executor:
            successes, failures = run_settled(executor, tasks)

        for name, error in failures.items():
            analysis_subtask_failures.labels(subtask=name).inc()
            logger.error(f"Sub-analysis {name} failed: {error}", organization_id=organization_id)

        results = AnalysisResults(**{name: result for name, (result, _) in successes.items()})
        models_used = [attribution for name, (_, attribution) in successes.items()]
        confidences = [m.confidence for m in models_used]
        overall_confidence = sum(confidences) / len(confidences) if confidences else 0.0

        duration = time.time() - start_time
        analysis_duration.observe(duration)
        logger.info(
            f"Full analysis completed in {duration * 1000:.0f}ms with {len(models_used)} models",
            organization_id=organization_id,
            failed=sorted(failures),
        )
        return ProprietaryAnalysisResult(
            organization_id=organization_id,
            results=results,
            overall_confidence=overall_confidence,
            models_used=models_used,
            failed_subtasks={name: str(error) for name, error in failures.items()},
        )

    def get_proprietary_insights(self, organization_id: str, current_cash: Optional[float] = None,
                                 as_of: Optional[date] = None) -> InsightReport:
        """
        Ranked insights from a full analysis, no LLM involved.

        Returns:
            InsightReport with at most MAX_INSIGHTS insights, most severe and
            most confident first
        """
        analysis = self.run_full_analysis(organization_id, current_cash, as_of)
        insights: List[ProprietaryInsight] = []

        if analysis.results.anomalies is not None:
            for anomaly in analysis.results.anomalies.top_anomalies:
                insights.append(ProprietaryInsight(
                    type=InsightType.ANOMALY,
                    severity=INSIGHT_SEVERITY[Severity(anomaly.severity)],
                    title=f"Spending Anomaly: {anomaly.type}",
                    description=anomaly.description,
                    confidence=anomaly.confidence,
                    data_points={
                        "value": anomaly.value,
                        "expected_min": anomaly.expected_min,
                        "expected_max": anomaly.expected_max,
                    },
                    source="AnomalyModel",
                ))

        forecast = analysis.results.forecast
        if forecast is not None:
            if forecast.runway_months < 12:
                attribution = next((m for m in analysis.models_used if m.model_name == "ForecastModel"), None)
                insights.append(ProprietaryInsight(
                    type=InsightType.WARNING,
                    severity=InsightSeverity.HIGH if forecast.runway_months < 6 else InsightSeverity.MEDIUM,
                    title=f"Runway: {forecast.runway_months:.0f} months",
                    description=(
                        f"Based on current burn rate trends, runway is "
                        f"{forecast.runway_months:.0f} months (p50 estimate)"
                    ),
                    confidence=attribution.confidence if attribution else 0.7,
                    data_points={
                        "p10": forecast.runway_confidence_interval.p10,
                        "p50": forecast.runway_confidence_interval.p50,
                        "p90": forecast.runway_confidence_interval.p90,
                    },
                    source="ForecastModel",
                ))
            for risk in forecast.key_risks:
                insights.append(ProprietaryInsight(
                    type=InsightType.RISK,
                    severity=InsightSeverity.MEDIUM,
                    title="Forecast Risk",
                    description=risk,
                    confidence=0.75,
                    source="ForecastModel",
                ))

        if analysis.results.benchmarks is not None:
            for improvement in analysis.results.benchmarks.improvements:
                insights.append(ProprietaryInsight(
                    type=InsightType.OPPORTUNITY,
                    severity=InsightSeverity.LOW,
                    title="Benchmark Gap",
                    description=improvement,
                    confidence=0.7,
                    source="BenchmarkCatalogue",
                ))

        insights.sort(key=lambda i: (INSIGHT_SEVERITY_RANK[i.severity], i.confidence), reverse=True)
        limit = self.config.get("max_insights", MAX_INSIGHTS)
        return InsightReport(insights=insights[:limit], confidence=analysis.overall_confidence)

    def summarize(self, organization_id: str, audience: str = "founder", translate: bool = False,
                  current_cash: Optional[float] = None, as_of: Optional[date] = None) -> ProprietaryAnalysisResult:
        """
        Full analysis plus its sanitized prompt, optionally translated by the LLM.

        The prompt is attached as natural_language_summary unless translate
        is set, in which case the translator's text replaces it.
        """
        analysis = self.run_full_analysis(organization_id, current_cash, as_of)
        prompt = build_llm_summary_prompt(analysis, audience)
        summary = translate_summary(prompt) if translate else prompt
        return analysis.model_copy(update={"natural_language_summary": summary})
