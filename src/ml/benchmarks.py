"""Industry benchmark comparison.

Benchmark tables (p10..p90 per metric per business type) come from the
`benchmarks` config section and can be rebuilt from anonymized cross-org
values with build_benchmark(). Organization metrics are derived from the
ledger.
"""

from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from src.constants import BenchmarkStatus
from src.models.benchmark import IndustryBenchmark
from src.models.insight import BenchmarkComparison
from src.tools.ledger_client import LedgerClient
from src.utils.logging import get_logger

logger = get_logger(__name__)

MIN_BENCHMARK_SAMPLE = 5
METRICS_WINDOW_MONTHS = 3


def calculate_percentile(value: float, benchmark: IndustryBenchmark) -> float:
    """
    Place a value on the benchmark distribution by linear interpolation
    between its p10/p25/p50/p75/p90 points.

    Returns:
        Percentile in [0, 100]; 50 when the table is empty
    """
    b = benchmark
    if not np.isfinite(value):
        return 50.0
    if b.p10 == 0 and b.p25 == 0 and b.p50 == 0:
        return 50.0

    if value <= b.p10:
        return 10 * value / b.p10 if b.p10 > 0 else 0.0

    points = [(b.p10, 10), (b.p25, 25), (b.p50, 50), (b.p75, 75), (b.p90, 90)]
    for (low, low_pct), (high, high_pct) in zip(points, points[1:]):
        if value <= high:
            span = high - low
            return low_pct + (high_pct - low_pct) * (value - low) / span if span > 0 else float(low_pct)

    extra = b.p90 * 0.5 if b.p90 > 0 else 1.0
    return 90 + 10 * min(1.0, (value - b.p90) / extra)


def benchmark_status(percentile: float) -> BenchmarkStatus:
    if percentile < 25:
        return BenchmarkStatus.BELOW_AVERAGE
    if percentile < 75:
        return BenchmarkStatus.AVERAGE
    if percentile < 90:
        return BenchmarkStatus.ABOVE_AVERAGE
    return BenchmarkStatus.TOP_PERFORMER


def build_benchmark(metric_name: str, values: Sequence[float],
                    min_sample: int = MIN_BENCHMARK_SAMPLE) -> Optional[IndustryBenchmark]:
    """
    Aggregate anonymized per-organization values into a benchmark row.

    Returns:
        IndustryBenchmark, or None with fewer than min_sample values
    """
    if len(values) < min_sample:
        return None
    data = np.asarray(values, dtype=float)
    p10, p25, p50, p75, p90 = np.percentile(data, [10, 25, 50, 75, 90])
    return IndustryBenchmark(
        metric_name=metric_name,
        p10=float(p10),
        p25=float(p25),
        p50=float(p50),
        p75=float(p75),
        p90=float(p90),
        mean=float(data.mean()),
        std_dev=float(data.std()) if len(data) >= 2 else 0.0,
        sample_size=len(data),
    )


def organization_metrics(ledger: LedgerClient, organization_id: str, current_cash: float,
                         as_of: Optional[date] = None,
                         months: int = METRICS_WINDOW_MONTHS) -> Dict[str, float]:
    """
    Benchmarkable metrics over the last few full months.

    burn_rate is the mean monthly net outflow, monthly_revenue the mean
    monthly inflow. runway_months is only present while the organization
    is burning cash.
    """
    as_of = as_of or date.today()
    end = pd.Period(pd.Timestamp(as_of), freq='M') - 1
    start = end - (months - 1)
    frame = ledger.get_transactions(
        organization_id, since=start.start_time.date(), until=end.end_time.date()
    )

    window = pd.period_range(start, end, freq='M')
    period_key = frame['date'].dt.to_period('M')
    inflows = frame['amount'].clip(lower=0).groupby(period_key).sum().reindex(window, fill_value=0.0)
    outflows = (-frame['amount']).clip(lower=0).groupby(period_key).sum().reindex(window, fill_value=0.0)

    burn_rate = float((outflows - inflows).clip(lower=0).mean())
    metrics = {"burn_rate": burn_rate, "monthly_revenue": float(inflows.mean())}
    if burn_rate > 0:
        metrics["runway_months"] = current_cash / burn_rate
    return metrics


class BenchmarkCatalogue:
    """Benchmark tables per business type"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self._tables: Dict[str, Dict[str, IndustryBenchmark]] = {}
        for business_type, metrics in (config or {}).items():
            for metric_name, row in (metrics or {}).items():
                self.set(business_type, IndustryBenchmark(metric_name=metric_name, **row))

    def set(self, business_type: str, benchmark: IndustryBenchmark) -> None:
        self._tables.setdefault(business_type, {})[benchmark.metric_name] = benchmark

    def benchmarks_for(self, business_type: str) -> List[IndustryBenchmark]:
        return list(self._tables.get(business_type, {}).values())

    def update(self, business_type: str, metric_values: Dict[str, Sequence[float]]) -> int:
        """
        Rebuild tables from cross-org samples; metrics with too few samples are skipped.

        Returns:
            Number of benchmarks updated
        """
        updated = 0
        for metric_name, values in metric_values.items():
            benchmark = build_benchmark(metric_name, values)
            if benchmark is None:
                continue
            self.set(business_type, benchmark)
            updated += 1
        logger.info("Updated industry benchmarks", business_type=business_type, updated=updated)
        return updated

    def compare(self, business_type: str, metrics: Dict[str, float]) -> List[BenchmarkComparison]:
        """Compare metrics against the vertical's tables; metrics with no table are skipped."""
        table = self._tables.get(business_type, {})
        comparisons = []
        for metric_name, value in metrics.items():
            benchmark = table.get(metric_name)
            if benchmark is None:
                continue
            pct = calculate_percentile(value, benchmark)
            comparisons.append(BenchmarkComparison(
                metric=metric_name,
                value=value,
                percentile=round(pct),
                industry_median=benchmark.p50,
                status=benchmark_status(pct),
            ))
        return comparisons
