"""Per-organization spending anomaly model.

Learns daily / day-of-week / weekly / monthly / category / vendor baselines
from debit transactions and flags recent aggregates whose z-score exceeds a
threshold learned from the organization's own dispersion.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from src.constants import (
    AnomalyType,
    ModelName,
    SEVERITY_RANK,
    DEFAULT_ANOMALY_TRAIN_DAYS,
    DEFAULT_ANOMALY_DETECT_DAYS,
    MIN_ANOMALY_TRAINING_TRANSACTIONS,
    MIN_DAILY_SAMPLES,
    MIN_DAY_OF_WEEK_SAMPLES,
    MIN_CATEGORY_SAMPLES,
    MIN_VENDOR_TRANSACTIONS,
    MIN_CATEGORY_NONZERO_MONTHS,
    DAY_OF_WEEK_Z_THRESHOLD,
    CATEGORY_TREND_NOTE_THRESHOLD,
    DEFAULT_THRESHOLDS,
    THRESHOLD_BOUNDS,
)
from src.ml.base import OrganizationModel
from src.ml.stat_baseline import (
    clamp,
    coefficient_of_variation,
    compute_statistics,
    severity_from_z,
    trend,
    z_score,
)
from src.ml.versioning import next_version
from src.models.anomaly import (
    AnomalyThresholds,
    CategoryPattern,
    ExpectedRange,
    SpendingAnomaly,
    StatisticalBaseline,
    TrainedAnomalyModel,
    VendorPattern,
)
from src.models.training import TrainOutcome
from src.utils.logging import get_logger
from src.utils.metrics import anomalies_detected

logger = get_logger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
UNCATEGORIZED = "uncategorized"
UNKNOWN_VENDOR = "unknown"


def format_currency(value: float) -> str:
    """$1.2M / $8.3K / $950"""
    if abs(value) >= 1_000_000:
        return f"${value / 1_000_000:.1f}M"
    if abs(value) >= 1000:
        return f"${value / 1000:.1f}K"
    return f"${value:.0f}"


def vendor_key(vendor_id: str, vendor_normalized: str, vendor: str) -> str:
    """Stable vendor identity: explicit id, then normalized name, then raw text."""
    return vendor_id or vendor_normalized or (vendor or "")[:30] or UNKNOWN_VENDOR


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday"""
    return (day.weekday() + 1) % 7


def _debits(frame: pd.DataFrame) -> pd.DataFrame:
    """Expense rows with absolute 'spend', calendar keys, category and vendor key."""
    debits = frame[frame['amount'] < 0].copy()
    debits['spend'] = debits['amount'].abs()
    debits['day'] = debits['date'].dt.normalize()
    debits['month'] = debits['date'].dt.strftime('%Y-%m')
    debits['week'] = debits['date'].dt.strftime('%G-W%V')
    debits['category'] = debits['category_id'].fillna('').replace('', UNCATEGORIZED)
    identity = debits[['vendor_id', 'vendor_normalized', 'vendor']].fillna('')
    debits['vendor_key'] = [vendor_key(*row) for row in identity.itertuples(index=False)]
    return debits


def _months_between(start: date, end: date) -> List[str]:
    return [p.strftime('%Y-%m') for p in pd.period_range(pd.Timestamp(start), pd.Timestamp(end), freq='M')]


def _weeks_between(start: date, end: date) -> List[str]:
    days = pd.date_range(pd.Timestamp(start), pd.Timestamp(end), freq='D')
    return list(dict.fromkeys(days.strftime('%G-W%V')))


def learn_thresholds(daily: StatisticalBaseline,
                     category_patterns: Dict[str, CategoryPattern],
                     vendor_patterns: Dict[str, VendorPattern]) -> AnomalyThresholds:
    """
    Nudge each default z threshold by the dispersion of its aggregate.

    Noisier organizations get more lenient thresholds. Every value is clamped
    to THRESHOLD_BOUNDS whether or not it moved.

    Args:
        daily: Daily spend baseline
        category_patterns: Materialized category patterns
        vendor_patterns: Materialized vendor patterns

    Returns:
        AnomalyThresholds
    """
    values = dict(DEFAULT_THRESHOLDS)

    if daily.sample_size >= 14 and daily.std_dev > 0:
        daily_cv = coefficient_of_variation(daily)
        iqr_multiplier = daily.std_dev / daily.iqr if daily.iqr > 0 else 1
        values['daily_z_score'] = 2.5 + daily_cv * 0.5 + (iqr_multiplier - 1) * 0.3

    if len(category_patterns) >= 3:
        category_cvs = [coefficient_of_variation(p.monthly) for p in category_patterns.values()]
        values['category_z_score'] = 2.0 + float(np.mean(category_cvs)) * 0.4

    if len(vendor_patterns) >= 5:
        vendor_cvs = [
            p.std_dev / p.avg_transaction for p in vendor_patterns.values() if p.avg_transaction > 0
        ]
        if vendor_cvs:
            values['vendor_z_score'] = 3.0 + float(np.mean(vendor_cvs)) * 0.5

    return AnomalyThresholds(**{
        name: clamp(value, *THRESHOLD_BOUNDS[name]) for name, value in values.items()
    })


class AnomalyModel(OrganizationModel):
    """Spending baselines and anomaly detection for one organization"""

    model_name = ModelName.ANOMALY_MODEL
    payload_type = TrainedAnomalyModel

    model: Optional[TrainedAnomalyModel]

    def train(self, days_back: Optional[int] = None, as_of: Optional[date] = None) -> TrainOutcome:
        """
        Rebuild every baseline from the last days_back days of debits.

        Args:
            days_back: Training window in days (default 180)
            as_of: Window end date (default today)

        Returns:
            TrainOutcome; success=False leaves the current model untouched
        """
        if days_back is None:
            days_back = self.config.get("train_days", DEFAULT_ANOMALY_TRAIN_DAYS)
        as_of = as_of or date.today()
        cutoff = as_of - timedelta(days=days_back)
        min_transactions = self.config.get("min_training_transactions", MIN_ANOMALY_TRAINING_TRANSACTIONS)

        logger.info("Training anomaly model", organization_id=self.organization_id, days_back=days_back)

        frame = self.ledger.get_transactions(self.organization_id, since=cutoff, until=as_of)
        debits = _debits(frame)
        if len(debits) < min_transactions:
            logger.warning(
                "Insufficient data to train anomaly model",
                organization_id=self.organization_id,
                transaction_count=len(debits),
                required=min_transactions,
            )
            return TrainOutcome(
                success=False,
                example_count=len(debits),
                message=f"Insufficient data: {len(debits)} transactions (need {min_transactions})",
            )

        daily = compute_statistics(debits.groupby('day')['spend'].sum().tolist())
        weekly = compute_statistics(debits.groupby('week')['spend'].sum().tolist())
        monthly = compute_statistics(debits.groupby('month')['spend'].sum().tolist())

        # Per-transaction amounts by weekday
        weekday = debits['date'].dt.dayofweek.add(1).mod(7)
        dow_baselines = {
            d: compute_statistics(debits.loc[weekday == d, 'spend'].tolist()) for d in range(7)
        }

        category_patterns = self._category_patterns(debits, cutoff, as_of)
        vendor_patterns = self._vendor_patterns(debits, days_back)
        seasonal_indices = self._seasonal_indices(debits, monthly)
        thresholds = learn_thresholds(daily, category_patterns, vendor_patterns)

        self.model = TrainedAnomalyModel(
            version=next_version(),
            trained_at=datetime.now(),
            organization_id=self.organization_id,
            training_days=days_back,
            transaction_count=len(debits),
            daily=daily,
            weekly=weekly,
            monthly=monthly,
            day_of_week=dow_baselines,
            category_patterns=category_patterns,
            vendor_patterns=vendor_patterns,
            seasonal_indices=seasonal_indices,
            thresholds=thresholds,
        )
        self._persist()

        logger.info(
            "Trained anomaly model",
            organization_id=self.organization_id,
            transaction_count=len(debits),
            category_count=len(category_patterns),
            vendor_count=len(vendor_patterns),
            thresholds=thresholds.model_dump(),
        )
        return TrainOutcome(
            success=True,
            example_count=len(debits),
            message="Anomaly model trained",
            details={
                "category_count": len(category_patterns),
                "vendor_count": len(vendor_patterns),
            },
        )

    def _category_patterns(self, debits: pd.DataFrame, start: date, end: date) -> Dict[str, CategoryPattern]:
        # Zero-filled so a category that stopped spending still trends down
        all_months = _months_between(start, end)
        all_weeks = _weeks_between(start, end)
        monthly_sums = debits.groupby(['category', 'month'])['spend'].sum()
        weekly_sums = debits.groupby(['category', 'week'])['spend'].sum()

        patterns: Dict[str, CategoryPattern] = {}
        for category in debits['category'].unique():
            monthly_values = monthly_sums.loc[category].reindex(all_months, fill_value=0.0).tolist()
            if sum(1 for v in monthly_values if v > 0) < MIN_CATEGORY_NONZERO_MONTHS:
                continue
            weekly_values = weekly_sums.loc[category].reindex(all_weeks, fill_value=0.0).tolist()
            patterns[category] = CategoryPattern(
                category_id=category,
                monthly=compute_statistics(monthly_values),
                weekly=compute_statistics(weekly_values),
                trend=trend(monthly_values),
            )
        return patterns

    def _vendor_patterns(self, debits: pd.DataFrame, days_back: int) -> Dict[str, VendorPattern]:
        months_in_data = days_back / 30
        patterns: Dict[str, VendorPattern] = {}
        for key, group in debits.groupby('vendor_key', sort=False):
            if len(group) < MIN_VENDOR_TRANSACTIONS:
                continue
            stats = compute_statistics(group['spend'].tolist())
            patterns[key] = VendorPattern(
                vendor_key=key,
                avg_transaction=stats.mean,
                std_dev=stats.std_dev,
                frequency=len(group) / months_in_data,
                last_seen=group['date'].max().date(),
                transaction_count=len(group),
            )
        return patterns

    @staticmethod
    def _seasonal_indices(debits: pd.DataFrame, monthly: StatisticalBaseline) -> List[float]:
        overall = monthly.mean or 1
        by_month = debits.groupby(debits['date'].dt.month)['spend'].mean()
        return [
            float(by_month[m]) / overall if m in by_month.index else 1.0
            for m in range(1, 13)
        ]

    # -- detection -----------------------------------------------------------

    def _anomaly(self, anomaly_type: AnomalyType, z: float, value: float, mean: float,
                 std_dev: float, threshold: float, description: str, **context: Any) -> SpendingAnomaly:
        return SpendingAnomaly(
            anomaly_type=anomaly_type,
            severity=severity_from_z(abs(z)),
            score=z,
            value=value,
            expected_range=ExpectedRange(
                min=max(0.0, mean - threshold * std_dev),
                max=mean + threshold * std_dev,
            ),
            confidence=min(0.95, 0.5 + abs(z) * 0.1),
            description=description,
            **context,
        )

    def detect_daily_anomaly(self, daily_spend: float, day: date) -> Optional[SpendingAnomaly]:
        """Whole-day total against the daily baseline."""
        if self.model is None:
            return None
        baseline = self.model.daily
        if baseline.sample_size < MIN_DAILY_SAMPLES:
            return None

        z = z_score(daily_spend, baseline.mean, baseline.std_dev)
        threshold = self.model.thresholds.daily_z_score
        if abs(z) < threshold:
            return None

        direction = "above" if z > 0 else "below"
        return self._anomaly(
            AnomalyType.DAILY_SPIKE, z, daily_spend, baseline.mean, baseline.std_dev, threshold,
            f"Spending of {format_currency(daily_spend)} on {day:%b} {day.day} is {abs(z):.1f}σ "
            f"{direction} the typical {format_currency(baseline.mean)}.",
            date=day,
        )

    def detect_day_of_week_anomaly(self, daily_spend: float, day: date) -> Optional[SpendingAnomaly]:
        """Whole-day total against the baseline for that weekday."""
        if self.model is None:
            return None
        weekday = day_of_week(day)
        baseline = self.model.day_of_week.get(weekday)
        if baseline is None or baseline.sample_size < MIN_DAY_OF_WEEK_SAMPLES:
            return None

        z = z_score(daily_spend, baseline.mean, baseline.std_dev)
        if abs(z) < DAY_OF_WEEK_Z_THRESHOLD:
            return None

        direction = "higher" if z > 0 else "lower"
        return self._anomaly(
            AnomalyType.SEASONAL_DEVIATION, z, daily_spend, baseline.mean, baseline.std_dev,
            DAY_OF_WEEK_Z_THRESHOLD,
            f"{format_currency(daily_spend)} is {abs(z):.1f}σ {direction} than typical "
            f"{DAY_NAMES[weekday]} spending ({format_currency(baseline.mean)}).",
            date=day,
        )

    def detect_category_anomaly(self, category_id: str, spend: float) -> Optional[SpendingAnomaly]:
        """Category spend over the detection window against its monthly baseline."""
        if self.model is None:
            return None
        pattern = self.model.category_patterns.get(category_id)
        if pattern is None or pattern.monthly.sample_size < MIN_CATEGORY_SAMPLES or pattern.monthly.std_dev == 0:
            return None

        baseline = pattern.monthly
        z = z_score(spend, baseline.mean, baseline.std_dev)
        threshold = self.model.thresholds.category_z_score
        if abs(z) < threshold:
            return None

        direction = "above" if z > 0 else "below"
        if pattern.trend > CATEGORY_TREND_NOTE_THRESHOLD:
            trend_note = " (trending up)"
        elif pattern.trend < -CATEGORY_TREND_NOTE_THRESHOLD:
            trend_note = " (trending down)"
        else:
            trend_note = ""
        return self._anomaly(
            AnomalyType.CATEGORY_SPIKE, z, spend, baseline.mean, baseline.std_dev, threshold,
            f"{category_id}: {format_currency(spend)} this month is {abs(z):.1f}σ {direction} "
            f"the typical {format_currency(baseline.mean)}{trend_note}.",
            category_id=category_id,
        )

    def detect_vendor_anomaly(self, key: str, amount: float, day: Optional[date] = None,
                              transaction_id: Optional[str] = None) -> Optional[SpendingAnomaly]:
        """One transaction against the vendor's usual charge."""
        if self.model is None:
            return None
        pattern = self.model.vendor_patterns.get(key)
        if pattern is None:
            return None

        z = z_score(amount, pattern.avg_transaction, pattern.std_dev)
        threshold = self.model.thresholds.vendor_z_score
        if abs(z) < threshold:
            return None

        direction = "higher" if z > 0 else "lower"
        return self._anomaly(
            AnomalyType.VENDOR_ANOMALY, z, amount, pattern.avg_transaction, pattern.std_dev, threshold,
            f"{format_currency(amount)} is {abs(z):.1f}σ {direction} than typical charges from "
            f"{key} (avg: {format_currency(pattern.avg_transaction)}).",
            date=day,
            vendor_key=key,
            transaction_id=transaction_id,
        )

    def detect_all_anomalies(self, days_back: Optional[int] = None,
                             as_of: Optional[date] = None) -> List[SpendingAnomaly]:
        """
        Score recent debits against every learned baseline.

        Args:
            days_back: Detection window in days (default 30)
            as_of: Window end date (default today)

        Returns:
            Anomalies ordered by severity, then |score| descending; empty when
            no model is trained
        """
        if self.model is None:
            return []

        if days_back is None:
            days_back = self.config.get("detect_days", DEFAULT_ANOMALY_DETECT_DAYS)
        as_of = as_of or date.today()
        frame = self.ledger.get_transactions(
            self.organization_id, since=as_of - timedelta(days=days_back), until=as_of
        )
        debits = _debits(frame)
        anomalies: List[SpendingAnomaly] = []

        for row in debits.itertuples(index=False):
            found = self.detect_vendor_anomaly(
                row.vendor_key, row.spend, day=row.date.date(), transaction_id=row.txn_id
            )
            if found:
                anomalies.append(found)

        for day, spend in debits.groupby('day')['spend'].sum().items():
            day = day.date()
            daily = self.detect_daily_anomaly(spend, day)
            if daily:
                anomalies.append(daily)
                continue
            weekday = self.detect_day_of_week_anomaly(spend, day)
            if weekday:
                anomalies.append(weekday)

        for category, spend in debits.groupby('category', sort=False)['spend'].sum().items():
            found = self.detect_category_anomaly(category, spend)
            if found:
                anomalies.append(found)

        # sort is stable: ties keep emission order
        anomalies.sort(key=lambda a: (-SEVERITY_RANK[a.severity], -abs(a.score)))

        for anomaly in anomalies:
            anomalies_detected.labels(
                anomaly_type=anomaly.anomaly_type.value, severity=anomaly.severity.value
            ).inc()
        logger.info(
            "Anomaly detection complete",
            organization_id=self.organization_id,
            days_back=days_back,
            anomaly_count=len(anomalies),
        )
        return anomalies

    # -- introspection -------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        if self.model is None:
            return {
                "is_trained": False,
                "version": None,
                "trained_at": None,
                "transaction_count": 0,
                "category_count": 0,
                "vendor_count": 0,
                "thresholds": None,
            }
        return {
            "is_trained": True,
            "version": self.model.version,
            "trained_at": self.model.trained_at.isoformat(),
            "transaction_count": self.model.transaction_count,
            "category_count": len(self.model.category_patterns),
            "vendor_count": len(self.model.vendor_patterns),
            "daily_spend_mean": self.model.daily.mean,
            "daily_spend_std_dev": self.model.daily.std_dev,
            "thresholds": self.model.thresholds.model_dump(),
        }

    def get_patterns(self) -> Dict[str, Any]:
        """Learned patterns in display form."""
        if self.model is None:
            return {"day_of_week": [], "peak_days": [], "top_categories": [], "top_vendors": [],
                    "seasonal_indices": []}

        day_rows = [
            {"day": DAY_NAMES[d], "avg_spend": round(b.mean), "sample_size": b.sample_size}
            for d, b in sorted(self.model.day_of_week.items())
        ]
        peak_days = [
            row["day"] for row in sorted(day_rows, key=lambda r: r["avg_spend"], reverse=True)
            if row["sample_size"] > 0
        ][:3]

        categories = sorted(self.model.category_patterns.values(), key=lambda c: c.monthly.mean, reverse=True)
        top_categories = []
        for c in categories[:10]:
            if c.trend > CATEGORY_TREND_NOTE_THRESHOLD:
                label = "increasing"
            elif c.trend < -CATEGORY_TREND_NOTE_THRESHOLD:
                label = "decreasing"
            else:
                label = "stable"
            top_categories.append({"category": c.category_id, "avg_monthly": round(c.monthly.mean), "trend": label})

        vendors = sorted(
            self.model.vendor_patterns.values(), key=lambda v: v.avg_transaction * v.frequency, reverse=True
        )
        top_vendors = [
            {
                "vendor": v.vendor_key,
                "avg_amount": round(v.avg_transaction),
                "frequency": "weekly" if v.frequency >= 4 else "monthly" if v.frequency >= 1 else "occasional",
            }
            for v in vendors[:10]
        ]

        return {
            "day_of_week": day_rows,
            "peak_days": peak_days,
            "top_categories": top_categories,
            "top_vendors": top_vendors,
            "seasonal_indices": [
                {"month": m, "index": index} for m, index in enumerate(self.model.seasonal_indices, start=1)
            ],
        }

