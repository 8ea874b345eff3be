"""Tests for the per-organization spending anomaly model"""

import pytest
from datetime import date, timedelta

from src.constants import AnomalyType, SEVERITY_RANK, Severity, THRESHOLD_BOUNDS
from src.ml.anomaly_model import day_of_week, format_currency, learn_thresholds, vendor_key
from src.ml.registry import ModelRegistry
from src.models.anomaly import StatisticalBaseline

TRAIN_END = date(2025, 5, 31)
DETECT_END = date(2025, 6, 30)


def test_insufficient_transactions_leaves_model_untrained(registry, add_txn, org_id):
    """Fewer than 30 debits is a failed outcome, not an exception"""
    for offset in range(29):
        add_txn(TRAIN_END - timedelta(days=offset), -100.0, vendor="Office Supplies Co")

    model = registry.anomaly(org_id)
    outcome = model.train(as_of=TRAIN_END)

    assert outcome.success is False
    assert outcome.example_count == 29
    assert "need 30" in outcome.message
    assert model.is_trained is False
    assert model.detect_all_anomalies(as_of=TRAIN_END) == []


def test_credits_do_not_count_towards_training(registry, add_txn, org_id):
    for offset in range(40):
        add_txn(TRAIN_END - timedelta(days=offset), 500.0, vendor="STRIPE PAYOUT")

    outcome = registry.anomaly(org_id).train(as_of=TRAIN_END)
    assert outcome.success is False
    assert outcome.example_count == 0


def test_daily_baseline_needs_seven_days(registry, add_txn, org_id):
    """A daily baseline over fewer than 7 days never fires"""
    for offset in range(5):
        for _ in range(6):
            add_txn(TRAIN_END - timedelta(days=offset), -100.0, vendor="Office Supplies Co")

    model = registry.anomaly(org_id)
    assert model.train(as_of=TRAIN_END).success is True
    assert model.model.daily.sample_size == 5

    assert model.detect_daily_anomaly(1_000_000.0, TRAIN_END) is None


def test_constant_vendor_never_flags(registry, aws_spike_ledger, org_id):
    """Zero spread gives z = 0, whatever the amount"""
    model = registry.anomaly(org_id)
    model.train(as_of=TRAIN_END)

    assert model.model.vendor_patterns["Office Supplies Co"].std_dev == 0
    assert model.detect_vendor_anomaly("Office Supplies Co", 99_999.0) is None


def test_thresholds_are_clamped():
    """Very noisy daily spend still lands inside the bounds"""
    noisy = StatisticalBaseline(mean=100, std_dev=1000, median=50, q1=40, q3=50, iqr=10, sample_size=60)
    thresholds = learn_thresholds(noisy, {}, {})

    low, high = THRESHOLD_BOUNDS["daily_z_score"]
    assert thresholds.daily_z_score == high
    assert low <= thresholds.daily_z_score <= high
    # too few categories / vendors to learn from: defaults
    assert thresholds.category_z_score == 2.0
    assert thresholds.vendor_z_score == 3.0


def test_thresholds_default_for_short_history():
    short = StatisticalBaseline(mean=100, std_dev=50, sample_size=10)
    thresholds = learn_thresholds(short, {}, {})
    assert thresholds.daily_z_score == 2.5


def test_noisy_organization_hits_threshold_ceilings(registry, add_txn, org_id):
    """One large charge per vendor against many small ones pushes every learned threshold to its ceiling"""
    for i in range(5):
        vendor, category = f"Vendor {i}", f"CAT-{i}"
        add_txn(date(2025, 1, 10), -10_000.0, vendor=vendor, category_id=category)
        for day in range(1, 8):
            add_txn(date(2025, 3, day), -10.0, vendor=vendor, category_id=category)
            add_txn(date(2025, 5, day), -10.0, vendor=vendor, category_id=category)

    model = registry.anomaly(org_id)
    outcome = model.train(days_back=300, as_of=TRAIN_END)

    assert outcome.success is True
    assert outcome.details == {"category_count": 5, "vendor_count": 5}
    thresholds = model.model.thresholds
    assert thresholds.daily_z_score == THRESHOLD_BOUNDS["daily_z_score"][1]
    assert thresholds.category_z_score == THRESHOLD_BOUNDS["category_z_score"][1]
    assert thresholds.vendor_z_score == THRESHOLD_BOUNDS["vendor_z_score"][1]


def test_flat_organization_keeps_default_thresholds(registry, add_txn, org_id):
    """Identical charges every month leave no dispersion to learn from"""
    for i in range(5):
        vendor, category = f"Vendor {i}", f"CAT-{i}"
        for month in range(1, 6):
            for day in range(1, 4):
                add_txn(date(2025, month, day), -100.0, vendor=vendor, category_id=category)

    model = registry.anomaly(org_id)
    outcome = model.train(days_back=150, as_of=TRAIN_END)

    assert outcome.success is True
    assert model.model.daily.std_dev == 0
    thresholds = model.model.thresholds
    assert thresholds.daily_z_score == pytest.approx(2.5)
    assert thresholds.category_z_score == pytest.approx(2.0)
    assert thresholds.vendor_z_score == pytest.approx(3.0)
    for name, (low, high) in THRESHOLD_BOUNDS.items():
        assert low <= getattr(thresholds, name) <= high


def test_failed_retrain_keeps_model(store, registry, aws_spike_ledger, org_id):
    """A retrain over too short a window leaves the previous model and its stored revision alone"""
    model = registry.anomaly(org_id)
    assert model.train(as_of=TRAIN_END).success is True
    before = model.model.model_dump()
    revision = store.get(org_id, "anomalyModel").revision

    outcome = model.train(as_of=date(2024, 12, 20))

    assert outcome.success is False
    assert outcome.example_count < 30
    assert model.model.model_dump() == before
    assert store.get(org_id, "anomalyModel").revision == revision


def test_zero_day_window_is_not_the_default(registry, aws_spike_ledger, org_id):
    outcome = registry.anomaly(org_id).train(days_back=0, as_of=TRAIN_END)

    assert outcome.success is False
    assert outcome.example_count == 1


def test_zero_day_detection_window(registry, aws_spike_ledger, org_id):
    """Only the as_of day is scanned; the mid-month AWS charge falls outside"""
    model = registry.anomaly(org_id)
    model.train(as_of=TRAIN_END)

    anomalies = model.detect_all_anomalies(days_back=0, as_of=DETECT_END)

    assert not any(a.anomaly_type == AnomalyType.VENDOR_ANOMALY and a.vendor_key == "AWS" for a in anomalies)


def _ramp_org(add_txn, organization_id, amounts):
    day = date(2024, 12, 2)
    while day <= TRAIN_END:
        add_txn(day, -150.0, vendor="Office Supplies Co", category_id="OPEX-GA", organization_id=organization_id)
        day += timedelta(days=1)
    months = [date(2024, 12, 10)] + [date(2025, m, 10) for m in range(1, 6)]
    for day, amount in zip(months, amounts):
        add_txn(day, -amount, vendor="Google Ads", category_id="OPEX-MKTG", organization_id=organization_id)


def test_category_trend_follows_ramp(registry, add_txn):
    """An increasing monthly series trends up, a decreasing one down"""
    _ramp_org(add_txn, "org_growing", [1000, 2000, 3000, 4000, 5000, 6000])
    _ramp_org(add_txn, "org_shrinking", [6000, 5000, 4000, 3000, 2000, 1000])

    growing = registry.anomaly("org_growing")
    shrinking = registry.anomaly("org_shrinking")
    assert growing.train(as_of=TRAIN_END).success
    assert shrinking.train(as_of=TRAIN_END).success

    assert growing.model.category_patterns["OPEX-MKTG"].trend > 0
    assert shrinking.model.category_patterns["OPEX-MKTG"].trend < 0
    assert abs(growing.model.category_patterns["OPEX-GA"].trend) < 0.05


def test_aws_category_spike(registry, aws_spike_ledger, org_id):
    """
    AWS goes from $8,340 to $10,260 in the latest month: exactly one
    category spike for hosting, at least medium severity.
    """
    model = registry.anomaly(org_id)
    assert model.train(as_of=TRAIN_END).success

    anomalies = model.detect_all_anomalies(as_of=DETECT_END)
    spikes = [a for a in anomalies if a.anomaly_type == AnomalyType.CATEGORY_SPIKE]

    assert len(spikes) == 1
    spike = spikes[0]
    assert spike.category_id == "COGS-HOST"
    assert spike.value == 10260.0
    assert spike.score > 0
    assert SEVERITY_RANK[spike.severity] >= SEVERITY_RANK[Severity.MEDIUM]
    assert spike.expected_range.max < 10260.0
    assert "COGS-HOST" in spike.description


def test_anomalies_sorted_by_severity(registry, aws_spike_ledger, org_id):
    model = registry.anomaly(org_id)
    model.train(as_of=TRAIN_END)
    anomalies = model.detect_all_anomalies(as_of=DETECT_END)

    assert any(a.anomaly_type == AnomalyType.VENDOR_ANOMALY and a.vendor_key == "AWS" for a in anomalies)
    keys = [(SEVERITY_RANK[a.severity], abs(a.score)) for a in anomalies]
    assert keys == sorted(keys, reverse=True)


def test_persisted_model_detects_identically(ledger, store, aws_spike_ledger, org_id):
    """A reloaded model produces the same anomalies, in the same order"""
    first_registry = ModelRegistry(ledger, store)
    model = first_registry.anomaly(org_id)
    model.train(as_of=TRAIN_END)
    expected = [a.model_dump() for a in model.detect_all_anomalies(as_of=DETECT_END)]

    reloaded = ModelRegistry(ledger, store).anomaly(org_id)
    assert reloaded is not model
    assert reloaded.is_trained
    assert reloaded.version == model.version

    actual = [a.model_dump() for a in reloaded.detect_all_anomalies(as_of=DETECT_END)]
    assert actual == expected
    assert len(actual) > 0


def test_stats_and_patterns(registry, aws_spike_ledger, org_id):
    model = registry.anomaly(org_id)
    assert model.get_stats()["is_trained"] is False

    model.train(as_of=TRAIN_END)
    stats = model.get_stats()
    assert stats["is_trained"] is True
    assert stats["category_count"] == 2
    assert stats["vendor_count"] == 2

    patterns = model.get_patterns()
    assert patterns["top_categories"][0]["category"] == "COGS-HOST"
    assert len(patterns["seasonal_indices"]) == 12
    assert len(patterns["day_of_week"]) == 7


def test_helpers():
    assert format_currency(1_200_000) == "$1.2M"
    assert format_currency(8340) == "$8.3K"
    assert format_currency(950) == "$950"
    assert vendor_key("", "AWS", "AMAZON WEB SERVICES") == "AWS"
    assert vendor_key("", "", "") == "unknown"
    assert day_of_week(date(2025, 6, 15)) == 0  # Sunday


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
