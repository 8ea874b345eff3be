"""Baseline statistics used by every spending model.

Pure functions: no I/O, no state. All division-by-zero cases collapse to 0 so
callers can treat a zero score as "no signal".
"""

import math
from typing import Sequence

import numpy as np

from src.constants import Severity, SEVERITY_Z_CUTOFFS
from src.models.anomaly import StatisticalBaseline


def compute_statistics(values: Sequence[float]) -> StatisticalBaseline:
    """
    Summarize a sample.

    Population standard deviation; median averages the two middle values on
    even n; quartiles are floor-index picks from the sorted sample.

    Args:
        values: Observations (daily totals, monthly totals, ...)

    Returns:
        StatisticalBaseline (all zeros for an empty sample)
    """
    n = len(values)
    if n == 0:
        return StatisticalBaseline()

    arr = np.sort(np.asarray(values, dtype=float))
    mean = float(arr.mean())
    std_dev = float(arr.std())  # ddof=0

    mid = n // 2
    median = float((arr[mid - 1] + arr[mid]) / 2) if n % 2 == 0 else float(arr[mid])

    q1 = float(arr[int(math.floor(n * 0.25))])
    q3 = float(arr[min(int(math.floor(n * 0.75)), n - 1)])

    return StatisticalBaseline(
        mean=mean,
        std_dev=std_dev,
        median=median,
        q1=q1,
        q3=q3,
        iqr=q3 - q1,
        sample_size=n,
    )


def z_score(value: float, mean: float, std_dev: float) -> float:
    """Standard score of value; 0 when the baseline has no spread."""
    if std_dev == 0:
        return 0.0
    return (value - mean) / std_dev


def iqr_score(value: float, q1: float, q3: float, iqr: float) -> float:
    """Distance outside the interquartile box, in IQR units."""
    if iqr == 0:
        return 0.0
    if value > q3:
        return (value - q3) / iqr
    if value < q1:
        return (q1 - value) / iqr
    return 0.0


def trend(values: Sequence[float]) -> float:
    """
    Relative linear trend of a series.

    Ordinary least squares slope over the index 0..n-1, divided by the series
    mean so that the result is unit-free (0.1 = growing ~10% of the mean per
    period).

    Args:
        values: Ordered series (oldest first)

    Returns:
        Normalized slope, or 0 for fewer than 3 points or a zero mean
    """
    n = len(values)
    if n < 3:
        return 0.0

    y = np.asarray(values, dtype=float)
    x = np.arange(n, dtype=float)
    x_mean = x.mean()
    y_mean = y.mean()
    if y_mean == 0:
        return 0.0

    denominator = float(((x - x_mean) ** 2).sum())
    slope = float(((x - x_mean) * (y - y_mean)).sum()) / denominator
    return slope / y_mean


def coefficient_of_variation(baseline: StatisticalBaseline) -> float:
    """std / mean, or 0 for a zero-mean baseline."""
    if baseline.mean == 0:
        return 0.0
    return baseline.std_dev / baseline.mean


def severity_from_z(abs_z: float) -> Severity:
    """Map |z| onto a severity bucket."""
    for severity in (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM):
        if abs_z >= SEVERITY_Z_CUTOFFS[severity]:
            return severity
    return Severity.LOW


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))
