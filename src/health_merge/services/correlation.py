"""
Correlation service for measuring agreement between two sources.

Given the dates on which both sources reported a value, computes Pearson and
Spearman correlation, intraclass correlation (ICC), Lin's concordance
correlation coefficient (CCC), error terms, a Fisher-z confidence interval
and a two-tailed p-value for Pearson r.

Statistics that are undefined for the input (too few points, a constant
vector) come back as None, never NaN or infinity.
"""

import logging
import math
from collections.abc import Sequence

import numpy as np
from scipy import stats as sp_stats

from health_merge.domain.merge import CorrelationResult, CorrelationStrength

logger = logging.getLogger(__name__)

DEFAULT_MIN_DATA_POINTS = 10
Z_CRITICAL_95 = 1.96


def _finite_or_none(value: float | None) -> float | None:
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def _is_constant(values: np.ndarray) -> bool:
    # exact comparison; mean-based variance can be non-zero for constant floats
    return bool(values.size == 0 or np.max(values) == np.min(values))


def _clamp(value: float, low: float = -1.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def pearson(a: np.ndarray, b: np.ndarray) -> float | None:
    """Pearson product-moment correlation, or None if undefined."""
    if a.size < 2 or _is_constant(a) or _is_constant(b):
        return None

    da = a - a.mean()
    db = b - b.mean()
    denominator = math.sqrt(float(np.dot(da, da)) * float(np.dot(db, db)))
    if denominator == 0:
        return None

    r = _finite_or_none(float(np.dot(da, db)) / denominator)
    return _clamp(r) if r is not None else None


def spearman(a: np.ndarray, b: np.ndarray) -> float | None:
    """Spearman rank correlation; ties get the average rank of their group."""
    if a.size < 2 or _is_constant(a) or _is_constant(b):
        return None
    return pearson(
        sp_stats.rankdata(a, method="average"),
        sp_stats.rankdata(b, method="average"),
    )


def intraclass_correlation(a: np.ndarray, b: np.ndarray) -> float | None:
    """
    Intraclass correlation from a one-way ANOVA over dates.

    Each date is a subject measured once by each of the k = 2 sources:
    ``(MS_between - MS_within) / (MS_between + (k - 1) * MS_within)``.
    """
    n = a.size
    k = 2
    if n < 2 or _is_constant(a) or _is_constant(b):
        return None

    row_means = (a + b) / k
    grand_mean = row_means.mean()

    ms_between = k * float(np.sum((row_means - grand_mean) ** 2)) / (n - 1)
    ms_within = float(np.sum((a - row_means) ** 2 + (b - row_means) ** 2)) / (n * (k - 1))

    denominator = ms_between + (k - 1) * ms_within
    if denominator == 0:
        return None

    return _finite_or_none((ms_between - ms_within) / denominator)


def concordance_correlation(a: np.ndarray, b: np.ndarray) -> float | None:
    """Lin's concordance correlation coefficient, or None if undefined."""
    if a.size < 2 or _is_constant(a) or _is_constant(b):
        return None

    mean_a = a.mean()
    mean_b = b.mean()
    var_a = float(np.mean((a - mean_a) ** 2))
    var_b = float(np.mean((b - mean_b) ** 2))
    covariance = float(np.mean((a - mean_a) * (b - mean_b)))

    denominator = var_a + var_b + float(mean_a - mean_b) ** 2
    if denominator == 0:
        return None

    return _finite_or_none(2 * covariance / denominator)


def fisher_confidence_interval(
    r: float | None, n: int, z_critical: float = Z_CRITICAL_95
) -> tuple[float | None, float | None]:
    """
    Confidence interval for Pearson r via the Fisher z-transform.

    Returns:
        (lower, upper), both None when r is None or n < 4.
    """
    if r is None or n < 4:
        return None, None

    if abs(r) >= 1:
        return r, r

    z = math.atanh(r)
    se = 1 / math.sqrt(n - 3)
    lower = math.tanh(z - z_critical * se)
    upper = math.tanh(z + z_critical * se)

    return _clamp(lower), _clamp(upper)


def pearson_p_value(r: float | None, n: int) -> float | None:
    """Two-tailed p-value for Pearson r using a t-test with n - 2 degrees of freedom."""
    if r is None or n < 3:
        return None

    if abs(r) >= 1:
        return 0.0

    t = r * math.sqrt(n - 2) / math.sqrt(1 - r * r)
    return _finite_or_none(2 * sp_stats.t.sf(abs(t), df=n - 2))


def classify_strength(r: float | None) -> CorrelationStrength | None:
    """Classify the absolute value of a correlation coefficient."""
    if r is None:
        return None

    magnitude = abs(r)
    if magnitude >= 0.7:
        return CorrelationStrength.STRONG
    if magnitude >= 0.3:
        return CorrelationStrength.MODERATE
    if magnitude >= 0.1:
        return CorrelationStrength.WEAK
    return CorrelationStrength.NONE


class CorrelationEngine:
    """
    Computes agreement statistics for one ordered source pair.

    Stateless; safe to share between threads.
    """

    def __init__(self, min_data_points: int = DEFAULT_MIN_DATA_POINTS) -> None:
        """
        Initialize correlation engine.

        Args:
            min_data_points: Default minimum number of paired points.
        """
        self.min_data_points = min_data_points

    def correlate(
        self,
        paired_series: Sequence[tuple[float, float]],
        merge_group: str = "",
        source_a: str = "a",
        source_b: str = "b",
        min_data_points: int | None = None,
    ) -> CorrelationResult:
        """
        Compute agreement statistics over a paired series.

        Args:
            paired_series: (a, b) values for each date on which both sources reported.
            merge_group: Merge group slug recorded on the result.
            source_a: Identifier of the first source.
            source_b: Identifier of the second source.
            min_data_points: Minimum paired points; falls back to the engine default.

        Returns:
            Correlation result. All statistics are None when ``n`` is below the minimum.
        """
        minimum = min_data_points if min_data_points is not None else self.min_data_points
        n = len(paired_series)

        result = CorrelationResult(
            merge_group=merge_group,
            source_a=source_a,
            source_b=source_b,
            n=n,
            min_data_points=minimum,
        )

        if n < minimum or n == 0:
            logger.debug(
                f"Insufficient data for {merge_group} {source_a}/{source_b}: "
                f"{n} of {minimum} paired points"
            )
            return result

        values = np.asarray(paired_series, dtype=float).reshape(n, 2)
        a = values[:, 0]
        b = values[:, 1]
        diff = a - b

        r = pearson(a, b)
        lower, upper = fisher_confidence_interval(r, n)
        strength = classify_strength(r)

        return result.model_copy(
            update={
                "pearson": r,
                "spearman": spearman(a, b),
                "icc": intraclass_correlation(a, b),
                "ccc": concordance_correlation(a, b),
                "mae": _finite_or_none(np.mean(np.abs(diff))),
                "rmse": _finite_or_none(math.sqrt(float(np.mean(diff**2)))),
                "mean_bias": _finite_or_none(np.mean(diff)),
                "confidence_interval_lower": lower,
                "confidence_interval_upper": upper,
                "p_value": pearson_p_value(r, n),
                "strength": strength.value if strength is not None else None,
                "direction": None if r is None else ("positive" if r >= 0 else "negative"),
            }
        )

    def lag_correlation(
        self, paired_series: Sequence[tuple[float, float]], max_lag: int = 7
    ) -> list[dict[str, float | int | None]]:
        """
        Correlate source A against source B shifted forward by 0..max_lag steps.

        Args:
            paired_series: Date-ordered (a, b) pairs.
            max_lag: Largest shift to evaluate.

        Returns:
            List of {"lag": int, "correlation": float | None}; lags leaving fewer
            than 3 points are omitted.
        """
        values = np.asarray(paired_series, dtype=float).reshape(len(paired_series), 2)
        n = len(values)
        results: list[dict[str, float | int | None]] = []

        for lag in range(max_lag + 1):
            if n - lag < 3:
                break
            a = values[: n - lag, 0]
            b = values[lag:, 1]
            results.append({"lag": lag, "correlation": pearson(a, b)})

        return results

    @staticmethod
    def interpret(result: CorrelationResult) -> str:
        """Describe a correlation result in one sentence."""
        if result.insufficient_data:
            return (
                f"Not enough paired data yet ({result.n} of "
                f"{result.min_data_points} required)."
            )

        if result.pearson is None:
            return (
                f"Correlation is undefined because one source did not vary "
                f"across {result.n} data points."
            )

        r = round(result.pearson, 3)
        if result.strength == CorrelationStrength.NONE.value:
            return f"No meaningful correlation found (r = {r}) with {result.n} data points."

        return (
            f"{str(result.strength).capitalize()} {result.direction} correlation "
            f"(r = {r}) found with {result.n} data points."
        )
