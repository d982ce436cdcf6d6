"""Unit tests for correlation engine."""

import math

import numpy as np
from scipy import stats as sp_stats

from health_merge.domain.merge import CorrelationStrength
from health_merge.services.correlation import (
    CorrelationEngine,
    classify_strength,
    fisher_confidence_interval,
)

SCALE = [70.1, 70.4, 69.8, 70.9, 71.2, 70.0, 69.5, 70.7, 71.0, 70.3]
WEARABLE = [70.3, 70.2, 70.1, 71.3, 71.0, 70.4, 69.9, 70.6, 71.5, 70.2]


def test_perfect_agreement() -> None:
    """Test identical series give perfect agreement and zero error."""
    values = [float(v) for v in range(1, 11)]
    pairs = list(zip(values, values))

    result = CorrelationEngine().correlate(pairs, "body_weight", "a", "b")

    for name in ["pearson", "spearman", "icc", "ccc"]:
        value = getattr(result, name)
        if value is None or abs(value - 1.0) > 1e-9:
            raise AssertionError(f"Expected {name}=1.0, got {value}")

    for name in ["mae", "rmse", "mean_bias"]:
        if getattr(result, name) != 0.0:
            raise AssertionError(f"Expected {name}=0.0, got {getattr(result, name)}")


def test_known_values() -> None:
    """Test statistics against hand-computed values."""
    pairs = [(1.0, 2.0), (2.0, 4.0), (3.0, 6.0), (4.0, 8.0), (5.0, 10.0)]

    result = CorrelationEngine().correlate(pairs, min_data_points=5)

    if result.n != 5:
        raise AssertionError(f"Expected n=5, got {result.n}")
    if abs(result.pearson - 1.0) > 1e-12:
        raise AssertionError(f"Expected pearson=1.0, got {result.pearson}")
    if abs(result.spearman - 1.0) > 1e-12:
        raise AssertionError(f"Expected spearman=1.0, got {result.spearman}")
    if abs(result.ccc - 8 / 19) > 1e-12:
        raise AssertionError(f"Expected ccc=8/19, got {result.ccc}")
    if abs(result.icc - 23 / 67) > 1e-12:
        raise AssertionError(f"Expected icc=23/67, got {result.icc}")
    if abs(result.mae - 3.0) > 1e-12:
        raise AssertionError(f"Expected mae=3.0, got {result.mae}")
    if abs(result.rmse - math.sqrt(11)) > 1e-12:
        raise AssertionError(f"Expected rmse=sqrt(11), got {result.rmse}")
    if abs(result.mean_bias + 3.0) > 1e-12:
        raise AssertionError(f"Expected mean_bias=-3.0, got {result.mean_bias}")
    if result.p_value != 0.0:
        raise AssertionError(f"Expected p_value=0.0 for r=1, got {result.p_value}")


def test_matches_reference_implementations() -> None:
    """Test Pearson, Spearman and p-value against numpy and scipy."""
    pairs = list(zip(SCALE, WEARABLE))

    result = CorrelationEngine().correlate(pairs)

    expected_r = float(np.corrcoef(SCALE, WEARABLE)[0, 1])
    expected_rho = float(sp_stats.spearmanr(SCALE, WEARABLE).statistic)
    expected_p = float(sp_stats.pearsonr(SCALE, WEARABLE).pvalue)

    if abs(result.pearson - expected_r) > 1e-9:
        raise AssertionError(f"Expected pearson={expected_r}, got {result.pearson}")
    if abs(result.spearman - expected_rho) > 1e-9:
        raise AssertionError(f"Expected spearman={expected_rho}, got {result.spearman}")
    if abs(result.p_value - expected_p) > 1e-9:
        raise AssertionError(f"Expected p_value={expected_p}, got {result.p_value}")


def test_spearman_ties_use_average_rank() -> None:
    """Test Spearman with tied values."""
    pairs = [(1.0, 1.0), (2.0, 2.0), (2.0, 3.0), (3.0, 4.0)]

    result = CorrelationEngine().correlate(pairs, min_data_points=4)

    if abs(result.spearman - math.sqrt(0.9)) > 1e-12:
        raise AssertionError(f"Expected spearman=sqrt(0.9), got {result.spearman}")


def test_confidence_interval_fisher_z() -> None:
    """Test the Fisher-z confidence interval for Pearson r."""
    pairs = list(zip(SCALE, WEARABLE))

    result = CorrelationEngine().correlate(pairs)

    z = math.atanh(result.pearson)
    se = 1 / math.sqrt(len(pairs) - 3)
    lower = math.tanh(z - 1.96 * se)
    upper = math.tanh(z + 1.96 * se)

    if abs(result.confidence_interval_lower - lower) > 1e-12:
        raise AssertionError(f"Expected lower={lower}, got {result.confidence_interval_lower}")
    if abs(result.confidence_interval_upper - upper) > 1e-12:
        raise AssertionError(f"Expected upper={upper}, got {result.confidence_interval_upper}")
    if not lower <= result.pearson <= upper:
        raise AssertionError("Expected r inside its confidence interval")


def test_confidence_interval_undefined_below_four_points() -> None:
    """Test that the interval is None for n < 4."""
    if fisher_confidence_interval(0.5, 3) != (None, None):
        raise AssertionError("Expected (None, None) for n=3")
    if fisher_confidence_interval(None, 30) != (None, None):
        raise AssertionError("Expected (None, None) for undefined r")


def test_symmetry_under_swap() -> None:
    """Test which statistics are symmetric when sources are swapped."""
    engine = CorrelationEngine()
    forward = engine.correlate(list(zip(SCALE, WEARABLE)))
    backward = engine.correlate(list(zip(WEARABLE, SCALE)))

    for name in ["pearson", "spearman", "icc", "ccc", "mae", "rmse"]:
        a = getattr(forward, name)
        b = getattr(backward, name)
        if abs(a - b) > 1e-12:
            raise AssertionError(f"Expected symmetric {name}, got {a} vs {b}")

    if abs(forward.mean_bias + backward.mean_bias) > 1e-12:
        raise AssertionError("Expected mean_bias to flip sign")


def test_low_n_is_insufficient_data() -> None:
    """Test that fewer points than the minimum yields null statistics."""
    pairs = list(zip(SCALE[:5], WEARABLE[:5]))

    result = CorrelationEngine().correlate(pairs, min_data_points=10)

    if result.n != 5:
        raise AssertionError(f"Expected n=5, got {result.n}")
    if not result.insufficient_data:
        raise AssertionError("Expected insufficient_data=True")
    for name in ["pearson", "spearman", "icc", "ccc", "mae", "rmse", "mean_bias",
                 "confidence_interval_lower", "confidence_interval_upper", "p_value"]:
        if getattr(result, name) is not None:
            raise AssertionError(f"Expected {name}=None, got {getattr(result, name)}")


def test_zero_variance_nulls_correlations_only() -> None:
    """Test that a constant source nulls correlation statistics but not errors."""
    pairs = [(70.0, value) for value in WEARABLE]

    result = CorrelationEngine().correlate(pairs)

    for name in ["pearson", "spearman", "icc", "ccc"]:
        if getattr(result, name) is not None:
            raise AssertionError(f"Expected {name}=None, got {getattr(result, name)}")

    for name in ["mae", "rmse", "mean_bias"]:
        value = getattr(result, name)
        if value is None or not math.isfinite(value):
            raise AssertionError(f"Expected finite {name}, got {value}")

    if result.insufficient_data:
        raise AssertionError("Zero variance must not be reported as insufficient data")


def test_results_are_reproducible() -> None:
    """Test that repeated calls give bit-identical statistics."""
    engine = CorrelationEngine()
    pairs = list(zip(SCALE, WEARABLE))

    first = engine.correlate(pairs).to_dict()
    second = engine.correlate(pairs).to_dict()
    first.pop("computed_at")
    second.pop("computed_at")

    if first != second:
        raise AssertionError("Expected identical results for identical input")


def test_classify_strength() -> None:
    """Test strength thresholds."""
    cases = {
        0.95: CorrelationStrength.STRONG,
        -0.7: CorrelationStrength.STRONG,
        0.5: CorrelationStrength.MODERATE,
        -0.15: CorrelationStrength.WEAK,
        0.05: CorrelationStrength.NONE,
    }
    for r, expected in cases.items():
        if classify_strength(r) != expected:
            raise AssertionError(f"Expected {expected} for r={r}, got {classify_strength(r)}")

    if classify_strength(None) is not None:
        raise AssertionError("Expected None for undefined r")


def test_lag_correlation() -> None:
    """Test lag correlation skips lags that leave fewer than three points."""
    engine = CorrelationEngine()
    pairs = list(zip(SCALE, WEARABLE))

    lags = engine.lag_correlation(pairs, max_lag=7)
    if [entry["lag"] for entry in lags] != list(range(8)):
        raise AssertionError(f"Expected lags 0..7, got {lags}")

    short = engine.lag_correlation(pairs[:5], max_lag=7)
    if [entry["lag"] for entry in short] != [0, 1, 2]:
        raise AssertionError(f"Expected lags 0..2, got {short}")


def test_interpret() -> None:
    """Test human readable interpretation."""
    engine = CorrelationEngine()

    low = engine.correlate(list(zip(SCALE[:5], WEARABLE[:5])))
    if engine.interpret(low) != "Not enough paired data yet (5 of 10 required).":
        raise AssertionError(f"Unexpected interpretation: {engine.interpret(low)}")

    values = [float(v) for v in range(10)]
    perfect = engine.correlate(list(zip(values, values)))
    text = engine.interpret(perfect)
    if not text.startswith("Strong positive correlation (r = 1.0)"):
        raise AssertionError(f"Unexpected interpretation: {text}")
