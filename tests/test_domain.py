"""Unit tests for merge domain models."""

from datetime import date

import pytest
from pydantic import ValidationError

from health_merge.domain.merge import (
    CorrelationResult,
    NormalizedObservation,
    RawObservation,
)


@pytest.mark.parametrize("bad_value", [float("nan"), float("inf"), float("-inf")])
def test_raw_observation_rejects_non_finite(bad_value: float) -> None:
    """Test that a raw observation cannot carry NaN or infinity."""
    with pytest.raises(ValidationError):
        RawObservation(source="manual", date=date(2024, 1, 1), value=bad_value)


def test_normalized_observation_rejects_non_finite() -> None:
    """Test that a normalized observation cannot carry NaN."""
    with pytest.raises(ValidationError):
        NormalizedObservation(
            source="manual",
            date=date(2024, 1, 1),
            value=float("nan"),
            original_value=70.0,
            original_unit="kg",
        )


def test_raw_observation_accepts_finite() -> None:
    """Test that ordinary values pass validation."""
    obs = RawObservation(source="manual", date=date(2024, 1, 1), value=70.5)
    if obs.value != 70.5:
        raise AssertionError(f"Expected 70.5, got {obs.value}")


def test_correlation_result_to_dict_is_json_ready() -> None:
    """Test that a correlation result serializes dates and the insufficient flag."""
    result = CorrelationResult(
        merge_group="body_weight",
        source_a="manual",
        source_b="scale_api",
        n=4,
        analysis_start_date=date(2024, 1, 1),
        analysis_end_date=date(2024, 1, 4),
    )

    data = result.to_dict()

    if data["analysis_start_date"] != "2024-01-01" or data["analysis_end_date"] != "2024-01-04":
        raise AssertionError(f"Expected ISO dates, got {data}")
    if data["insufficient_data"] is not True:
        raise AssertionError("Expected insufficient_data for 4 of 10 points")
    if not isinstance(data["computed_at"], str):
        raise AssertionError(f"Expected ISO timestamp, got {data['computed_at']!r}")
