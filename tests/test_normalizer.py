"""Unit tests for unit normalizer."""

from datetime import date

import pytest

from health_merge.domain.merge import RawObservation, SourceMapping
from health_merge.services.normalizer import UnitNormalizer
from health_merge.utils.exceptions import ConfigurationError


def test_normalize_applies_factor_and_offset() -> None:
    """Test linear conversion to the canonical unit."""
    mapping = SourceMapping(
        data_source="thermometer",
        source_unit="F",
        conversion_factor=5 / 9,
        conversion_offset=-160 / 9,
    )

    result = UnitNormalizer().normalize(98.6, mapping)

    if abs(result - 37.0) > 1e-9:
        raise AssertionError(f"Expected 37.0, got {result}")


def test_normalize_round_trip() -> None:
    """Test that the inverse mapping restores the original value."""
    normalizer = UnitNormalizer()
    forward = SourceMapping(
        data_source="scale", source_unit="lb", conversion_factor=0.45359237, conversion_offset=1.5
    )
    reverse = SourceMapping(
        data_source="scale",
        source_unit="kg",
        conversion_factor=1 / 0.45359237,
        conversion_offset=-1.5 / 0.45359237,
    )

    for value in [0.0, 1.0, 154.5, -12.25, 1e6]:
        restored = normalizer.normalize(normalizer.normalize(value, forward), reverse)
        if abs(restored - value) > 1e-9 * max(1.0, abs(value)):
            raise AssertionError(f"Round trip of {value} gave {restored}")


def test_normalize_zero_factor_raises() -> None:
    """Test that a zero conversion factor is a configuration error."""
    mapping = SourceMapping(data_source="broken", source_unit="kg", conversion_factor=0.0)

    with pytest.raises(ConfigurationError):
        UnitNormalizer().normalize(70.0, mapping)


def test_normalize_non_finite_offset_raises() -> None:
    """Test that a non-finite offset is a configuration error."""
    mapping = SourceMapping(
        data_source="broken", source_unit="kg", conversion_offset=float("inf")
    )

    with pytest.raises(ConfigurationError):
        UnitNormalizer().normalize(70.0, mapping)


def test_normalize_observation_keeps_lineage() -> None:
    """Test that normalized observations keep original value, unit and priority."""
    mapping = SourceMapping(
        data_source="wearable_api",
        source_unit="lb",
        conversion_factor=0.5,
        source_priority=3,
    )
    observation = RawObservation(source="wearable_api", date=date(2024, 1, 1), value=150.0)

    normalized = UnitNormalizer().normalize_observation(observation, mapping)

    if normalized.value != 75.0:
        raise AssertionError(f"Expected value=75.0, got {normalized.value}")
    if normalized.original_value != 150.0:
        raise AssertionError(f"Expected original_value=150.0, got {normalized.original_value}")
    if normalized.original_unit != "lb":
        raise AssertionError(f"Expected original_unit='lb', got {normalized.original_unit}")
    if normalized.source_priority != 3:
        raise AssertionError(f"Expected source_priority=3, got {normalized.source_priority}")
