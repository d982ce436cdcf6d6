"""
Unit normalization service.

Converts raw source values into a merge group's canonical unit using the
linear transform declared on each source mapping.
"""

import logging
import math

from health_merge.domain.merge import NormalizedObservation, RawObservation, SourceMapping
from health_merge.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class UnitNormalizer:
    """Applies ``value * conversion_factor + conversion_offset`` to raw values."""

    def validate(self, mapping: SourceMapping) -> None:
        """
        Check that a mapping describes a usable linear conversion.

        Raises:
            ConfigurationError: If the factor is zero or non-finite, or the offset
                is non-finite.
        """
        factor = mapping.conversion_factor
        offset = mapping.conversion_offset

        if not math.isfinite(factor) or factor == 0:
            raise ConfigurationError(
                f"Invalid conversion factor {factor!r} for source '{mapping.data_source}'"
            )
        if not math.isfinite(offset):
            raise ConfigurationError(
                f"Invalid conversion offset {offset!r} for source '{mapping.data_source}'"
            )

    def normalize(self, value: float, mapping: SourceMapping) -> float:
        """
        Convert a single value to the canonical unit.

        Args:
            value: Raw value in the source's native unit.
            mapping: Mapping of the source that reported the value.

        Returns:
            Value in the canonical unit.

        Raises:
            ConfigurationError: If the mapping's conversion is unusable.
        """
        self.validate(mapping)
        return value * mapping.conversion_factor + mapping.conversion_offset

    def normalize_observation(
        self, observation: RawObservation, mapping: SourceMapping
    ) -> NormalizedObservation:
        """Convert a raw observation, keeping its original value and unit."""
        return NormalizedObservation(
            source=mapping.data_source,
            date=observation.date,
            value=self.normalize(observation.value, mapping),
            original_value=observation.value,
            original_unit=mapping.source_unit,
            source_priority=mapping.source_priority,
        )
