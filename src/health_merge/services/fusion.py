"""
Fusion service.

Combines several same-day source values into one blended value.
"""

import logging
import math
from collections.abc import Mapping

from health_merge.domain.merge import FusionMethod, NormalizedObservation
from health_merge.utils.exceptions import ConfigurationError, MergeError

logger = logging.getLogger(__name__)


def collapse_by_source(
    observations: list[NormalizedObservation],
) -> list[tuple[str, int, float]]:
    """
    Average each source's observations, keeping first-seen source order.

    Returns:
        List of (source, priority, mean canonical value).
    """
    values: dict[str, list[float]] = {}
    priorities: dict[str, int] = {}
    for observation in observations:
        values.setdefault(observation.source, []).append(observation.value)
        priorities.setdefault(observation.source, observation.source_priority)

    return [
        (source, priorities[source], math.fsum(vals) / len(vals))
        for source, vals in values.items()
    ]


class FusionEngine:
    """
    Blends the values present on one date.

    Fusion only combines observed values; it never imputes a value for a
    source that has no observation that date.
    """

    @staticmethod
    def validate_method(method: FusionMethod | str) -> FusionMethod:
        """
        Resolve a configured fusion method.

        Raises:
            ConfigurationError: If the method is not supported.
        """
        try:
            return FusionMethod(method)
        except ValueError as e:
            raise ConfigurationError(f"Unsupported fusion method: {method!r}") from e

    def _source_weight(
        self, source: str, priority: int, weights: Mapping[str, float] | None
    ) -> float:
        if weights is not None and source in weights:
            weight = weights[source]
        else:
            weight = 1.0 / priority

        if not math.isfinite(weight) or weight <= 0:
            raise ConfigurationError(f"Invalid fusion weight {weight!r} for source '{source}'")
        return weight

    def fuse(
        self,
        observations: list[NormalizedObservation],
        method: FusionMethod | str,
        weights: Mapping[str, float] | None = None,
    ) -> float:
        """
        Combine same-day observations into one value.

        Args:
            observations: Observations for one date, in priority order.
            method: Fusion method to apply.
            weights: Optional explicit per-source weights. Sources listed here use
                the given weight instead of ``1 / priority``.

        Returns:
            The fused canonical value.

        Raises:
            ConfigurationError: If the method is unsupported or a weight is invalid.
            MergeError: If there is nothing to fuse.
        """
        fusion_method = self.validate_method(method)

        if not observations:
            raise MergeError("Cannot fuse an empty set of observations")

        if fusion_method == FusionMethod.PRIORITY:
            return observations[0].value

        per_source = collapse_by_source(observations)
        source_weights = [
            self._source_weight(source, priority, weights) for source, priority, _ in per_source
        ]
        weighted_sum = math.fsum(w * value for w, (_, _, value) in zip(source_weights, per_source))
        return weighted_sum / math.fsum(source_weights)
