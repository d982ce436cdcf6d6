"""
Series alignment service.

Normalizes every source's observations and groups them by civil date.
"""

import logging
from collections import defaultdict
from collections.abc import Mapping
from datetime import date

from health_merge.domain.merge import NormalizedObservation, RawObservation, SourceMapping
from health_merge.services.normalizer import UnitNormalizer

logger = logging.getLogger(__name__)


class SeriesAligner:
    """
    Groups normalized observations by date.

    Same-day duplicates from one source are all kept. Within a date, observations
    are ordered by source priority, then source identifier, then input order.
    """

    def __init__(self, normalizer: UnitNormalizer | None = None) -> None:
        """
        Initialize series aligner.

        Args:
            normalizer: Unit normalizer to use. A default one is created if omitted.
        """
        self.normalizer = normalizer or UnitNormalizer()

    @staticmethod
    def find_unmapped(
        sources: Mapping[str, list[RawObservation]],
        mappings: Mapping[str, SourceMapping],
    ) -> dict[str, int]:
        """
        Find sources present in the raw data but absent from the mappings.

        Returns:
            Mapping of unmapped source identifier to its observation count.
        """
        return {
            source: len(observations)
            for source, observations in sorted(sources.items())
            if source not in mappings and observations
        }

    def align(
        self,
        sources: Mapping[str, list[RawObservation]],
        mappings: Mapping[str, SourceMapping],
    ) -> dict[date, list[NormalizedObservation]]:
        """
        Normalize and group observations by date.

        Args:
            sources: Raw observations keyed by source identifier.
            mappings: Source mappings keyed by source identifier.

        Returns:
            Ordered mapping of date to that date's normalized observations,
            with dates in ascending order.

        Raises:
            ConfigurationError: If a mapping used by the data has an unusable conversion.
        """
        for source, count in self.find_unmapped(sources, mappings).items():
            logger.warning(f"Dropping {count} observations from unmapped source '{source}'")

        grouped: dict[date, list[NormalizedObservation]] = defaultdict(list)

        for source, observations in sources.items():
            mapping = mappings.get(source)
            if mapping is None:
                continue

            for observation in observations:
                normalized = self.normalizer.normalize_observation(observation, mapping)
                grouped[normalized.date].append(normalized)

        aligned: dict[date, list[NormalizedObservation]] = {}
        for day in sorted(grouped):
            # sorted() is stable, so duplicates from one source keep input order
            aligned[day] = sorted(
                grouped[day], key=lambda o: (o.source_priority, o.source)
            )

        logger.debug(f"Aligned {sum(len(v) for v in aligned.values())} observations "
                     f"across {len(aligned)} dates")
        return aligned
