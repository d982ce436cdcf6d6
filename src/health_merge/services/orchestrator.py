"""
Merge orchestration service.

Drives normalization, alignment and resolution to build a merged series for a
merge group, and runs the correlation engine over every configured source pair.
"""

import logging
from collections.abc import Mapping
from datetime import date, timedelta
from itertools import combinations
from typing import NamedTuple

from health_merge.domain.merge import (
    CorrelationResult,
    FusionMethod,
    MergedPoint,
    MergeGroup,
    NormalizedObservation,
    RawObservation,
    ResolutionPolicy,
    SourceMapping,
    UserMergePreference,
)
from health_merge.services.aligner import SeriesAligner
from health_merge.services.correlation import CorrelationEngine
from health_merge.services.fusion import FusionEngine
from health_merge.services.resolver import SourceResolver
from health_merge.utils.exceptions import ConfigurationError
from health_merge.utils.hashing import generate_correlation_key

logger = logging.getLogger(__name__)


class MergedView(NamedTuple):
    """Merged series and correlation report for one merge group."""

    merged_series: list[MergedPoint]
    correlations: list[CorrelationResult]


class MergeOrchestrator:
    """
    Top-level entry point for merging one merge group.

    Holds no per-call state; every call works only on its arguments.
    """

    def __init__(
        self,
        aligner: SeriesAligner | None = None,
        resolver: SourceResolver | None = None,
        correlation_engine: CorrelationEngine | None = None,
    ) -> None:
        """
        Initialize merge orchestrator.

        Args:
            aligner: Series aligner.
            resolver: Source resolver.
            correlation_engine: Correlation engine.
        """
        self.aligner = aligner or SeriesAligner()
        self.resolver = resolver or SourceResolver(FusionEngine())
        self.correlation_engine = correlation_engine or CorrelationEngine()

    def _mappings_by_source(self, mappings: list[SourceMapping]) -> dict[str, SourceMapping]:
        by_source: dict[str, SourceMapping] = {}
        for mapping in sorted(mappings, key=lambda m: m.rank):
            if not mapping.is_active:
                continue
            if mapping.data_source in by_source:
                raise ConfigurationError(
                    f"Source '{mapping.data_source}' mapped more than once"
                )
            self.aligner.normalizer.validate(mapping)
            by_source[mapping.data_source] = mapping
        return by_source

    def _resolve_policy(
        self,
        policy: ResolutionPolicy | str | None,
        preference: UserMergePreference | None,
    ) -> tuple[ResolutionPolicy, FusionMethod]:
        if policy is None:
            fuse = preference is not None and preference.enable_data_fusion
            policy = ResolutionPolicy.FUSE if fuse else ResolutionPolicy.PRIORITY_PICK

        resolution_policy = self.resolver.validate_policy(policy)
        fusion_method = FusionMethod.WEIGHTED_AVERAGE
        if preference is not None:
            fusion_method = self.resolver.fusion_engine.validate_method(preference.fusion_method)

        return resolution_policy, fusion_method

    @staticmethod
    def _paired_series(
        aligned: Mapping[date, list[NormalizedObservation]],
        source_a: str,
        source_b: str,
        start_date: date | None,
    ) -> tuple[list[tuple[float, float]], list[date]]:
        pairs: list[tuple[float, float]] = []
        dates: list[date] = []

        for day, observations in aligned.items():
            if start_date is not None and day < start_date:
                continue

            a_values = [o.value for o in observations if o.source == source_a]
            b_values = [o.value for o in observations if o.source == source_b]
            if a_values and b_values:
                pairs.append((sum(a_values) / len(a_values), sum(b_values) / len(b_values)))
                dates.append(day)

        return pairs, dates

    def _correlate_sources(
        self,
        group: MergeGroup,
        sources: list[str],
        aligned: Mapping[date, list[NormalizedObservation]],
    ) -> list[CorrelationResult]:
        if len(sources) < 2:
            return []

        window_start: date | None = None
        window_end: date | None = None
        if group.correlation_window_days is not None and aligned:
            window_end = max(aligned)
            window_start = window_end - timedelta(days=group.correlation_window_days - 1)

        results: list[CorrelationResult] = []
        for source_a, source_b in combinations(sources, 2):
            pairs, dates = self._paired_series(aligned, source_a, source_b, window_start)

            result = self.correlation_engine.correlate(
                pairs,
                merge_group=group.slug,
                source_a=source_a,
                source_b=source_b,
                min_data_points=group.min_data_points_for_correlation,
            )

            start = window_start if window_start is not None else (dates[0] if dates else None)
            end = window_end if window_end is not None else (dates[-1] if dates else None)

            results.append(
                result.model_copy(
                    update={
                        "analysis_start_date": start,
                        "analysis_end_date": end,
                        "analysis_window_days": group.correlation_window_days,
                        "cache_key": generate_correlation_key(
                            group.slug, source_a, source_b, start, end
                        ),
                    }
                )
            )

        return results

    def build_merged_view(
        self,
        group: MergeGroup,
        mappings: list[SourceMapping],
        raw_series: Mapping[str, list[RawObservation]],
        policy: ResolutionPolicy | str | None = None,
        preference: UserMergePreference | None = None,
    ) -> MergedView:
        """
        Build the merged series and correlation report for a merge group.

        Args:
            group: Merge group definition.
            mappings: Source mappings of the group. Inactive mappings are ignored.
            raw_series: Raw observations keyed by source identifier.
            policy: Resolution policy. When None, FUSE is used if the preference
                enables data fusion, otherwise PRIORITY_PICK.
            preference: Optional user merge preference.

        Returns:
            MergedView with points in ascending date order and one correlation
            result per configured source pair (empty when correlation is disabled).

        Raises:
            ConfigurationError: On unusable mappings, policy or fusion method.
        """
        by_source = self._mappings_by_source(mappings)
        resolution_policy, fusion_method = self._resolve_policy(policy, preference)
        weights = preference.source_weights if preference is not None else None

        aligned = self.aligner.align(raw_series, by_source)

        merged_series = [
            self.resolver.resolve(
                observations,
                resolution_policy,
                fusion_method=fusion_method,
                preference=preference,
                weights=weights,
                unit=group.canonical_unit,
            )
            for observations in aligned.values()
        ]

        if group.enable_correlation_analysis:
            correlations = self._correlate_sources(group, list(by_source), aligned)
        else:
            correlations = []

        logger.info(
            f"Merged {sum(len(v) for v in raw_series.values())} observations for "
            f"'{group.slug}' into {len(merged_series)} points, "
            f"{len(correlations)} source pairs correlated"
        )
        return MergedView(merged_series, correlations)
