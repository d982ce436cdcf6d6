"""
Source resolution service.

Turns one date's observations into a single merged point, either by picking
the highest-priority source or by delegating to the fusion engine.
"""

import logging
from collections.abc import Mapping

from health_merge.domain.merge import (
    FusionMethod,
    MergedPoint,
    MergeMethod,
    NormalizedObservation,
    ResolutionPolicy,
    UserMergePreference,
)
from health_merge.services.fusion import FusionEngine, collapse_by_source
from health_merge.utils.exceptions import ConfigurationError, MergeError

logger = logging.getLogger(__name__)


class SourceResolver:
    """
    Resolves a date's observations into a merged point.

    Expects observations in the order produced by SeriesAligner. A user's
    preferred source, when present on a date, is ranked ahead of all others.
    """

    def __init__(self, fusion_engine: FusionEngine | None = None) -> None:
        """
        Initialize source resolver.

        Args:
            fusion_engine: Engine used for the FUSE policy.
        """
        self.fusion_engine = fusion_engine or FusionEngine()

    @staticmethod
    def validate_policy(policy: ResolutionPolicy | str) -> ResolutionPolicy:
        """
        Resolve a configured resolution policy.

        Raises:
            ConfigurationError: If the policy is not supported.
        """
        try:
            return ResolutionPolicy(policy)
        except ValueError as e:
            raise ConfigurationError(f"Unsupported resolution policy: {policy!r}") from e

    def _rank(
        self,
        observations: list[NormalizedObservation],
        preference: UserMergePreference | None,
    ) -> list[NormalizedObservation]:
        if preference is None or preference.preferred_source is None:
            return list(observations)

        preferred = preference.preferred_source
        return sorted(observations, key=lambda o: o.source != preferred)

    def _disagreement(
        self,
        observations: list[NormalizedObservation],
        value: float,
        preference: UserMergePreference | None,
    ) -> tuple[float | None, float | None, bool]:
        per_source = collapse_by_source(observations)
        if len(per_source) < 2:
            return None, None, False

        means = [mean for _, _, mean in per_source]
        spread = max(means) - min(means)
        pct = abs(spread / value) * 100 if value != 0 else None

        alert = bool(
            preference is not None
            and preference.alert_on_source_disagreement
            and pct is not None
            and pct > preference.disagreement_threshold_percentage
        )
        return spread, pct, alert

    def resolve(
        self,
        date_observations: list[NormalizedObservation],
        policy: ResolutionPolicy | str = ResolutionPolicy.PRIORITY_PICK,
        fusion_method: FusionMethod | str = FusionMethod.WEIGHTED_AVERAGE,
        preference: UserMergePreference | None = None,
        weights: Mapping[str, float] | None = None,
        unit: str | None = None,
    ) -> MergedPoint:
        """
        Resolve one date's observations into a merged point.

        Args:
            date_observations: All normalized observations for a single date.
            policy: PRIORITY_PICK or FUSE.
            fusion_method: Fusion method used with the FUSE policy.
            preference: Optional user preference (preferred source, disagreement alert).
            weights: Optional explicit fusion weights per source.
            unit: Canonical unit recorded on the point.

        Returns:
            The merged point for that date.

        Raises:
            ConfigurationError: If the policy or fusion method is unsupported.
            MergeError: If no observations were given.
        """
        resolution_policy = self.validate_policy(policy)

        if not date_observations:
            raise MergeError("Cannot resolve a date without observations")

        ranked = self._rank(date_observations, preference)
        first = ranked[0]

        contributing: list[str] = []
        original_values: dict[str, list[float]] = {}
        for observation in ranked:
            if observation.source not in contributing:
                contributing.append(observation.source)
            original_values.setdefault(observation.source, []).append(observation.original_value)

        chosen_source: str | None = first.source

        if len(contributing) == 1:
            # repeated readings of one source: FUSE averages them, PRIORITY_PICK keeps the first
            if resolution_policy == ResolutionPolicy.FUSE:
                value = collapse_by_source(ranked)[0][2]
            else:
                value = first.value
            method = MergeMethod.SINGLE_SOURCE
        elif resolution_policy == ResolutionPolicy.PRIORITY_PICK:
            value = first.value
            method = MergeMethod.PRIORITY
        else:
            method_used = self.fusion_engine.validate_method(fusion_method)
            value = self.fusion_engine.fuse(ranked, method_used, weights)
            method = MergeMethod(method_used.value)
            if method_used == FusionMethod.WEIGHTED_AVERAGE:
                chosen_source = None

        spread, pct, alert = self._disagreement(ranked, value, preference)
        if alert:
            logger.info(
                f"Sources disagree by {pct:.1f}% on {first.date.isoformat()} "
                f"({', '.join(contributing)})"
            )

        return MergedPoint(
            date=first.date,
            value=value,
            unit=unit,
            chosen_source=chosen_source,
            contributing_sources=contributing,
            method=method,
            original_values=original_values,
            source_spread=spread,
            disagreement_pct=pct,
            disagreement_alert=alert,
        )
