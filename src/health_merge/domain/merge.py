"""
Merge domain models.

This module defines merge groups, per-source mappings and the records that
flow through the merge pipeline: raw observations, normalized observations,
merged points and pairwise correlation results.
"""

import datetime as dt
import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ResolutionPolicy(str, Enum):
    """How a date with several source values is collapsed to one value."""

    PRIORITY_PICK = "priority_pick"
    FUSE = "fuse"


class FusionMethod(str, Enum):
    """Enumeration of supported fusion methods."""

    PRIORITY = "priority"
    WEIGHTED_AVERAGE = "weighted_average"


class MergeMethod(str, Enum):
    """Method recorded on each merged point."""

    SINGLE_SOURCE = "single_source"
    PRIORITY = "priority"
    WEIGHTED_AVERAGE = "weighted_average"


class CorrelationStrength(str, Enum):
    """Qualitative strength of a correlation coefficient."""

    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    NONE = "none"


class MergeGroup(BaseModel):
    """
    A named canonical quantity that several sources report.

    Read-only at computation time.
    """

    slug: str = Field(min_length=1, description="Unique merge group identifier")
    name: str = Field(description="Human readable label")
    canonical_unit: str = Field(description="Unit every source is converted into")
    description: str | None = None
    unit_group: str | None = None
    category: str | None = None
    primary_source: str | None = None
    enable_correlation_analysis: bool = True
    min_data_points_for_correlation: int = Field(
        10, ge=1, description="Paired points required before statistics are computed"
    )
    correlation_window_days: int | None = Field(
        None, ge=1, description="Rolling analysis window for correlation, in days"
    )

    model_config = ConfigDict(frozen=True)


class SourceMapping(BaseModel):
    """
    Binding of one merge group to one upstream source.

    Conversion to the canonical unit is ``raw * conversion_factor + conversion_offset``.
    Lower ``source_priority`` means higher priority.
    """

    data_source: str = Field(min_length=1, description="Source key, e.g. 'manual'")
    source_unit: str = Field(description="Native unit of the source")
    conversion_factor: float = 1.0
    conversion_offset: float = 0.0
    source_priority: int = Field(1, ge=1)
    typical_accuracy_percentage: float | None = Field(None, ge=0, le=100)
    measurement_precision: float | None = None
    variable_id: str | None = Field(None, description="Upstream variable identifier")
    is_active: bool = True

    model_config = ConfigDict(frozen=True)

    @property
    def rank(self) -> tuple[int, str]:
        """Deterministic ordering key: priority, then source identifier."""
        return (self.source_priority, self.data_source)


class UserMergePreference(BaseModel):
    """Per-user merge settings, consumed read-only."""

    preferred_source: str | None = None
    enable_data_fusion: bool = False
    fusion_method: str = FusionMethod.WEIGHTED_AVERAGE.value
    source_weights: dict[str, float] | None = None
    alert_on_source_disagreement: bool = False
    disagreement_threshold_percentage: float = Field(10.0, ge=0)

    model_config = ConfigDict(frozen=True)


class RawObservation(BaseModel):
    """One value reported by one source for one civil date."""

    source: str
    date: dt.date
    value: float = Field(allow_inf_nan=False)

    model_config = ConfigDict(frozen=True)


class NormalizedObservation(BaseModel):
    """A raw observation converted to the merge group's canonical unit."""

    source: str
    date: dt.date
    value: float = Field(allow_inf_nan=False, description="Value in the canonical unit")
    original_value: float = Field(allow_inf_nan=False)
    original_unit: str
    source_priority: int = 1

    model_config = ConfigDict(frozen=True)


class MergedPoint(BaseModel):
    """One row of the merged series."""

    date: dt.date
    value: float
    unit: str | None = None
    chosen_source: str | None = Field(
        None, description="Source whose value was used (None when values were blended)"
    )
    contributing_sources: list[str] = Field(default_factory=list)
    method: MergeMethod
    original_values: dict[str, list[float]] = Field(default_factory=dict)
    source_spread: float | None = Field(
        None, description="Max minus min canonical value across the day's observations"
    )
    disagreement_pct: float | None = None
    disagreement_alert: bool = False

    model_config = ConfigDict(use_enum_values=True)

    def to_dict(self, for_csv: bool = False) -> dict[str, Any]:
        """
        Convert merged point to dictionary representation.

        Args:
            for_csv: If True, serialize lists and dicts to JSON strings.

        Returns:
            Dictionary representation of the point.
        """
        data = self.model_dump()
        data["date"] = self.date.isoformat()

        if for_csv:
            data["contributing_sources"] = json.dumps(data["contributing_sources"])
            data["original_values"] = json.dumps(data["original_values"])

        return data


class CorrelationResult(BaseModel):
    """
    Pairwise agreement report for two sources of one merge group.

    All statistics are None when fewer paired points than the group minimum
    were available. Individual correlation statistics are None when a paired
    vector has zero variance.
    """

    merge_group: str
    source_a: str
    source_b: str
    n: int = Field(ge=0, description="Number of paired dates used")

    pearson: float | None = None
    spearman: float | None = None
    icc: float | None = None
    ccc: float | None = None
    mae: float | None = None
    rmse: float | None = None
    mean_bias: float | None = None
    confidence_interval_lower: float | None = None
    confidence_interval_upper: float | None = None
    p_value: float | None = None
    strength: CorrelationStrength | None = None
    direction: str | None = None

    min_data_points: int = 10
    analysis_start_date: dt.date | None = None
    analysis_end_date: dt.date | None = None
    analysis_window_days: int | None = None
    calculation_version: str = "1.0"
    cache_key: str | None = None
    computed_at: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc),
        description="Computation timestamp (UTC)",
    )

    model_config = ConfigDict(use_enum_values=True)

    @property
    def insufficient_data(self) -> bool:
        """True when fewer paired points than required were available."""
        return self.n < self.min_data_points

    def to_dict(self) -> dict[str, Any]:
        """Convert result to a JSON-serializable dictionary."""
        data = self.model_dump()
        data["insufficient_data"] = self.insufficient_data
        data["computed_at"] = self.computed_at.isoformat()
        for key in ("analysis_start_date", "analysis_end_date"):
            value = data[key]
            data[key] = value.isoformat() if isinstance(value, dt.date) else value
        return data
