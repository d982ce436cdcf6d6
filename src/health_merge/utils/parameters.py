"""
Configuration and parameter loading using Pydantic.

This module provides centralized configuration management for the entire application.
Merge groups, source mappings, user preferences and I/O settings are loaded from
YAML and validated using Pydantic models.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from health_merge.domain.merge import MergeGroup, SourceMapping, UserMergePreference
from health_merge.utils.exceptions import ConfigurationError


class MergeGroupConfig(MergeGroup):
    """Merge group definition together with its source mappings."""

    mappings: list[SourceMapping] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_sources(self) -> "MergeGroupConfig":
        seen: set[str] = set()
        for mapping in self.mappings:
            if mapping.data_source in seen:
                raise ValueError(
                    f"Source '{mapping.data_source}' mapped more than once in group '{self.slug}'"
                )
            seen.add(mapping.data_source)
        return self

    def to_merge_group(self) -> MergeGroup:
        """Return the bare merge group without its mappings."""
        return MergeGroup(**self.model_dump(exclude={"mappings"}))

    def active_mappings(self) -> list[SourceMapping]:
        """Return active mappings in deterministic priority order."""
        return sorted((m for m in self.mappings if m.is_active), key=lambda m: m.rank)


class CSVConfig(BaseModel):
    """Observation CSV parsing configuration."""

    encodings: list[str] = Field(default_factory=lambda: ["utf-8", "utf-8-sig", "latin-1"])
    delimiters: list[str] = Field(default_factory=lambda: [",", ";", "\t"])
    column_mappings: dict[str, str] = Field(default_factory=dict)
    timezone: str | None = None


class OutputFilesConfig(BaseModel):
    """Output file names configuration."""

    merged_csv: str = "merged_series.csv"
    merged_parquet: str = "merged_series.parquet"
    correlation_report: str = "correlation_report.json"


class ParquetConfig(BaseModel):
    """Parquet output configuration."""

    compression: str = "snappy"
    engine: str = "pyarrow"


class OutputConfig(BaseModel):
    """Output configuration."""

    dir: str = "output"
    files: OutputFilesConfig = Field(default_factory=OutputFilesConfig)
    formats: list[str] = Field(default_factory=lambda: ["csv"])
    parquet: ParquetConfig = Field(default_factory=ParquetConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None
    console: bool = True


class AppConfig(BaseSettings):
    """Main application configuration."""

    merge_groups: list[MergeGroupConfig]
    preferences: dict[str, UserMergePreference] = Field(default_factory=dict)
    csv: CSVConfig = Field(default_factory=CSVConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(env_prefix="HM_", case_sensitive=False)


def build_source_mappings(raw_mappings: list[dict[str, Any]]) -> list[SourceMapping]:
    """
    Build source mappings from plain dictionaries.

    Args:
        raw_mappings: Mapping definitions, e.g. from an admin form or a database row.

    Returns:
        Validated source mappings.

    Raises:
        ConfigurationError: If a mapping is malformed or a source appears twice.
    """
    try:
        mappings = [SourceMapping(**raw) for raw in raw_mappings]
    except ValidationError as e:
        raise ConfigurationError(f"Invalid source mapping: {e}") from e

    sources = [m.data_source for m in mappings]
    duplicates = sorted({s for s in sources if sources.count(s) > 1})
    if duplicates:
        raise ConfigurationError(f"Sources mapped more than once: {', '.join(duplicates)}")

    return mappings


class ParameterLoader:
    """
    Centralized parameter loader for the application.

    Loads and validates configuration from YAML files using Pydantic models.
    Provides type-safe access to all configuration parameters.
    """

    def __init__(self, config_path: str = "config/config.yaml") -> None:
        """
        Initialize parameter loader.

        Args:
            config_path: Path to the YAML configuration file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        self.config_path = Path(config_path)
        self.config: AppConfig
        self._load_config()

    def _load_config(self) -> None:
        """
        Load configuration from YAML file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, encoding="utf-8") as f:
                config_dict = yaml.safe_load(f)

            self.config = AppConfig(**(config_dict or {}))

        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

    def get_merge_groups(self) -> list[MergeGroupConfig]:
        """Get all configured merge groups."""
        return self.config.merge_groups

    def get_merge_group(self, slug: str) -> MergeGroupConfig:
        """
        Get a merge group by slug.

        Raises:
            ConfigurationError: If no group with that slug is configured.
        """
        for group in self.config.merge_groups:
            if group.slug == slug:
                return group
        raise ConfigurationError(f"Merge group not found: {slug}")

    def get_preference(self, slug: str) -> UserMergePreference | None:
        """Get the merge preference for a group, if one is configured."""
        return self.config.preferences.get(slug)

    def get_csv_config(self) -> CSVConfig:
        """Get observation CSV parsing configuration."""
        return self.config.csv

    def get_output_config(self) -> OutputConfig:
        """Get output configuration."""
        return self.config.output

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration."""
        return self.config.logging
