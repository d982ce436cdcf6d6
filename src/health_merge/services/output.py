"""
Output service for writing merged series and correlation reports.

Handles CSV, Parquet, and JSON output with proper serialization of nested fields.
"""

import json
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from health_merge.domain.merge import CorrelationResult, MergedPoint
from health_merge.services.correlation import CorrelationEngine
from health_merge.utils.parameters import OutputConfig

logger = logging.getLogger(__name__)


class OutputService:
    """
    Service for writing data to output files.

    Handles multiple output formats with proper serialization of complex types.
    """

    def __init__(self, config: OutputConfig) -> None:
        """
        Initialize output service.

        Args:
            config: Output configuration.
        """
        self.config = config
        self.output_dir = Path(config.dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def write_merged_series(self, points: list[MergedPoint]) -> None:
        """
        Write the merged series to CSV and/or Parquet.

        Args:
            points: Merged points in date order.
        """
        if not points:
            logger.warning("No merged points to write")
            return

        if "csv" in self.config.formats:
            self._write_csv(points)

        if "parquet" in self.config.formats:
            self._write_parquet(points)

        logger.info(f"Wrote {len(points)} merged points to output")

    def _write_csv(self, points: list[MergedPoint]) -> None:
        csv_path = self.output_dir / self.config.files.merged_csv

        df = pd.DataFrame([p.to_dict(for_csv=True) for p in points])

        df.to_csv(csv_path, index=False, encoding="utf-8")
        logger.info(f"Wrote CSV to {csv_path}")

    def _write_parquet(self, points: list[MergedPoint]) -> None:
        parquet_path = self.output_dir / self.config.files.merged_parquet

        df = pd.DataFrame([p.to_dict(for_csv=False) for p in points])

        # per-day source keys vary, so the dict column is stored as JSON text
        df["original_values"] = df["original_values"].apply(json.dumps)

        df.to_parquet(  # type: ignore[call-overload]
            parquet_path,
            engine=self.config.parquet.engine,
            compression=self.config.parquet.compression,
            index=False,
        )
        logger.info(f"Wrote Parquet to {parquet_path}")

    def build_correlation_report(
        self, merge_group: str, results: list[CorrelationResult]
    ) -> dict[str, Any]:
        """
        Build the JSON-serializable correlation report.

        Args:
            merge_group: Merge group slug.
            results: Correlation results, one per source pair.

        Returns:
            Report dictionary with one entry per pair, including an interpretation.
        """
        pairs = []
        for result in results:
            entry = result.to_dict()
            entry["interpretation"] = CorrelationEngine.interpret(result)
            pairs.append(entry)

        return {
            "merge_group": merge_group,
            "total_pairs": len(results),
            "pairs": pairs,
        }

    def write_correlation_report(
        self, merge_group: str, results: list[CorrelationResult]
    ) -> Path:
        """
        Write correlation results to a JSON file.

        Args:
            merge_group: Merge group slug.
            results: Correlation results.

        Returns:
            Path of the written report.
        """
        report_path = self.output_dir / self.config.files.correlation_report
        report = self.build_correlation_report(merge_group, results)

        with open(report_path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2, default=str)

        logger.info(f"Wrote correlation report to {report_path}")
        return report_path
