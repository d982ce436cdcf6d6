"""
CSV parser for multi-source observation exports.

Reads long-format CSV files (one row per source, date and value) with encoding
detection, delimiter detection, column name normalization, and safe numeric
conversion.
"""

import logging
import math
from collections import defaultdict
from pathlib import Path
from typing import Any

import pandas as pd

from health_merge.domain.merge import RawObservation
from health_merge.utils.exceptions import ParsingError
from health_merge.utils.parameters import CSVConfig
from health_merge.utils.timezone_utils import parse_civil_date

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("source", "date", "value")


class ObservationCSVParser:
    """
    Parser for observation CSV files.

    Handles encoding detection, delimiter detection, column normalization,
    and conversion to raw observations grouped by source.
    """

    def __init__(self, csv_config: CSVConfig) -> None:
        """
        Initialize CSV parser.

        Args:
            csv_config: CSV parsing configuration.
        """
        self.csv_config = csv_config
        self.column_mappings = csv_config.column_mappings

    def _detect_encoding(self, file_path: Path) -> str:
        """
        Detect file encoding.

        Args:
            file_path: Path to CSV file.

        Returns:
            Detected encoding.
        """
        for encoding in self.csv_config.encodings:
            try:
                with open(file_path, encoding=encoding) as f:
                    f.read()
                logger.debug(f"Detected encoding: {encoding}")
                return encoding
            except (UnicodeDecodeError, LookupError):
                continue

        logger.warning("Encoding detection failed, using utf-8")
        return "utf-8"

    def _detect_delimiter(self, file_path: Path, encoding: str) -> str:
        """
        Detect CSV delimiter.

        Args:
            file_path: Path to CSV file.
            encoding: File encoding.

        Returns:
            Detected delimiter.
        """
        with open(file_path, encoding=encoding) as f:
            first_line = f.readline()

        for delimiter in self.csv_config.delimiters:
            if delimiter in first_line:
                logger.debug(f"Detected delimiter: {repr(delimiter)}")
                return delimiter

        logger.warning("Delimiter detection failed, using comma")
        return ","

    def _normalize_column_names(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Normalize column names to the observation schema.

        Args:
            df: DataFrame with original column names.

        Returns:
            DataFrame with normalized column names.
        """
        rename_map = {}

        for col in df.columns:
            col_stripped = str(col).strip()
            if col_stripped in self.column_mappings:
                rename_map[col] = self.column_mappings[col_stripped]
            elif col_stripped.lower() in REQUIRED_COLUMNS:
                rename_map[col] = col_stripped.lower()

        if rename_map:
            df = df.rename(columns=rename_map)
            logger.debug(f"Normalized columns: {list(rename_map.values())}")

        return df

    def _safe_float_conversion(self, value: Any) -> float | None:
        """
        Safely convert value to float, handling comma decimal separator.

        Args:
            value: Value to convert.

        Returns:
            Finite float value or None if conversion fails.
        """
        if pd.isna(value):
            return None

        if isinstance(value, (int, float)):
            return float(value) if math.isfinite(value) else None

        if isinstance(value, str):
            value = value.strip().replace(",", ".")
            try:
                result = float(value)
            except ValueError:
                return None
            return result if math.isfinite(result) else None

        return None

    def parse_dataframe(self, df: pd.DataFrame) -> dict[str, list[RawObservation]]:
        """
        Convert a long-format DataFrame into raw observations grouped by source.

        Args:
            df: DataFrame with source, date and value columns (before normalization).

        Returns:
            Raw observations keyed by source identifier, in file order.

        Raises:
            ParsingError: If a required column is missing.
        """
        df = self._normalize_column_names(df)

        missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
        if missing:
            raise ParsingError(f"Missing required columns: {', '.join(missing)}")

        observations: dict[str, list[RawObservation]] = defaultdict(list)

        for idx, row in df.iterrows():
            source = row.get("source")
            value = self._safe_float_conversion(row.get("value"))

            if pd.isna(source) or not str(source).strip():
                logger.warning(f"Row {idx}: Missing source, skipping")
                continue
            if value is None:
                logger.warning(f"Row {idx}: Invalid value {row.get('value')!r}, skipping")
                continue

            try:
                day = parse_civil_date(str(row.get("date")), self.csv_config.timezone)
            except (ValueError, OverflowError) as e:
                logger.warning(f"Row {idx}: Invalid date {row.get('date')!r}: {e}")
                continue

            source_id = str(source).strip()
            observations[source_id].append(
                RawObservation(source=source_id, date=day, value=value)
            )

        return dict(observations)

    def parse(self, file_path: Path) -> dict[str, list[RawObservation]]:
        """
        Parse CSV file into raw observations grouped by source.

        Args:
            file_path: Path to CSV file.

        Returns:
            Raw observations keyed by source identifier.

        Raises:
            ParsingError: If parsing fails.
        """
        try:
            encoding = self._detect_encoding(file_path)
            delimiter = self._detect_delimiter(file_path, encoding)

            df = pd.read_csv(file_path, encoding=encoding, sep=delimiter, dtype=str)
            observations = self.parse_dataframe(df)

            total = sum(len(v) for v in observations.values())
            logger.info(
                f"Parsed {total} observations from {len(observations)} sources "
                f"in {file_path.name}"
            )
            return observations

        except ParsingError:
            raise
        except Exception as e:
            raise ParsingError(f"Failed to parse CSV file {file_path}: {e}") from e
