"""
Hashing and cache key generation utilities.

Provides deterministic keys for correlation results so a caller can cache
one report per merge group, source pair and analysis date range.
"""

import hashlib
from datetime import date


def generate_correlation_key(
    merge_group: str,
    source_a: str,
    source_b: str,
    start_date: date | None,
    end_date: date | None,
    algorithm: str = "sha256",
) -> str:
    """
    Generate a deterministic cache key for a correlation result.

    Args:
        merge_group: Merge group slug.
        source_a: First source of the pair.
        source_b: Second source of the pair.
        start_date: First date of the analysis range, if any.
        end_date: Last date of the analysis range, if any.
        algorithm: Hash algorithm to use.

    Returns:
        Hex digest identifying the group, pair and range.
    """
    hash_data = [
        merge_group,
        source_a,
        source_b,
        start_date.isoformat() if start_date else "",
        end_date.isoformat() if end_date else "",
    ]

    hash_func = hashlib.new(algorithm)
    hash_func.update("|".join(hash_data).encode("utf-8"))

    return hash_func.hexdigest()
