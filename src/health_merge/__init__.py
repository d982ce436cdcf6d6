"""
Health Merge - Multi-source health variable merging and agreement analysis.

Merges the same real-world quantity (body weight, heart rate, steps) recorded
by several sources into one canonical series, and measures how well each pair
of sources agrees.
"""

__version__ = "0.1.0"
