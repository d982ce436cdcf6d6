"""Custom exceptions for health merge."""


class HealthMergeError(Exception):
    """Base exception for all health merge errors."""

    pass


class ConfigurationError(HealthMergeError):
    """Raised when a merge group, source mapping or fusion setting is invalid."""

    pass


class ParsingError(HealthMergeError):
    """Raised when observation file parsing fails."""

    pass


class MergeError(HealthMergeError):
    """Raised when building a merged view fails for a non-configuration reason."""

    pass
