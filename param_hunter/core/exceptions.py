"""
Exception hierarchy for Param Hunter.
"""


class ParamHunterError(Exception):
    """Base class for all Param Hunter errors."""


class ConfigurationError(ParamHunterError, ValueError):
    """Raised when a mining configuration is invalid."""


class UnsupportedBodyError(ParamHunterError):
    """Raised when a request body cannot be classified for injection."""


class LearningCanceled(ParamHunterError):
    """Raised when the learning phase is interrupted by a cancel."""


class RequestParseError(ParamHunterError, ValueError):
    """Raised when a raw HTTP request cannot be parsed."""
