"""
Exception Types for loadgate

Only ConfigurationError is fatal. Probe failures, degenerate CPU samples and
failed commands are absorbed by the admission loop and reported through
logging instead of exceptions.
"""


class LoadgateError(Exception):
    """Base class for all loadgate errors."""


class ConfigurationError(LoadgateError, ValueError):
    """Raised when thresholds or controller settings are malformed."""
