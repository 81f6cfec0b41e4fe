"""Exception and warning types raised by firecarbon."""

__all__ = [
    "ConfigurationError",
    "ConvergenceWarning",
    "DataLoadError",
    "FirecarbonError",
]


class FirecarbonError(Exception):
    """Base class for firecarbon errors."""


class ConfigurationError(FirecarbonError, ValueError):
    """
    The model setup is structurally inconsistent.

    Raised when a formula generates a component term that has no column in
    the design matrix, when term names collide, when inclusion indicators
    cannot be paired with coefficients, or when sampler settings are invalid.
    Rerunning will not help; the configuration must be corrected.
    """


class DataLoadError(FirecarbonError, LookupError):
    """Expected input data or a persisted artifact could not be found."""


class ConvergenceWarning(UserWarning):
    """Sampler diagnostics look degenerate; results may be unreliable."""
