"""Monthly residuals pipeline coordinator."""

__version__ = "0.1.0"
