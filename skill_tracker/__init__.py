"""Privacy-preserving usage tracking and analytics for skills."""

__version__ = "0.1.0"
