"""Job board API over an open-data government jobs feed."""

__version__ = "1.0.0"
