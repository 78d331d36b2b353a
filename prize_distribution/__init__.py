"""Prize distribution service."""

__version__ = "0.1.0"
