"""Version information for releasectl."""

__version__ = "0.1.0"
