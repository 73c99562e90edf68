"""releasectl - release lifecycle manager for Kubernetes charts."""

from releasectl.__version__ import __version__

__all__ = ["__version__"]
