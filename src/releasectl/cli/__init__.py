"""Command line interface for releasectl."""
