"""Core infrastructure for releasectl."""
