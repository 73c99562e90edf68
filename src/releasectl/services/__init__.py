"""Service layer for releasectl."""
