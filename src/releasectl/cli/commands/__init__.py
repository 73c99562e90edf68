"""Release CLI commands."""
