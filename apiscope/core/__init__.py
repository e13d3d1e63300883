"""Core configuration and logging for APIScope."""
