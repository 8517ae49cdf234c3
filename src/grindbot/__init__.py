"""Grindbot: poll-driven supervisor that hands tasks to a coding-assistant CLI."""

__version__ = "1.0.0"
