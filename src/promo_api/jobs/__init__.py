"""Recurring job entrypoints for promotion housekeeping."""

__all__ = ["marketing"]
