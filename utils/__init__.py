"""General utility functions for the story-sync system."""

from .logging import setup_logging

__all__ = ["setup_logging"]
