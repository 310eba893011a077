"""Shared utilities for AgroHaul dispatch system."""

from .logging import configure_logging

__all__ = ["configure_logging"]
