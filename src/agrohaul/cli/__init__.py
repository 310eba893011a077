"""Command-line interface for AgroHaul."""

from .main import app, main

__all__ = ["app", "main"]
