"""Database layer for AgroHaul dispatch system."""

from .memory import InMemoryRepository
from .repository import ClaimOutcome, DispatchRepository, SqlRepository, get_repository

__all__ = [
    "ClaimOutcome",
    "DispatchRepository",
    "InMemoryRepository",
    "SqlRepository",
    "get_repository",
]
