"""AgroHaul Dispatch: booking dispatch engine for produce transport."""

__version__ = "0.1.0"
