"""Terminal UI helpers."""

from .progress import ProgressState, SourceProgress

__all__ = ["ProgressState", "SourceProgress"]
