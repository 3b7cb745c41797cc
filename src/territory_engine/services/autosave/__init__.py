"""Debounced persistence of committed changes."""

from .coordinator import AutosaveCoordinator
from .queue import DebounceQueue, merge_diffs

__all__ = ["AutosaveCoordinator", "DebounceQueue", "merge_diffs"]
