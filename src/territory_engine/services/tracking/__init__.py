"""Change tracking and version snapshots."""

from .tracker import ChangeTracker, state_diffs
from .versions import LayerComparison, RestoreResult, VersionComparison, VersionManager

__all__ = [
    "ChangeTracker",
    "LayerComparison",
    "RestoreResult",
    "VersionComparison",
    "VersionManager",
    "state_diffs",
]
