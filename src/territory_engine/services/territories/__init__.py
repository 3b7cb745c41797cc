"""Areas, layers and region assignments."""

from .conflicts import conflicts_for_assignment, detect_conflicts
from .store import MERGE_STRATEGIES, GranularityChangeResult, TerritoryStore, generate_layer_color

__all__ = [
    "GranularityChangeResult",
    "MERGE_STRATEGIES",
    "TerritoryStore",
    "conflicts_for_assignment",
    "detect_conflicts",
    "generate_layer_color",
]
