"""Route group exports."""

from . import areas, boundaries, health, history, selection, versions

__all__ = ["areas", "boundaries", "health", "history", "selection", "versions"]
