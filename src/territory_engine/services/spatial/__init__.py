"""Spatial indexing services."""

from .holes import find_holes
from .index import SpatialIndex, Unproject, to_geographic_ring

__all__ = ["SpatialIndex", "Unproject", "find_holes", "to_geographic_ring"]
