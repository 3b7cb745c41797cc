"""Explicit context passed into every selection operator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..routing.osrm_client import RoutingProvider
from ..spatial.index import SpatialIndex, Unproject


@dataclass(slots=True)
class SelectionContext:
    """Everything a selection gesture needs to resolve into region codes.

    ``zoom`` is the current map zoom, used for pixel radius conversion.
    ``unproject`` converts screen/projected coordinates to (lng, lat).
    """

    index: SpatialIndex
    zoom: float = 6.0
    unproject: Optional[Unproject] = None
    routing: Optional[RoutingProvider] = None

    @property
    def granularity(self) -> str:
        return self.index.granularity
