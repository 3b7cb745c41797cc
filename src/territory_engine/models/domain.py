"""Domain models for boundaries, territories and their change history."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from shapely.geometry import MultiPolygon, Polygon

Coordinate = tuple[float, float]
"""A (longitude, latitude) pair."""

BBox = tuple[float, float, float, float]
"""(min_lng, min_lat, max_lng, max_lat)."""


@dataclass(frozen=True, slots=True)
class BoundaryFeature:
    """A single region boundary. Immutable once loaded."""

    code: str
    geometry: Polygon | MultiPolygon
    bbox: BBox
    centroid: Coordinate
    properties: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def bbox_area(self) -> float:
        min_lng, min_lat, max_lng, max_lat = self.bbox
        return (max_lng - min_lng) * (max_lat - min_lat)

    @property
    def outer_rings(self) -> list[list[Coordinate]]:
        polygons = self.geometry.geoms if isinstance(self.geometry, MultiPolygon) else [self.geometry]
        return [list(polygon.exterior.coords) for polygon in polygons]


class BoundaryDataset:
    """Read-only collection of boundaries for one granularity."""

    def __init__(self, granularity: str, features: Iterable[BoundaryFeature]) -> None:
        self.granularity = granularity
        self.features: tuple[BoundaryFeature, ...] = tuple(features)
        self._by_code = {feature.code: feature for feature in self.features}
        if len(self._by_code) != len(self.features):
            raise ValueError(f"Duplicate region codes in '{granularity}' boundary dataset.")

    def __len__(self) -> int:
        return len(self.features)

    def __contains__(self, code: object) -> bool:
        return code in self._by_code

    def get(self, code: str) -> Optional[BoundaryFeature]:
        return self._by_code.get(code)

    def codes(self) -> list[str]:
        return list(self._by_code)


@dataclass(slots=True)
class Area:
    """Top-level working project containing layers."""

    id: int
    name: str
    granularity: str
    description: Optional[str] = None
    archived: bool = False
    current_version_number: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class Layer:
    """A named, coloured territory within an area."""

    id: int
    area_id: int
    name: str
    color: str = "#3b82f6"
    opacity: int = 70
    visible: bool = True
    order_index: int = 0


@dataclass(frozen=True, slots=True)
class LayerDiff:
    """Codes added to and removed from one layer."""

    layer_id: int
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed

    def inverse(self) -> "LayerDiff":
        return LayerDiff(self.layer_id, added=self.removed, removed=self.added)


@dataclass(frozen=True, slots=True)
class LayerState:
    """Captured attributes and assignments of one layer."""

    id: int
    name: str
    color: str
    opacity: int
    visible: bool
    order_index: int
    codes: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class AreaState:
    """Captured state of every layer of an area."""

    area_id: int
    name: str
    granularity: str
    description: Optional[str]
    layers: tuple[LayerState, ...]

    def layer(self, layer_id: int) -> Optional[LayerState]:
        for layer in self.layers:
            if layer.id == layer_id:
                return layer
        return None

    def codes_by_layer(self) -> dict[int, frozenset[str]]:
        return {layer.id: frozenset(layer.codes) for layer in self.layers}


@dataclass(slots=True)
class ChangeRecord:
    """An invertible, committed change.

    ``kind == "assignment"`` records carry a single layer's ``added`` and
    ``removed`` codes. ``kind == "restore"`` records replace the whole area and
    carry the ``before`` and ``after`` states instead.
    """

    id: int
    area_id: int
    layer_id: Optional[int]
    timestamp: datetime
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    kind: str = "assignment"
    description: Optional[str] = None
    before: Optional[AreaState] = None
    after: Optional[AreaState] = None
    confirmed: bool = False

    @property
    def diff(self) -> LayerDiff:
        if self.layer_id is None:
            raise ValueError(f"Change {self.id} is not a single-layer change.")
        return LayerDiff(self.layer_id, added=self.added, removed=self.removed)


@dataclass(frozen=True, slots=True)
class VersionSnapshot:
    """A named, restorable capture of an area."""

    id: int
    area_id: int
    version_number: int
    state: AreaState
    created_at: datetime
    name: Optional[str] = None
    description: Optional[str] = None
    change_count: int = 0
    parent_version_number: Optional[int] = None
    branch_name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ConflictOwner:
    id: int
    name: str
    color: str


@dataclass(frozen=True, slots=True)
class ConflictingCode:
    """A region code owned by two or more layers."""

    code: str
    layers: tuple[ConflictOwner, ...]


class TrackingState(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    SAVED = "saved"


@dataclass(frozen=True, slots=True)
class UndoRedoStatus:
    can_undo: bool
    can_redo: bool
    undo_count: int
    redo_count: int
    state: TrackingState = TrackingState.CLEAN
