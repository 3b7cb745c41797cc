"""Spatial index over a boundary dataset.

The index is built once per dataset and is read-only afterwards, so a single
instance can serve concurrent selection requests. Two shapely ``STRtree``s
back it: one over the feature bounding boxes (point and adjacency lookups)
and one over the cached centroids (circle and polygon lookups).
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, Iterable, Optional, Sequence

from shapely.geometry import MultiLineString, Point, box
from shapely.ops import unary_union
from shapely.prepared import prep
from shapely.strtree import STRtree

from ...config import settings
from ...errors import InvalidGeometry
from ...models.domain import BBox, BoundaryDataset, BoundaryFeature, Coordinate
from ..geospatial import (
    METERS_PER_DEGREE,
    circle_bbox,
    expand_bbox,
    haversine_meters,
    is_geographic,
    point_in_ring,
    validate_ring,
)

logger = logging.getLogger(__name__)

Unproject = Callable[[Coordinate], Coordinate]
"""Inverse projection from screen/projected space to (lng, lat)."""


class SpatialIndex:
    """Answers point, circle and polygon queries over region boundaries."""

    def __init__(self, dataset: BoundaryDataset, *, adjacency_epsilon: float | None = None) -> None:
        start = time.perf_counter()
        self.dataset = dataset
        self.granularity = dataset.granularity
        self.adjacency_epsilon = adjacency_epsilon if adjacency_epsilon is not None else settings.adjacency_epsilon
        self._features: tuple[BoundaryFeature, ...] = dataset.features
        self._bbox_tree = STRtree([box(*feature.bbox) for feature in self._features])
        self._centroid_tree = STRtree([Point(feature.centroid) for feature in self._features])
        self._envelope = self._compute_envelope(self._features)

        self._cache_lock = threading.Lock()
        self._adjacency: Optional[dict[str, frozenset[str]]] = None
        self._boundary_reachable: Optional[frozenset[str]] = None
        logger.info(
            "Built spatial index for %d '%s' boundaries in %.1f ms",
            len(self._features),
            self.granularity,
            (time.perf_counter() - start) * 1000,
        )

    def __len__(self) -> int:
        return len(self._features)

    @property
    def envelope(self) -> Optional[BBox]:
        return self._envelope

    def codes(self) -> list[str]:
        return [feature.code for feature in self._features]

    def feature(self, code: str) -> Optional[BoundaryFeature]:
        return self.dataset.get(code)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def point_query(self, lng: float, lat: float) -> Optional[str]:
        """Return the code of the region containing the point, if any.

        When more than one region contains the point the one with the smallest
        bounding-box area wins, then the lexicographically smallest code.
        """

        if not (math.isfinite(lng) and math.isfinite(lat)):
            raise InvalidGeometry(f"Point ({lng}, {lat}) is not finite.")

        containing: list[BoundaryFeature] = []
        for feature in self._candidates(self._bbox_tree, Point(lng, lat)):
            if any(point_in_ring(lng, lat, ring) for ring in feature.outer_rings):
                containing.append(feature)
        if not containing:
            return None
        if len(containing) > 1:
            logger.debug("Point (%s, %s) lies in %d regions, using the smallest", lng, lat, len(containing))
        return min(containing, key=lambda feature: (feature.bbox_area, feature.code)).code

    def circle_query(self, center: Coordinate, radius_degrees: float) -> list[str]:
        """Return codes whose centroid lies within the radius of the center.

        Distances are geodesic (haversine); ``radius_degrees`` is converted to
        meters with 111320 m per degree.
        """

        lng, lat = center
        if not (math.isfinite(lng) and math.isfinite(lat) and math.isfinite(radius_degrees)):
            raise InvalidGeometry("Circle center and radius must be finite.")
        if radius_degrees < 0:
            raise InvalidGeometry("Circle radius must not be negative.")

        radius_meters = radius_degrees * METERS_PER_DEGREE
        search_box = box(*circle_bbox((lng, lat), radius_meters))
        return [
            feature.code
            for feature in self._candidates(self._centroid_tree, search_box)
            if haversine_meters((lng, lat), feature.centroid) <= radius_meters
        ]

    def polygon_query(self, ring: Sequence[Sequence[float]], unproject: Optional[Unproject] = None) -> list[str]:
        """Return codes whose centroid lies inside the ring."""

        points = to_geographic_ring(validate_ring(ring), unproject)
        min_x = min(x for x, _ in points)
        max_x = max(x for x, _ in points)
        min_y = min(y for _, y in points)
        max_y = max(y for _, y in points)
        return [
            feature.code
            for feature in self._candidates(self._centroid_tree, box(min_x, min_y, max_x, max_y))
            if point_in_ring(feature.centroid[0], feature.centroid[1], points)
        ]

    def bbox_query(self, bbox: BBox) -> list[BoundaryFeature]:
        """Features whose bounding box overlaps ``bbox``."""

        return self._candidates(self._bbox_tree, box(*bbox))

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------

    def adjacency_graph(self) -> dict[str, frozenset[str]]:
        """Map every code to the codes whose boundaries touch or overlap it."""

        with self._cache_lock:
            if self._adjacency is None:
                self._adjacency = self._build_adjacency()
            return self._adjacency

    def boundary_reachable_codes(self) -> frozenset[str]:
        """Codes of regions touching the outer envelope of the dataset."""

        with self._cache_lock:
            if self._boundary_reachable is None:
                self._boundary_reachable = self._find_boundary_reachable()
            return self._boundary_reachable

    def hole_detection(self, selected: Iterable[str]) -> list[str]:
        from .holes import find_holes

        return find_holes(self, selected)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _candidates(self, tree: STRtree, geometry) -> list[BoundaryFeature]:
        if not self._features:
            return []
        indices = sorted(int(index) for index in tree.query(geometry))
        return [self._features[index] for index in indices]

    def _build_adjacency(self) -> dict[str, frozenset[str]]:
        start = time.perf_counter()
        neighbours: dict[str, set[str]] = {feature.code: set() for feature in self._features}
        checks = 0
        for index, feature in enumerate(self._features):
            prepared = prep(feature.geometry)
            search_box = box(*expand_bbox(feature.bbox, self.adjacency_epsilon))
            for candidate_index in self._bbox_tree.query(search_box):
                candidate_index = int(candidate_index)
                # each unordered pair is tested once
                if candidate_index <= index:
                    continue
                candidate = self._features[candidate_index]
                checks += 1
                if prepared.intersects(candidate.geometry):
                    neighbours[feature.code].add(candidate.code)
                    neighbours[candidate.code].add(feature.code)
        logger.info(
            "Built adjacency graph for %d regions with %d geometry checks in %.1f ms",
            len(self._features),
            checks,
            (time.perf_counter() - start) * 1000,
        )
        return {code: frozenset(codes) for code, codes in neighbours.items()}

    def _find_boundary_reachable(self) -> frozenset[str]:
        if not self._features or self._envelope is None:
            return frozenset()

        union = unary_union([feature.geometry for feature in self._features])
        parts = getattr(union, "geoms", [union])
        outline = prep(MultiLineString([list(part.exterior.coords) for part in parts if hasattr(part, "exterior")]))

        min_x, min_y, max_x, max_y = self._envelope
        eps = self.adjacency_epsilon
        reachable: set[str] = set()
        for feature in self._features:
            f_min_x, f_min_y, f_max_x, f_max_y = feature.bbox
            touches_envelope = (
                f_min_x - min_x <= eps
                or f_min_y - min_y <= eps
                or max_x - f_max_x <= eps
                or max_y - f_max_y <= eps
            )
            if touches_envelope or outline.intersects(feature.geometry):
                reachable.add(feature.code)
        return frozenset(reachable)

    @staticmethod
    def _compute_envelope(features: Sequence[BoundaryFeature]) -> Optional[BBox]:
        if not features:
            return None
        return (
            min(feature.bbox[0] for feature in features),
            min(feature.bbox[1] for feature in features),
            max(feature.bbox[2] for feature in features),
            max(feature.bbox[3] for feature in features),
        )


def to_geographic_ring(points: list[Coordinate], unproject: Optional[Unproject]) -> list[Coordinate]:
    """Convert a screen-space ring to (lng, lat) when any point is out of range.

    A ring is either entirely geographic or entirely projected; as soon as one
    point falls outside [-180, 180] x [-90, 90] every point goes through the
    inverse projection.
    """

    if all(is_geographic(point) for point in points):
        return points
    if unproject is None:
        raise InvalidGeometry("Ring lies outside the geographic range and no inverse projection was supplied.")
    converted = validate_ring([unproject(point) for point in points])
    if not all(is_geographic(point) for point in converted):
        raise InvalidGeometry("Inverse projection produced coordinates outside the geographic range.")
    return converted
