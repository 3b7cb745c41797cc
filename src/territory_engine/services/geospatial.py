"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

from shapely.geometry import MultiPolygon, Polygon

from ..errors import InvalidGeometry
from ..models.domain import BBox, Coordinate

EARTH_RADIUS_KM = 6371.0
METERS_PER_DEGREE = 111320.0
# Web mercator ground resolution at zoom 0 on the equator.
METERS_PER_PIXEL_AT_ZOOM_0 = 156543.03392


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def haversine_meters(a: Coordinate, b: Coordinate) -> float:
    """Distance in meters between two (lng, lat) coordinates."""

    return haversine_km(a[1], a[0], b[1], b[0]) * 1000.0


def meters_per_pixel(latitude: float, zoom: float) -> float:
    return METERS_PER_PIXEL_AT_ZOOM_0 * math.cos(math.radians(latitude)) / (2 ** zoom)


def pixel_radius_to_degrees(pixel_radius: float, latitude: float, zoom: float) -> float:
    """Convert an on-screen radius into the degree radius used by circle queries."""

    radius_meters = pixel_radius * meters_per_pixel(latitude, zoom)
    return radius_meters / METERS_PER_DEGREE


def is_geographic(coord: Coordinate) -> bool:
    lng, lat = coord
    return -180.0 <= lng <= 180.0 and -90.0 <= lat <= 90.0


def validate_ring(ring: Sequence[Sequence[float]]) -> list[Coordinate]:
    """Return the ring as (lng, lat) tuples or raise ``InvalidGeometry``."""

    if ring is None or len(ring) < 3:
        raise InvalidGeometry("A selection ring needs at least 3 points.")
    points: list[Coordinate] = []
    for index, point in enumerate(ring):
        if len(point) < 2:
            raise InvalidGeometry(f"Point {index} of the ring has fewer than 2 coordinates.")
        x, y = float(point[0]), float(point[1])
        if not (math.isfinite(x) and math.isfinite(y)):
            raise InvalidGeometry(f"Point {index} of the ring is not finite: ({x}, {y}).")
        points.append((x, y))
    if len(set(points)) < 3:
        raise InvalidGeometry("A selection ring needs at least 3 distinct points.")
    return points


def point_in_ring(lng: float, lat: float, ring: Sequence[Coordinate]) -> bool:
    """Ray-casting point-in-polygon test.

    Half-open convention: a crossing counts when exactly one edge end lies
    strictly above the point and the point lies strictly left of the
    intersection. For an axis-aligned cell the left and bottom edges are
    inside, the right and top edges are outside.
    """

    inside = False
    count = len(ring)
    j = count - 1
    for i in range(count):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > lat) != (yj > lat):
            x_intersect = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < x_intersect:
                inside = not inside
        j = i
    return inside


def geometry_bbox(geometry: Polygon | MultiPolygon) -> BBox:
    min_x, min_y, max_x, max_y = geometry.bounds
    return (min_x, min_y, max_x, max_y)


def largest_polygon_centroid(geometry: Polygon | MultiPolygon) -> Coordinate:
    """Centroid of the polygon, or of the largest part of a multi-polygon."""

    if isinstance(geometry, MultiPolygon):
        geometry = max(geometry.geoms, key=lambda part: part.area)
    centroid = geometry.centroid
    return (centroid.x, centroid.y)


def expand_bbox(bbox: BBox, padding: float) -> BBox:
    min_x, min_y, max_x, max_y = bbox
    return (min_x - padding, min_y - padding, max_x + padding, max_y + padding)


def circle_bbox(center: Coordinate, radius_meters: float) -> BBox:
    """Bounding box that fully contains a geodesic circle."""

    lng, lat = center
    angular = radius_meters / (EARTH_RADIUS_KM * 1000.0)
    lat_delta = math.degrees(angular)
    cos_lat = math.cos(math.radians(lat))
    ratio = math.sin(min(angular, math.pi / 2)) / cos_lat if cos_lat > 1e-12 else math.inf
    if ratio >= 1.0 or abs(lat) + lat_delta >= 90.0:
        # circle reaches a pole, every longitude is in reach
        lng_delta = 180.0
    else:
        lng_delta = math.degrees(math.asin(ratio))
    return (lng - lng_delta, lat - lat_delta, lng + lng_delta, lat + lat_delta)
