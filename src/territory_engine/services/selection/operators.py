"""Selection operators turning map gestures into region codes.

Operators never touch the territory store; callers commit the returned codes
explicitly. Geometry validation errors stop here: they are logged and an
empty result is returned, never a partial one.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

from ...errors import InvalidGeometry
from ...models.domain import Coordinate
from ..geospatial import is_geographic, pixel_radius_to_degrees
from .context import SelectionContext

logger = logging.getLogger(__name__)


def point_select(ctx: SelectionContext, coord: Sequence[float]) -> Optional[str]:
    """Code of the region under a clicked point."""

    try:
        lng, lat = resolve_point(ctx, coord)
        return ctx.index.point_query(lng, lat)
    except InvalidGeometry as exc:
        logger.warning("Ignoring point selection: %s", exc)
        return None


def polygon_select(ctx: SelectionContext, ring: Sequence[Sequence[float]]) -> list[str]:
    """Codes of all regions whose centroid lies inside a lasso ring."""

    try:
        codes = ctx.index.polygon_query(ring, unproject=ctx.unproject)
    except InvalidGeometry as exc:
        logger.warning("Ignoring polygon selection: %s", exc)
        return []
    return list(dict.fromkeys(codes))


def circle_select(ctx: SelectionContext, center: Sequence[float], pixel_radius: float) -> list[str]:
    """Codes of all regions whose centroid lies within an on-screen circle."""

    try:
        point = resolve_point(ctx, center)
        if not math.isfinite(pixel_radius) or pixel_radius < 0:
            raise InvalidGeometry(f"Invalid pixel radius {pixel_radius}.")
        radius_degrees = pixel_radius_to_degrees(pixel_radius, point[1], ctx.zoom)
        codes = ctx.index.circle_query(point, radius_degrees)
    except InvalidGeometry as exc:
        logger.warning("Ignoring circle selection: %s", exc)
        return []
    return list(dict.fromkeys(codes))


def resolve_point(ctx: SelectionContext, coord: Sequence[float]) -> Coordinate:
    """Validate a gesture point and bring it into (lng, lat)."""

    point = _to_coordinate(coord)
    if is_geographic(point):
        return point
    if ctx.unproject is None:
        raise InvalidGeometry(f"Point {point} is outside the geographic range.")
    point = _to_coordinate(ctx.unproject(point))
    if not is_geographic(point):
        raise InvalidGeometry(f"Inverse projection produced {point}, outside the geographic range.")
    return point


def _to_coordinate(coord: Sequence[float]) -> Coordinate:
    if coord is None or len(coord) < 2:
        raise InvalidGeometry("A coordinate needs a longitude and a latitude.")
    lng, lat = float(coord[0]), float(coord[1])
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise InvalidGeometry(f"Coordinate ({lng}, {lat}) is not finite.")
    return (lng, lat)
