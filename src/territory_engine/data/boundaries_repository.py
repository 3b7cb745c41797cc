"""Data access helpers for loading postal-code boundary datasets."""

from __future__ import annotations

import functools
import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from shapely.geometry import MultiPolygon, Polygon, shape

from ..config import settings
from ..models.domain import BoundaryDataset, BoundaryFeature
from ..services.geospatial import geometry_bbox, largest_polygon_centroid

logger = logging.getLogger(__name__)

# Source files name the region code differently; the first present key wins.
CODE_PROPERTY_KEYS = ("code", "PLZ", "plz", "id")


def normalize_code(properties: Mapping[str, Any] | None, feature_id: Any = None) -> Optional[str]:
    """Extract the canonical region code from a feature's properties."""

    properties = properties or {}
    for key in CODE_PROPERTY_KEYS:
        value = properties.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    if feature_id is not None and str(feature_id).strip():
        return str(feature_id).strip()
    return None


def feature_from_geojson(raw: Mapping[str, Any]) -> Optional[BoundaryFeature]:
    """Build a boundary feature from a GeoJSON feature, or None when unusable."""

    code = normalize_code(raw.get("properties"), raw.get("id"))
    if not code:
        return None
    geometry_data = raw.get("geometry")
    if not geometry_data:
        return None
    geometry = shape(geometry_data)
    if not isinstance(geometry, (Polygon, MultiPolygon)) or geometry.is_empty:
        logger.debug("Skipping feature %s with geometry type %s", code, geometry.geom_type)
        return None
    return BoundaryFeature(
        code=code,
        geometry=geometry,
        bbox=geometry_bbox(geometry),
        centroid=largest_polygon_centroid(geometry),
        properties=dict(raw.get("properties") or {}),
    )


def build_dataset(granularity: str, collection: Mapping[str, Any]) -> BoundaryDataset:
    """Normalise a GeoJSON FeatureCollection into a boundary dataset."""

    if collection.get("type") != "FeatureCollection":
        raise ValueError(f"Boundary data for '{granularity}' is not a FeatureCollection.")

    features: list[BoundaryFeature] = []
    seen: set[str] = set()
    skipped = 0
    for raw in collection.get("features") or []:
        feature = feature_from_geojson(raw)
        if feature is None:
            skipped += 1
            continue
        if feature.code in seen:
            logger.warning("Duplicate region code %s in '%s' boundaries, keeping the first", feature.code, granularity)
            skipped += 1
            continue
        seen.add(feature.code)
        features.append(feature)

    if skipped:
        logger.info("Skipped %d unusable features while loading '%s' boundaries", skipped, granularity)
    return BoundaryDataset(granularity, features)


@functools.lru_cache(maxsize=8)
def load_boundary_dataset(granularity: str, source: Optional[Path] = None) -> BoundaryDataset:
    """Load the boundary dataset for a granularity from the configured directory."""

    if granularity not in settings.granularities:
        raise ValueError(f"Unknown granularity '{granularity}'.")
    path = source or settings.boundary_file(granularity)
    if not path.exists():
        raise FileNotFoundError(f"Boundary file not found: {path}")

    with path.open(mode="r", encoding="utf-8") as handle:
        collection = json.load(handle)
    dataset = build_dataset(granularity, collection)
    logger.info("Loaded %d '%s' boundaries from %s", len(dataset), granularity, path)
    return dataset
