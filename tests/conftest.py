import json
from pathlib import Path
from typing import Iterable

import pytest

from territory_engine.config import settings
from territory_engine.data.boundaries_repository import build_dataset, load_boundary_dataset
from territory_engine.services.session import get_engine, get_spatial_index
from territory_engine.services.spatial import SpatialIndex


def square(code: str, min_x: float, min_y: float, max_x: float, max_y: float, key: str = "code") -> dict:
    return {
        "type": "Feature",
        "properties": {key: code},
        "geometry": {
            "type": "Polygon",
            "coordinates": [[[min_x, min_y], [max_x, min_y], [max_x, max_y], [min_x, max_y], [min_x, min_y]]],
        },
    }


def collection(features: Iterable[dict]) -> dict:
    return {"type": "FeatureCollection", "features": list(features)}


def munich_features() -> list[dict]:
    """Five-digit regions around Munich plus one far away in Berlin."""
    return [
        square("80331", 11.55, 48.12, 11.60, 48.17),
        square("80333", 11.60, 48.12, 11.65, 48.17),
        square("80335", 11.50, 48.12, 11.55, 48.17),
        square("81241", 11.40, 48.12, 11.50, 48.17),
        square("10115", 13.37, 52.52, 13.42, 52.57),
    ]


def ring_features() -> list[dict]:
    """Region "C" enclosed by five ring regions, plus one open region "E" to the east."""
    return [
        square("C", 1, 1, 2, 2),
        square("R1", 0, 0, 1.5, 1),
        square("R2", 1.5, 0, 3, 1),
        square("R3", 0, 1, 1, 2),
        square("R4", 2, 1, 3, 2),
        square("R5", 0, 2, 3, 3),
        square("E", 3, 0, 4, 3),
    ]


@pytest.fixture
def munich_index() -> SpatialIndex:
    return SpatialIndex(build_dataset("5digit", collection(munich_features())))


@pytest.fixture
def ring_index() -> SpatialIndex:
    return SpatialIndex(build_dataset("2digit", collection(ring_features())))


@pytest.fixture
def boundaries_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Write boundary files into a temp directory and point the settings at it."""
    directory = tmp_path / "boundaries"
    directory.mkdir()
    (directory / "plz-5digit.geojson").write_text(json.dumps(collection(munich_features())), encoding="utf-8")
    two_digit = [
        square("80", 11.40, 48.12, 11.65, 48.17),
        square("10", 13.37, 52.52, 13.42, 52.57),
    ]
    (directory / "plz-2digit.geojson").write_text(json.dumps(collection(two_digit)), encoding="utf-8")

    monkeypatch.setattr(settings, "boundaries_dir", directory)
    monkeypatch.setattr(settings, "data_root", tmp_path)
    load_boundary_dataset.cache_clear()
    get_spatial_index.cache_clear()
    get_engine.cache_clear()
    yield directory
    load_boundary_dataset.cache_clear()
    get_spatial_index.cache_clear()
    get_engine.cache_clear()
