import asyncio

import pytest

from territory_engine.data.boundaries_repository import build_dataset
from territory_engine.services.routing.osrm_client import ApproximateRoutingProvider, estimate_drive_minutes
from territory_engine.services.selection import (
    DriveTimeSelector,
    SelectionContext,
    circle_select,
    code_list_select,
    drive_time_select,
    parse_code_input,
    point_select,
    polygon_select,
)
from territory_engine.services.spatial import SpatialIndex

from conftest import collection, square


class FakeRouting:
    """Reaches every candidate and invents one code outside the dataset."""

    def __init__(self) -> None:
        self.calls = []

    async def resolve_codes(self, origin, max_duration_minutes, candidates):
        self.calls.append((origin, max_duration_minutes, [feature.code for feature in candidates]))
        return [feature.code for feature in candidates] + ["99999"]


class GatedRouting:
    """The first call blocks until released; later calls answer immediately."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.calls = 0

    async def resolve_codes(self, origin, max_duration_minutes, candidates):
        self.calls += 1
        if self.calls == 1:
            await self.release.wait()
            return ["stale"]
        return [feature.code for feature in candidates]


def test_point_select_swallows_invalid_points(munich_index: SpatialIndex) -> None:
    ctx = SelectionContext(index=munich_index)

    assert point_select(ctx, (11.57, 48.15)) == "80331"
    assert point_select(ctx, (float("nan"), 48.15)) is None
    assert point_select(ctx, (500, 500)) is None


def test_polygon_select_returns_empty_for_degenerate_ring(munich_index: SpatialIndex) -> None:
    ctx = SelectionContext(index=munich_index)

    assert polygon_select(ctx, [(11.5, 48.1), (11.6, 48.1)]) == []
    assert sorted(polygon_select(ctx, [(11.52, 48.10), (11.60, 48.10), (11.60, 48.19), (11.52, 48.19)])) == [
        "80331",
        "80335",
    ]


def test_circle_select_converts_pixels_with_zoom(munich_index: SpatialIndex) -> None:
    center = (11.575, 48.145)
    near = SelectionContext(index=munich_index, zoom=14)
    far = SelectionContext(index=munich_index, zoom=6)

    assert circle_select(near, center, 10) == ["80331"]
    assert "10115" not in circle_select(far, center, 10)
    assert {"80331", "80333", "80335"} <= set(circle_select(far, center, 10))
    assert circle_select(far, center, -5) == []


def test_parse_code_input_splits_on_common_separators() -> None:
    assert parse_code_input("80331, 80333;80335\n10115\r\n 81241") == ["80331", "80333", "80335", "10115", "81241"]
    assert parse_code_input("   ") == []


def test_code_list_select_matches_exact_prefix_and_reports_leftovers(munich_index: SpatialIndex) -> None:
    ctx = SelectionContext(index=munich_index)

    result = code_list_select(ctx, "D-80331, 8033;10115\nabc 99999")

    assert result.codes == ["80331", "80333", "80335", "10115"]
    assert result.matches["8033"] == ["80331", "80333", "80335"]
    assert result.invalid == ["abc"]
    assert result.unmatched == ["99999"]


def test_code_list_select_truncates_longer_codes_to_granularity() -> None:
    index = SpatialIndex(build_dataset("2digit", collection([square("80", 11, 48, 12, 49)])))
    ctx = SelectionContext(index=index)

    result = code_list_select(ctx, "80331 81241")

    assert result.codes == ["80"]
    assert result.unmatched == ["81241"]


def test_drive_time_select_keeps_only_dataset_codes(munich_index: SpatialIndex) -> None:
    routing = FakeRouting()
    ctx = SelectionContext(index=munich_index, routing=routing)

    codes = asyncio.run(drive_time_select(ctx, (11.575, 48.145), 30))

    assert sorted(codes) == ["80331", "80333", "80335", "81241"]
    # Berlin is out of straight-line reach and never sent to the router
    assert "10115" not in routing.calls[0][2]


def test_drive_time_select_validates_input(munich_index: SpatialIndex) -> None:
    ctx = SelectionContext(index=munich_index, routing=FakeRouting())

    assert asyncio.run(drive_time_select(ctx, (11.575, 48.145), 0)) == []
    assert asyncio.run(drive_time_select(ctx, (11.575, 48.145), 1000)) == []
    with pytest.raises(ValueError):
        asyncio.run(drive_time_select(ctx, (11.575, 48.145), 30, granularity="2digit"))


def test_approximate_routing_uses_road_factor_and_speed(munich_index: SpatialIndex) -> None:
    provider = ApproximateRoutingProvider(road_factor=1.25, average_speed_kmh=60)
    origin = (11.575, 48.145)
    candidates = [munich_index.feature(code) for code in ("80331", "81241", "10115")]

    reachable = asyncio.run(provider.resolve_codes(origin, 20, candidates))

    assert reachable == ["80331", "81241"]
    assert estimate_drive_minutes(origin, origin) == 0


def test_drive_time_selector_discards_superseded_results(munich_index: SpatialIndex) -> None:
    routing = GatedRouting()
    selector = DriveTimeSelector(SelectionContext(index=munich_index, routing=routing))

    async def scenario():
        first = asyncio.ensure_future(selector.select("drag", (11.575, 48.145), 30))
        await asyncio.sleep(0.01)
        second = await selector.select("drag", (11.575, 48.145), 10)
        routing.release.set()
        return await first, second

    stale, latest = asyncio.run(scenario())

    assert stale is None
    assert latest is not None and "stale" not in latest
    assert "80331" in latest
