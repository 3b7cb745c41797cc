import pytest

from territory_engine.errors import NotFound
from territory_engine.models.domain import LayerDiff
from territory_engine.services.territories import TerritoryStore
from territory_engine.services.territories.granularity import (
    convert_code,
    is_change_compatible,
    migrate_codes,
    would_lose_data,
)


@pytest.fixture
def store() -> TerritoryStore:
    return TerritoryStore()


def _area_with_layers(store: TerritoryStore, *names: str):
    area = store.create_area("Bavaria", "5digit")
    return area, [store.create_layer(area.id, name) for name in names]


def test_assign_is_idempotent(store: TerritoryStore) -> None:
    _, (north,) = _area_with_layers(store, "North")

    assert store.assign(north.id, ["80331", "80333", "80331"]) == ["80331", "80333"]
    assert store.assign(north.id, ["80331", "80333"]) == []
    assert store.layer_codes(north.id) == frozenset({"80331", "80333"})


def test_assign_then_unassign_restores_state(store: TerritoryStore) -> None:
    _, (north,) = _area_with_layers(store, "North")
    store.assign(north.id, ["10115"])
    before = store.layer_codes(north.id)

    added = store.assign(north.id, ["80331", "80333"])
    removed = store.unassign(north.id, added)

    assert removed == ["80331", "80333"]
    assert store.layer_codes(north.id) == before
    assert store.unassign(north.id, ["99999"]) == []


def test_apply_diff_reports_only_effective_changes(store: TerritoryStore) -> None:
    _, (north,) = _area_with_layers(store, "North")
    store.assign(north.id, ["80331"])

    applied = store.apply_diff(LayerDiff(north.id, added=("80331", "80333"), removed=("10115",)))

    assert applied == LayerDiff(north.id, added=("80333",), removed=())


def test_detect_conflicts_lists_codes_with_several_owners(store: TerritoryStore) -> None:
    area, (north, south, east) = _area_with_layers(store, "North", "South", "East")
    store.assign(north.id, ["80331", "80333"])
    store.assign(south.id, ["80333", "81241"])
    store.assign(east.id, ["81241", "80333"])

    conflicts = store.area_conflicts(area.id)

    assert [conflict.code for conflict in conflicts] == ["80333", "81241"]
    assert [owner.name for owner in conflicts[0].layers] == ["North", "South", "East"]
    assert {owner.id for owner in conflicts[1].layers} == {south.id, east.id}
    assert store.detect_conflicts([north]) == []
    assert store.detect_conflicts([north, north]) == []
    (shared,) = store.detect_conflicts([north, south, north])
    assert [owner.name for owner in shared.layers] == ["North", "South"]


def test_assignment_conflicts_is_informational(store: TerritoryStore) -> None:
    _, (north, south) = _area_with_layers(store, "North", "South")
    store.assign(north.id, ["80331"])

    notice = store.assignment_conflicts(south.id, ["80331", "80333"])
    store.assign(south.id, ["80331", "80333"])

    assert notice is not None and list(notice.codes) == ["80331"]
    assert "80331" in store.layer_codes(south.id)


def test_layer_validation(store: TerritoryStore) -> None:
    area = store.create_area("Bavaria", "5digit")

    with pytest.raises(ValueError):
        store.create_layer(area.id, "  ")
    with pytest.raises(ValueError):
        store.create_layer(area.id, "North", color="red")
    with pytest.raises(ValueError):
        store.create_layer(area.id, "North", opacity=101)

    layer = store.create_layer(area.id, "North", color="#112233")
    with pytest.raises(ValueError):
        store.update_layer(layer.id, opacity=-1)
    assert store.get_layer(layer.id).opacity == 70
    assert store.update_layer(layer.id, name="Nord", visible=False).name == "Nord"


def test_missing_entities_raise_not_found(store: TerritoryStore) -> None:
    with pytest.raises(NotFound):
        store.get_area(42)
    with pytest.raises(NotFound):
        store.assign(42, ["80331"])


def test_layers_are_listed_by_order_and_can_be_reordered(store: TerritoryStore) -> None:
    area, (a, b, c) = _area_with_layers(store, "A", "B", "C")

    assert [layer.name for layer in store.list_layers(area.id)] == ["A", "B", "C"]
    assert [layer.name for layer in store.reorder_layers(area.id, [c.id, a.id, b.id])] == ["C", "A", "B"]
    with pytest.raises(ValueError):
        store.reorder_layers(area.id, [a.id, b.id])


def test_archive_and_restore_area(store: TerritoryStore) -> None:
    area = store.create_area("Bavaria", "5digit")

    store.archive_area(area.id)
    assert store.list_areas() == []
    assert store.list_areas(include_archived=True) == [area]

    store.restore_area(area.id)
    assert store.list_areas() == [area]


@pytest.mark.parametrize(
    ("strategy", "expected"),
    [
        ("union", {"80331", "80333", "81241"}),
        ("keep-target", {"80331"}),
        ("keep-source", {"80333", "81241"}),
    ],
)
def test_merge_strategies(store: TerritoryStore, strategy: str, expected: set) -> None:
    _, (target, first, second) = _area_with_layers(store, "Target", "First", "Second")
    store.assign(target.id, ["80331"])
    store.assign(first.id, ["80333"])
    store.assign(second.id, ["81241", "80333"])

    store.merge_layers([first.id, second.id], target.id, strategy)

    assert store.layer_codes(target.id) == expected
    assert store.layer_codes(first.id) == frozenset({"80333"})


def test_merge_rejects_unknown_strategy(store: TerritoryStore) -> None:
    _, (target, source) = _area_with_layers(store, "Target", "Source")

    with pytest.raises(ValueError):
        store.merge_layers([source.id], target.id, "intersection")


def test_split_layer_moves_codes_into_new_layer(store: TerritoryStore) -> None:
    area, (source,) = _area_with_layers(store, "Source")
    store.assign(source.id, ["80331", "80333", "81241"])

    layer, diff = store.split_layer(source.id, ["80333", "10115"], "Split")

    assert diff.removed == ("80333",)
    assert store.layer_codes(source.id) == frozenset({"80331", "81241"})
    assert store.layer_codes(layer.id) == frozenset({"80333"})
    assert layer.area_id == area.id


def test_export_and_replace_state_round_trip(store: TerritoryStore) -> None:
    area, (north, south) = _area_with_layers(store, "North", "South")
    store.assign(north.id, ["80331"])
    store.assign(south.id, ["81241"])
    state = store.export_state(area.id)

    store.delete_layer(south.id)
    store.assign(north.id, ["80333"])
    store.create_layer(area.id, "Extra")
    store.replace_state(area.id, state)

    assert store.export_state(area.id) == state
    assert store.layer_codes(south.id) == frozenset({"81241"})


def test_granularity_helpers() -> None:
    assert convert_code("80331", "2digit") == "80"
    assert convert_code("80331", "5digit") == "80331"
    assert is_change_compatible("2digit", "5digit")
    assert not is_change_compatible("5digit", "2digit")
    assert would_lose_data("5digit", "2digit", has_codes=True)
    assert not would_lose_data("5digit", "2digit", has_codes=False)
    assert migrate_codes(["80"], "2digit", "5digit", ["80331", "80333", "10115"]) == ["80331", "80333"]
    assert migrate_codes(["80331"], "5digit", "2digit", ["80"]) == []


def test_change_granularity_refuses_lossy_change_unless_forced(store: TerritoryStore) -> None:
    area, (north,) = _area_with_layers(store, "North")
    store.assign(north.id, ["80331"])

    with pytest.raises(ValueError):
        store.change_granularity(area.id, "2digit", ["80"])
    assert store.get_area(area.id).granularity == "5digit"

    result = store.change_granularity(area.id, "2digit", ["80"], force=True)
    assert result.removed_codes == 1
    assert store.layer_codes(north.id) == frozenset()


def test_change_granularity_expands_codes_when_finer(store: TerritoryStore) -> None:
    area = store.create_area("Germany", "2digit")
    layer = store.create_layer(area.id, "South")
    store.assign(layer.id, ["80"])

    result = store.change_granularity(area.id, "5digit", ["80331", "80333", "10115"])

    assert store.layer_codes(layer.id) == frozenset({"80331", "80333"})
    assert result.migrated_layers == 1
    assert store.get_area(area.id).granularity == "5digit"
