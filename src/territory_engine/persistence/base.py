"""Persistence contract used by the autosave coordinator."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from ..models.domain import AreaState, LayerDiff, VersionSnapshot


@runtime_checkable
class TerritoryPersistence(Protocol):
    """Durable store for layer assignments and version snapshots.

    Every call may fail; a write only counts as done once it returns.
    """

    async def write_diff(self, area_id: int, layer_id: int, diff: LayerDiff) -> None:
        ...

    async def write_snapshot(self, area_id: int, snapshot: VersionSnapshot) -> None:
        ...


def diff_to_dict(area_id: int, layer_id: int, diff: LayerDiff) -> dict[str, Any]:
    return {
        "area_id": area_id,
        "layer_id": layer_id,
        "added": list(diff.added),
        "removed": list(diff.removed),
    }


def state_to_dict(state: AreaState) -> dict[str, Any]:
    return {
        "area_id": state.area_id,
        "name": state.name,
        "granularity": state.granularity,
        "description": state.description,
        "layers": [
            {
                "id": layer.id,
                "name": layer.name,
                "color": layer.color,
                "opacity": layer.opacity,
                "is_visible": layer.visible,
                "order_index": layer.order_index,
                "postal_codes": list(layer.codes),
            }
            for layer in state.layers
        ],
    }


def snapshot_to_dict(snapshot: VersionSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "area_id": snapshot.area_id,
        "version_number": snapshot.version_number,
        "name": snapshot.name,
        "description": snapshot.description,
        "change_count": snapshot.change_count,
        "parent_version_number": snapshot.parent_version_number,
        "branch_name": snapshot.branch_name,
        "created_at": snapshot.created_at.isoformat(),
        "snapshot": state_to_dict(snapshot.state),
    }
