"""In-memory store of areas, layers and their region assignments."""

from __future__ import annotations

import itertools
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from ...errors import ConflictDetected, NotFound
from ...models.domain import Area, AreaState, ConflictingCode, Layer, LayerDiff, LayerState
from .conflicts import conflicts_for_assignment, detect_conflicts
from .granularity import granularity_level, migrate_codes, would_lose_data

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")
_LAYER_FIELDS = {"name", "color", "opacity", "visible", "order_index"}
MERGE_STRATEGIES = ("union", "keep-target", "keep-source")


def generate_layer_color(index: int) -> str:
    """Generate distinct colors for layers."""
    colors = [
        "#02d8e0", "#e0003e", "#38e000", "#0000c1", "#e0e005",
        "#611cc7", "#e0af00", "#13aae0", "#a4d819", "#00e0bb",
        "#e000a2", "#e000e0", "#09e0e0", "#e0002f", "#22e000",
    ]
    return colors[index % len(colors)]


@dataclass(slots=True)
class GranularityChangeResult:
    migrated_layers: int
    added_codes: int
    removed_codes: int


class TerritoryStore:
    """Holds areas, layers and assignments for the engine.

    A code may be assigned to several layers at once; that is a conflict to
    report, never an error.
    """

    def __init__(self) -> None:
        self._areas: dict[int, Area] = {}
        self._layers: dict[int, Layer] = {}
        self._assignments: dict[int, set[str]] = {}
        self._area_ids = itertools.count(1)
        self._next_layer_id = 1
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Areas
    # ------------------------------------------------------------------

    def create_area(self, name: str, granularity: str, description: Optional[str] = None) -> Area:
        name = (name or "").strip()
        if not name:
            raise ValueError("Area name must not be empty.")
        granularity_level(granularity)
        now = datetime.now(timezone.utc)
        with self._lock:
            area = Area(
                id=next(self._area_ids),
                name=name,
                granularity=granularity,
                description=description,
                created_at=now,
                updated_at=now,
            )
            self._areas[area.id] = area
        logger.info("Created area %s '%s' (%s)", area.id, area.name, granularity)
        return area

    def get_area(self, area_id: int) -> Area:
        area = self._areas.get(area_id)
        if area is None:
            raise NotFound("Area", area_id)
        return area

    def list_areas(self, include_archived: bool = False) -> list[Area]:
        return [area for area in self._areas.values() if include_archived or not area.archived]

    def update_area(self, area_id: int, *, name: Optional[str] = None, description: Optional[str] = None) -> Area:
        with self._lock:
            area = self.get_area(area_id)
            if name is not None:
                if not name.strip():
                    raise ValueError("Area name must not be empty.")
                area.name = name.strip()
            if description is not None:
                area.description = description
            area.updated_at = datetime.now(timezone.utc)
            return area

    def archive_area(self, area_id: int) -> Area:
        return self._set_archived(area_id, True)

    def restore_area(self, area_id: int) -> Area:
        return self._set_archived(area_id, False)

    def _set_archived(self, area_id: int, archived: bool) -> Area:
        with self._lock:
            area = self.get_area(area_id)
            area.archived = archived
            area.updated_at = datetime.now(timezone.utc)
            return area

    # ------------------------------------------------------------------
    # Layers
    # ------------------------------------------------------------------

    def create_layer(
        self,
        area_id: int,
        name: str,
        *,
        color: Optional[str] = None,
        opacity: int = 70,
        visible: bool = True,
        order_index: Optional[int] = None,
    ) -> Layer:
        with self._lock:
            self.get_area(area_id)
            existing = self.list_layers(area_id)
            if order_index is None:
                order_index = max((layer.order_index for layer in existing), default=-1) + 1
            layer = Layer(
                id=self._next_layer_id,
                area_id=area_id,
                name=name,
                color=color or generate_layer_color(len(existing)),
                opacity=opacity,
                visible=visible,
                order_index=order_index,
            )
            _validate_layer(layer)
            self._next_layer_id += 1
            self._layers[layer.id] = layer
            self._assignments[layer.id] = set()
        logger.info("Created layer %s '%s' in area %s", layer.id, layer.name, area_id)
        return layer

    def get_layer(self, layer_id: int) -> Layer:
        layer = self._layers.get(layer_id)
        if layer is None:
            raise NotFound("Layer", layer_id)
        return layer

    def list_layers(self, area_id: int) -> list[Layer]:
        return sorted(
            (layer for layer in self._layers.values() if layer.area_id == area_id),
            key=lambda layer: (layer.order_index, layer.id),
        )

    def update_layer(self, layer_id: int, **changes: Any) -> Layer:
        unknown = set(changes) - _LAYER_FIELDS
        if unknown:
            raise ValueError(f"Unknown layer field(s): {', '.join(sorted(unknown))}")
        with self._lock:
            layer = self.get_layer(layer_id)
            candidate = Layer(**{**_layer_fields(layer), **{k: v for k, v in changes.items() if v is not None}})
            _validate_layer(candidate)
            for key, value in changes.items():
                if value is not None:
                    setattr(layer, key, value)
            return layer

    def delete_layer(self, layer_id: int) -> Layer:
        with self._lock:
            layer = self.get_layer(layer_id)
            del self._layers[layer_id]
            self._assignments.pop(layer_id, None)
        logger.info("Deleted layer %s from area %s", layer_id, layer.area_id)
        return layer

    def reorder_layers(self, area_id: int, ordered_ids: Sequence[int]) -> list[Layer]:
        with self._lock:
            current = {layer.id for layer in self.list_layers(area_id)}
            if set(ordered_ids) != current or len(ordered_ids) != len(current):
                raise ValueError("Layer order must list every layer of the area exactly once.")
            for position, layer_id in enumerate(ordered_ids):
                self._layers[layer_id].order_index = position
            return self.list_layers(area_id)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def layer_codes(self, layer_id: int) -> frozenset[str]:
        self.get_layer(layer_id)
        return frozenset(self._assignments.get(layer_id, ()))

    def assign(self, layer_id: int, codes: Iterable[str]) -> list[str]:
        """Add codes to a layer; returns the codes that were not present yet."""

        with self._lock:
            assigned = self._assignment_set(layer_id)
            changed = [code for code in dict.fromkeys(codes) if code not in assigned]
            assigned.update(changed)
            return changed

    def unassign(self, layer_id: int, codes: Iterable[str]) -> list[str]:
        """Remove codes from a layer; returns the codes that were present."""

        with self._lock:
            assigned = self._assignment_set(layer_id)
            changed = [code for code in dict.fromkeys(codes) if code in assigned]
            assigned.difference_update(changed)
            return changed

    def apply_diff(self, diff: LayerDiff) -> LayerDiff:
        """Apply a diff and return the part of it that actually changed state."""

        with self._lock:
            removed = self.unassign(diff.layer_id, diff.removed)
            added = self.assign(diff.layer_id, diff.added)
            return LayerDiff(diff.layer_id, added=tuple(added), removed=tuple(removed))

    def diff_for(self, layer_id: int, added: Iterable[str] = (), removed: Iterable[str] = ()) -> LayerDiff:
        """Diff of a requested change relative to the current assignment."""

        assigned = self.layer_codes(layer_id)
        removed_codes = [code for code in dict.fromkeys(removed) if code in assigned]
        removed_set = set(removed_codes)
        added_codes = [
            code for code in dict.fromkeys(added) if code not in assigned and code not in removed_set
        ]
        return LayerDiff(layer_id, added=tuple(added_codes), removed=tuple(removed_codes))

    def _assignment_set(self, layer_id: int) -> set[str]:
        self.get_layer(layer_id)
        return self._assignments.setdefault(layer_id, set())

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def detect_conflicts(self, layers: Sequence[Layer]) -> list[ConflictingCode]:
        return detect_conflicts(layers, self._assignments)

    def area_conflicts(self, area_id: int) -> list[ConflictingCode]:
        self.get_area(area_id)
        return self.detect_conflicts(self.list_layers(area_id))

    def assignment_conflicts(self, layer_id: int, codes: Iterable[str]) -> Optional[ConflictDetected]:
        layer = self.get_layer(layer_id)
        others = {other.id: self._assignments.get(other.id, ()) for other in self.list_layers(layer.area_id)}
        return conflicts_for_assignment(layer_id, codes, others)

    # ------------------------------------------------------------------
    # Merge and split
    # ------------------------------------------------------------------

    def merged_codes(self, source_ids: Sequence[int], target_id: int, strategy: str = "union") -> set[str]:
        """Target assignment that merging ``source_ids`` into ``target_id`` would produce."""

        if strategy not in MERGE_STRATEGIES:
            raise ValueError(f"Unknown merge strategy '{strategy}'. Use one of: {', '.join(MERGE_STRATEGIES)}")
        target = self.get_layer(target_id)
        sources = [self.get_layer(layer_id) for layer_id in source_ids if layer_id != target_id]
        if not sources:
            raise ValueError("No source layers to merge.")
        if any(source.area_id != target.area_id for source in sources):
            raise ValueError("Layers can only be merged within one area.")

        target_codes = set(self._assignments.get(target_id, ()))
        source_codes: set[str] = set()
        for source in sources:
            source_codes.update(self._assignments.get(source.id, ()))

        if strategy == "union":
            return target_codes | source_codes
        if strategy == "keep-target":
            return target_codes
        return source_codes

    def merge_layers(self, source_ids: Sequence[int], target_id: int, strategy: str = "union") -> LayerDiff:
        """Merge source layers into the target; source layers are left untouched."""

        with self._lock:
            merged = self.merged_codes(source_ids, target_id, strategy)
            current = self._assignment_set(target_id)
            diff = self.diff_for(target_id, added=sorted(merged - current), removed=sorted(current - merged))
            return self.apply_diff(diff)

    def split_layer(self, source_id: int, codes: Iterable[str], name: str) -> tuple[Layer, LayerDiff]:
        """Move ``codes`` out of a layer into a new layer called ``name``."""

        with self._lock:
            source = self.get_layer(source_id)
            moving = [code for code in dict.fromkeys(codes) if code in self._assignment_set(source_id)]
            if not moving:
                raise ValueError(f"None of the given codes are assigned to layer {source_id}.")
            layer = self.create_layer(source.area_id, name)
            removed = self.apply_diff(LayerDiff(source_id, removed=tuple(moving)))
            self.assign(layer.id, moving)
            return layer, removed

    # ------------------------------------------------------------------
    # Whole-area state
    # ------------------------------------------------------------------

    def export_state(self, area_id: int) -> AreaState:
        area = self.get_area(area_id)
        return AreaState(
            area_id=area.id,
            name=area.name,
            granularity=area.granularity,
            description=area.description,
            layers=tuple(
                LayerState(
                    id=layer.id,
                    name=layer.name,
                    color=layer.color,
                    opacity=layer.opacity,
                    visible=layer.visible,
                    order_index=layer.order_index,
                    codes=tuple(sorted(self._assignments.get(layer.id, ()))),
                )
                for layer in self.list_layers(area_id)
            ),
        )

    def replace_state(self, area_id: int, state: AreaState) -> None:
        """Replace an area's layers and assignments wholesale.

        Layers are recreated with their captured ids. Either everything is
        replaced or, on error, nothing is.
        """

        with self._lock:
            area = self.get_area(area_id)
            foreign = [
                layer.id
                for layer in state.layers
                if layer.id in self._layers and self._layers[layer.id].area_id != area_id
            ]
            if foreign:
                raise ValueError(f"Layer id(s) {foreign} belong to another area.")

            new_layers: dict[int, Layer] = {}
            new_assignments: dict[int, set[str]] = {}
            for captured in state.layers:
                layer = Layer(
                    id=captured.id,
                    area_id=area_id,
                    name=captured.name,
                    color=captured.color,
                    opacity=captured.opacity,
                    visible=captured.visible,
                    order_index=captured.order_index,
                )
                _validate_layer(layer)
                new_layers[layer.id] = layer
                new_assignments[layer.id] = set(captured.codes)

            for layer in self.list_layers(area_id):
                del self._layers[layer.id]
                self._assignments.pop(layer.id, None)
            self._layers.update(new_layers)
            self._assignments.update(new_assignments)
            if new_layers:
                self._next_layer_id = max(self._next_layer_id, max(new_layers) + 1)

            area.name = state.name
            area.description = state.description
            area.granularity = state.granularity
            area.updated_at = datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Granularity
    # ------------------------------------------------------------------

    def change_granularity(
        self,
        area_id: int,
        new_granularity: str,
        target_codes: Iterable[str],
        *,
        force: bool = False,
    ) -> GranularityChangeResult:
        """Move an area to another granularity and migrate its assignments.

        Moving to a coarser granularity drops every assignment and is refused
        unless ``force`` is set.
        """

        with self._lock:
            area = self.get_area(area_id)
            layers = self.list_layers(area_id)
            has_codes = any(self._assignments.get(layer.id) for layer in layers)
            if would_lose_data(area.granularity, new_granularity, has_codes) and not force:
                raise ValueError(
                    f"Changing area {area_id} from {area.granularity} to {new_granularity} would remove all assignments."
                )

            target = list(target_codes)
            migrated = added = removed = 0
            for layer in layers:
                before = self._assignments.get(layer.id, set())
                after = set(migrate_codes(before, area.granularity, new_granularity, target))
                if after != before:
                    migrated += 1
                    added += len(after - before)
                    removed += len(before - after)
                self._assignments[layer.id] = after
            area.granularity = new_granularity
            area.updated_at = datetime.now(timezone.utc)

        logger.info(
            "Changed area %s to %s: %d layer(s) migrated, +%d/-%d codes",
            area_id,
            new_granularity,
            migrated,
            added,
            removed,
        )
        return GranularityChangeResult(migrated_layers=migrated, added_codes=added, removed_codes=removed)


def _layer_fields(layer: Layer) -> dict[str, Any]:
    return {
        "id": layer.id,
        "area_id": layer.area_id,
        "name": layer.name,
        "color": layer.color,
        "opacity": layer.opacity,
        "visible": layer.visible,
        "order_index": layer.order_index,
    }


def _validate_layer(layer: Layer) -> None:
    if not layer.name or not layer.name.strip():
        raise ValueError("Layer name must not be empty.")
    if not _HEX_COLOR.match(layer.color):
        raise ValueError(f"Layer color '{layer.color}' is not a #rrggbb value.")
    if not 0 <= layer.opacity <= 100:
        raise ValueError(f"Layer opacity must be between 0 and 100, got {layer.opacity}.")
