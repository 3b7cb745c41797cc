"""Area sessions and the engine registry used by the HTTP layer."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Iterable, Optional

from ..config import settings
from ..data.boundaries_repository import load_boundary_dataset
from ..errors import ConflictDetected
from ..models.domain import Area, ChangeRecord, Layer, TrackingState
from ..persistence.base import TerritoryPersistence
from .autosave import AutosaveCoordinator
from .routing.osrm_client import RoutingProvider
from .selection import SelectionContext
from .spatial import SpatialIndex, Unproject, find_holes
from .territories import GranularityChangeResult, TerritoryStore
from .tracking import ChangeTracker, VersionManager

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def get_spatial_index(granularity: str) -> SpatialIndex:
    """Build (once) the spatial index for a granularity."""

    return SpatialIndex(load_boundary_dataset(granularity))


def get_persistence(backend: Optional[str] = None) -> TerritoryPersistence:
    backend = backend or settings.persistence_backend
    if backend == "supabase":
        from ..persistence.database import SupabasePersistence

        return SupabasePersistence()
    if backend == "journal":
        from ..persistence.filesystem import JournalPersistence

        return JournalPersistence()
    raise ValueError(f"Unknown persistence backend '{backend}'.")


class AreaSession:
    """Single-writer working context for one area.

    Every assignment change goes through the session's tracker, so it is
    undoable and reaches the autosave coordinator.
    """

    def __init__(
        self,
        store: TerritoryStore,
        area_id: int,
        *,
        autosave: Optional[AutosaveCoordinator] = None,
        max_depth: Optional[int] = None,
    ) -> None:
        store.get_area(area_id)
        self.store = store
        self.area_id = area_id
        self.autosave = autosave
        self.tracker = ChangeTracker(store, area_id, autosave=autosave, max_depth=max_depth)
        self.versions = VersionManager(store, self.tracker, autosave=autosave)

    @property
    def area(self) -> Area:
        return self.store.get_area(self.area_id)

    def layers(self) -> list[Layer]:
        return self.store.list_layers(self.area_id)

    def index(self) -> SpatialIndex:
        return get_spatial_index(self.area.granularity)

    def selection_context(
        self,
        zoom: float = 6.0,
        unproject: Optional[Unproject] = None,
        routing: Optional[RoutingProvider] = None,
    ) -> SelectionContext:
        return SelectionContext(index=self.index(), zoom=zoom, unproject=unproject, routing=routing)

    def assign(
        self,
        layer_id: int,
        codes: Iterable[str],
        description: Optional[str] = None,
    ) -> tuple[list[ChangeRecord], Optional[ConflictDetected]]:
        codes = list(codes)
        conflict = self.store.assignment_conflicts(layer_id, codes)
        if conflict is not None:
            logger.info("%s", conflict.message)
        self.tracker.mutate(layer_id, added=codes)
        return self.tracker.commit(description), conflict

    def unassign(self, layer_id: int, codes: Iterable[str], description: Optional[str] = None) -> list[ChangeRecord]:
        self.tracker.mutate(layer_id, removed=codes)
        return self.tracker.commit(description)

    def merge_layers(self, source_ids: list[int], target_id: int, strategy: str = "union") -> list[ChangeRecord]:
        merged = self.store.merged_codes(source_ids, target_id, strategy)
        current = self.store.layer_codes(target_id)
        self.tracker.mutate(target_id, added=sorted(merged - current), removed=sorted(current - merged))
        return self.tracker.commit(f"Merged layers {source_ids} into {target_id} ({strategy})")

    def split_layer(self, source_id: int, codes: Iterable[str], name: str) -> tuple[Layer, ChangeRecord]:
        """Move codes into a new layer; one undo removes the new layer again."""

        with self.tracker.exclusive():
            if self.tracker.state is TrackingState.DIRTY:
                raise ValueError("Commit or discard pending changes before splitting a layer.")
            if self.store.get_layer(source_id).area_id != self.area_id:
                raise ValueError(f"Layer {source_id} does not belong to area {self.area_id}.")
            before = self.store.export_state(self.area_id)
            layer, removed = self.store.split_layer(source_id, codes, name)
            after = self.store.export_state(self.area_id)
            record = self.tracker.record_restore(
                before,
                after,
                description=f"Split {len(removed.removed)} code(s) from layer {source_id} into '{layer.name}'",
            )
        return layer, record

    def delete_layer(self, layer_id: int) -> Layer:
        return self.tracker.delete_layer(layer_id)

    def holes(self, layer_id: Optional[int] = None) -> list[str]:
        """Unassigned regions enclosed by a layer, or by all layers of the area."""

        if layer_id is not None:
            selected: set[str] = set(self.store.layer_codes(layer_id))
        else:
            selected = set()
            for layer in self.layers():
                selected.update(self.store.layer_codes(layer.id))
        return find_holes(self.index(), selected)

    def change_granularity(self, new_granularity: str, *, force: bool = False) -> GranularityChangeResult:
        """Switch granularity; recorded as one undoable whole-area change."""

        target_codes = get_spatial_index(new_granularity).codes()
        with self.tracker.exclusive():
            if self.tracker.state is TrackingState.DIRTY:
                raise ValueError("Commit or discard pending changes before changing granularity.")
            previous = self.area.granularity
            before = self.store.export_state(self.area_id)
            result = self.store.change_granularity(self.area_id, new_granularity, target_codes, force=force)
            after = self.store.export_state(self.area_id)
            self.tracker.record_restore(before, after, description=f"Granularity {previous} -> {new_granularity}")
        return result


class TerritoryEngine:
    """Owns the store, the autosave coordinator and one session per area."""

    def __init__(
        self,
        store: Optional[TerritoryStore] = None,
        persistence: Optional[TerritoryPersistence] = None,
        *,
        autosave: Optional[AutosaveCoordinator] = None,
    ) -> None:
        self.store = store or TerritoryStore()
        self.autosave = autosave or AutosaveCoordinator(persistence or get_persistence())
        self._sessions: dict[int, AreaSession] = {}

    def create_area(self, name: str, granularity: str, description: Optional[str] = None) -> AreaSession:
        area = self.store.create_area(name, granularity, description)
        return self.session(area.id)

    def session(self, area_id: int) -> AreaSession:
        session = self._sessions.get(area_id)
        if session is None:
            session = AreaSession(self.store, area_id, autosave=self.autosave)
            self._sessions[area_id] = session
        return session

    async def start(self) -> None:
        self.autosave.start()

    async def stop(self) -> None:
        await self.autosave.stop()


@lru_cache()
def get_engine() -> TerritoryEngine:
    return TerritoryEngine()
