"""Named version snapshots of an area."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

from ...errors import NotFound
from ...models.domain import AreaState, ChangeRecord, LayerState, TrackingState, VersionSnapshot
from ..territories.store import TerritoryStore
from .tracker import ChangeTracker

logger = logging.getLogger(__name__)


class SnapshotScheduler(Protocol):
    def schedule_snapshot(self, area_id: int, snapshot: VersionSnapshot) -> None:
        ...


@dataclass(slots=True)
class LayerComparison:
    layer_id: int
    name: str
    added_codes: list[str] = field(default_factory=list)
    removed_codes: list[str] = field(default_factory=list)
    changed_attributes: list[str] = field(default_factory=list)


@dataclass(slots=True)
class VersionComparison:
    from_version: int
    to_version: int
    added_layers: list[LayerState] = field(default_factory=list)
    removed_layers: list[LayerState] = field(default_factory=list)
    changed_layers: list[LayerComparison] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return (
            len(self.added_layers)
            + len(self.removed_layers)
            + sum(len(layer.added_codes) + len(layer.removed_codes) for layer in self.changed_layers)
        )


@dataclass(slots=True)
class RestoreResult:
    record: ChangeRecord
    branch: Optional[VersionSnapshot] = None


_COMPARED_ATTRIBUTES = ("name", "color", "opacity", "visible", "order_index")


class VersionManager:
    """Creates, lists, restores and compares snapshots of one area."""

    def __init__(
        self,
        store: TerritoryStore,
        tracker: ChangeTracker,
        *,
        autosave: Optional[SnapshotScheduler] = None,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.area_id = tracker.area_id
        self.autosave = autosave
        self._versions: dict[int, VersionSnapshot] = {}
        self._ids = itertools.count(1)

    def snapshot(self, name: Optional[str] = None, description: Optional[str] = None) -> VersionSnapshot:
        with self.tracker.exclusive():
            snapshot = self._add_version(
                self.store.export_state(self.area_id),
                name=name,
                description=description,
                change_count=self.tracker.change_count,
            )
        self._schedule(snapshot)
        logger.info("Created version %s '%s' of area %s", snapshot.version_number, snapshot.name, self.area_id)
        return snapshot

    def list_versions(self) -> list[VersionSnapshot]:
        """Versions of the area, newest first."""

        return sorted(self._versions.values(), key=lambda version: version.version_number, reverse=True)

    def get_version(self, version_id: int) -> VersionSnapshot:
        version = self._versions.get(version_id)
        if version is None:
            raise NotFound("Version", version_id)
        return version

    def restore(
        self,
        version_id: int,
        *,
        create_branch: bool = False,
        branch_name: Optional[str] = None,
    ) -> RestoreResult:
        """Replace the area with a snapshot, recorded as one undoable change.

        With ``create_branch`` the restored state is also saved as a new
        version numbered after the newest one, which becomes the current
        version. Without it the current version number is left alone.
        """

        version = self.get_version(version_id)
        branch = None
        with self.tracker.exclusive():
            if self.tracker.state is TrackingState.DIRTY:
                raise ValueError("Commit or discard pending changes before restoring a version.")
            before = self.store.export_state(self.area_id)
            self.store.replace_state(self.area_id, version.state)
            after = self.store.export_state(self.area_id)
            record = self.tracker.record_restore(
                before,
                after,
                description=f"Restored version {version.version_number}",
            )
            if create_branch:
                branch = self._add_version(
                    after,
                    name=branch_name or f"Branch from v{version.version_number}",
                    description=f"Restored from version {version.version_number}",
                    parent_version_number=version.version_number,
                    branch_name=branch_name,
                )
        if branch is not None:
            self._schedule(branch)
            logger.info(
                "Restored version %s of area %s as version %s",
                version.version_number,
                self.area_id,
                branch.version_number,
            )
        else:
            logger.info("Restored version %s of area %s", version.version_number, self.area_id)
        return RestoreResult(record=record, branch=branch)

    def _add_version(
        self,
        state: AreaState,
        *,
        name: Optional[str],
        change_count: int = 0,
        **fields,
    ) -> VersionSnapshot:
        area = self.store.get_area(self.area_id)
        version_number = max((v.version_number for v in self._versions.values()), default=0) + 1
        snapshot = VersionSnapshot(
            id=next(self._ids),
            area_id=self.area_id,
            version_number=version_number,
            state=state,
            created_at=datetime.now(timezone.utc),
            name=name or f"Version {version_number}",
            change_count=change_count,
            **fields,
        )
        self._versions[snapshot.id] = snapshot
        area.current_version_number = version_number
        return snapshot

    def _schedule(self, snapshot: VersionSnapshot) -> None:
        if self.autosave is not None:
            self.autosave.schedule_snapshot(self.area_id, snapshot)

    def compare(self, from_version_id: int, to_version_id: int) -> VersionComparison:
        source = self.get_version(from_version_id)
        target = self.get_version(to_version_id)
        old_layers = {layer.id: layer for layer in source.state.layers}
        new_layers = {layer.id: layer for layer in target.state.layers}

        comparison = VersionComparison(from_version=source.version_number, to_version=target.version_number)
        comparison.added_layers = [new_layers[i] for i in sorted(set(new_layers) - set(old_layers))]
        comparison.removed_layers = [old_layers[i] for i in sorted(set(old_layers) - set(new_layers))]

        for layer_id in sorted(set(old_layers) & set(new_layers)):
            old, new = old_layers[layer_id], new_layers[layer_id]
            change = LayerComparison(
                layer_id=layer_id,
                name=new.name,
                added_codes=sorted(set(new.codes) - set(old.codes)),
                removed_codes=sorted(set(old.codes) - set(new.codes)),
                changed_attributes=[attr for attr in _COMPARED_ATTRIBUTES if getattr(old, attr) != getattr(new, attr)],
            )
            if change.added_codes or change.removed_codes or change.changed_attributes:
                comparison.changed_layers.append(change)
        return comparison
