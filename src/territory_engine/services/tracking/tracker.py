"""Undoable change tracking for one area."""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, Protocol

from ...config import settings
from ...errors import NoHistory, NotFound
from ...models.domain import AreaState, ChangeRecord, Layer, LayerDiff, TrackingState, UndoRedoStatus
from ..autosave.queue import merge_diffs
from ..territories.store import TerritoryStore

logger = logging.getLogger(__name__)


class DiffScheduler(Protocol):
    def schedule(self, area_id: int, layer_id: int, diff: LayerDiff) -> None:
        ...


def state_diffs(before: AreaState, after: AreaState) -> list[LayerDiff]:
    """Per-layer diffs that turn the assignments of ``before`` into ``after``."""

    old = before.codes_by_layer()
    new = after.codes_by_layer()
    diffs = []
    for layer_id in sorted(set(old) | set(new)):
        previous = old.get(layer_id, frozenset())
        current = new.get(layer_id, frozenset())
        diff = LayerDiff(layer_id, added=tuple(sorted(current - previous)), removed=tuple(sorted(previous - current)))
        if not diff.is_empty:
            diffs.append(diff)
    return diffs


class ChangeTracker:
    """Stages, commits, undoes and redoes assignment changes of one area.

    Changes go through two phases. :meth:`mutate` applies a change to the
    store tentatively; :meth:`commit` turns the staged changes into undoable
    records and hands them to the autosave scheduler. Once a write is known
    to be durable the caller :meth:`confirm`\\s the record, or
    :meth:`compensate`\\s it when the write failed.
    """

    def __init__(
        self,
        store: TerritoryStore,
        area_id: int,
        *,
        autosave: Optional[DiffScheduler] = None,
        max_depth: Optional[int] = None,
    ) -> None:
        self.store = store
        self.area_id = area_id
        self.autosave = autosave
        self.max_depth = max_depth or settings.undo_stack_depth
        self._undo: deque[ChangeRecord] = deque(maxlen=self.max_depth)
        self._redo: list[ChangeRecord] = []
        self._staged: dict[int, LayerDiff] = {}
        self._log: deque[ChangeRecord] = deque(maxlen=max(settings.change_log_limit, self.max_depth))
        self._change_count = 0
        self._ids = itertools.count(1)
        self._state = TrackingState.CLEAN
        self._lock = threading.RLock()

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def staged(self) -> dict[int, LayerDiff]:
        return dict(self._staged)

    @property
    def change_count(self) -> int:
        return self._change_count

    # ------------------------------------------------------------------
    # Phase one: tentative changes
    # ------------------------------------------------------------------

    def mutate(self, layer_id: int, added: Iterable[str] = (), removed: Iterable[str] = ()) -> LayerDiff:
        """Apply a change tentatively and return what actually changed."""

        with self._lock:
            layer = self.store.get_layer(layer_id)
            if layer.area_id != self.area_id:
                raise ValueError(f"Layer {layer_id} does not belong to area {self.area_id}.")
            diff = self.store.apply_diff(self.store.diff_for(layer_id, added=added, removed=removed))
            if diff.is_empty:
                return diff

            staged = self._staged.get(layer_id)
            merged = merge_diffs(staged, diff) if staged else diff
            if merged.is_empty:
                self._staged.pop(layer_id, None)
            else:
                self._staged[layer_id] = merged
            if self._staged:
                self._state = TrackingState.DIRTY
            return diff

    def commit(self, description: Optional[str] = None) -> list[ChangeRecord]:
        """Record every staged layer change and request persistence."""

        with self._lock:
            if not self._staged:
                return []
            records = []
            for layer_id, diff in sorted(self._staged.items()):
                record = self._new_record(
                    layer_id=layer_id,
                    added=diff.added,
                    removed=diff.removed,
                    description=description,
                )
                self._push_undo(record)
                records.append(record)
                self._persist(diff)
            self._staged.clear()
            self._redo.clear()
            self._state = TrackingState.SAVED
        logger.info("Committed %d change(s) in area %s", len(records), self.area_id)
        return records

    def discard(self) -> None:
        """Revert every staged change."""

        with self._lock:
            for diff in self._staged.values():
                self.store.apply_diff(diff.inverse())
            self._staged.clear()
            self._state = TrackingState.CLEAN

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------

    def undo(self) -> ChangeRecord:
        with self._lock:
            self._ensure_nothing_staged("undo")
            if not self._undo:
                raise NoHistory("Nothing to undo.")
            record = self._undo[-1]
            self._revert(record)
            self._undo.pop()
            self._redo.append(record)
            self._state = TrackingState.SAVED
        logger.info("Undid change %s in area %s", record.id, self.area_id)
        return record

    def redo(self) -> ChangeRecord:
        with self._lock:
            self._ensure_nothing_staged("redo")
            if not self._redo:
                raise NoHistory("Nothing to redo.")
            record = self._redo[-1]
            self._reapply(record)
            self._redo.pop()
            self._push_undo(record)
            self._state = TrackingState.SAVED
        logger.info("Redid change %s in area %s", record.id, self.area_id)
        return record

    def status(self) -> UndoRedoStatus:
        with self._lock:
            return UndoRedoStatus(
                can_undo=bool(self._undo),
                can_redo=bool(self._redo),
                undo_count=len(self._undo),
                redo_count=len(self._redo),
                state=self._state,
            )

    def history(self, limit: Optional[int] = None) -> list[ChangeRecord]:
        """Committed records, newest first.

        Only the most recent ``settings.change_log_limit`` records are kept.
        """

        records = list(reversed(self._log))
        return records if limit is None else records[:limit]

    def delete_layer(self, layer_id: int) -> Layer:
        """Delete a layer and forget its assignment records.

        The layer's codes are removed from storage. Whole-area records keep
        the layer in their captured states, so undoing one of them brings the
        layer back.
        """

        with self._lock:
            self._ensure_nothing_staged("deleting a layer")
            layer = self.store.get_layer(layer_id)
            if layer.area_id != self.area_id:
                raise ValueError(f"Layer {layer_id} does not belong to area {self.area_id}.")
            codes = sorted(self.store.layer_codes(layer_id))
            self.store.delete_layer(layer_id)

            def keep(record: ChangeRecord) -> bool:
                return record.kind == "restore" or record.layer_id != layer_id

            forgotten = sum(1 for record in (*self._undo, *self._redo) if not keep(record))
            self._undo = deque(filter(keep, self._undo), maxlen=self.max_depth)
            self._redo = [record for record in self._redo if keep(record)]
            self._persist(LayerDiff(layer_id, removed=tuple(codes)))
        logger.info("Deleted layer %s of area %s, dropped %d undoable change(s)", layer_id, self.area_id, forgotten)
        return layer

    # ------------------------------------------------------------------
    # Whole-area replacement
    # ------------------------------------------------------------------

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the tracker lock; undo and redo wait until it is released."""

        with self._lock:
            yield

    def record_restore(self, before: AreaState, after: AreaState, description: Optional[str] = None) -> ChangeRecord:
        """Record a wholesale replacement that has already been applied to the store."""

        with self._lock:
            record = self._new_record(
                layer_id=None,
                kind="restore",
                description=description,
                before=before,
                after=after,
            )
            self._push_undo(record)
            self._redo.clear()
            for diff in state_diffs(before, after):
                self._persist(diff)
            self._state = TrackingState.SAVED
            return record

    # ------------------------------------------------------------------
    # Phase two: durability
    # ------------------------------------------------------------------

    def confirm(self, change_id: int) -> ChangeRecord:
        """Mark a record as durably written."""

        with self._lock:
            record = self._find(change_id)
            record.confirmed = True
            return record

    def compensate(self, change_id: int) -> ChangeRecord:
        """Undo a record whose write failed, without persisting the inverse.

        The record leaves the undo and redo stacks; a ``compensation`` record
        is added to the history instead.
        """

        with self._lock:
            record = self._find(change_id)
            if record.confirmed:
                raise ValueError(f"Change {change_id} is already confirmed and cannot be compensated.")
            if record.kind == "compensation":
                raise ValueError(f"Change {change_id} is itself a compensation.")

            on_undo_stack = record in self._undo
            if on_undo_stack:
                if record.kind == "restore":
                    self.store.replace_state(self.area_id, record.before)
                else:
                    self.store.apply_diff(record.diff.inverse())
                self._undo.remove(record)
            if record in self._redo:
                self._redo.remove(record)

            compensation = self._new_record(
                layer_id=record.layer_id,
                kind="compensation",
                added=record.removed if on_undo_stack else (),
                removed=record.added if on_undo_stack else (),
                description=f"Compensates change {record.id}",
            )
            compensation.confirmed = True
        logger.warning("Compensated change %s in area %s", change_id, self.area_id)
        return compensation

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_record(self, *, layer_id: Optional[int], **fields) -> ChangeRecord:
        record = ChangeRecord(
            id=next(self._ids),
            area_id=self.area_id,
            layer_id=layer_id,
            timestamp=datetime.now(timezone.utc),
            **fields,
        )
        self._log.append(record)
        if record.kind != "compensation":
            self._change_count += 1
        return record

    def _push_undo(self, record: ChangeRecord) -> None:
        if len(self._undo) == self._undo.maxlen:
            logger.debug("Undo stack full, dropping change %s", self._undo[0].id)
        self._undo.append(record)

    def _revert(self, record: ChangeRecord) -> None:
        if record.kind == "restore":
            self.store.replace_state(self.area_id, record.before)
            for diff in state_diffs(record.after, record.before):
                self._persist(diff)
        else:
            self._persist(self.store.apply_diff(record.diff.inverse()))

    def _reapply(self, record: ChangeRecord) -> None:
        if record.kind == "restore":
            self.store.replace_state(self.area_id, record.after)
            for diff in state_diffs(record.before, record.after):
                self._persist(diff)
        else:
            self._persist(self.store.apply_diff(record.diff))

    def _persist(self, diff: LayerDiff) -> None:
        if self.autosave is not None and not diff.is_empty:
            self.autosave.schedule(self.area_id, diff.layer_id, diff)

    def _find(self, change_id: int) -> ChangeRecord:
        for record in (*self._log, *self._undo, *self._redo):
            if record.id == change_id:
                return record
        raise NotFound("Change", change_id)

    def _ensure_nothing_staged(self, action: str) -> None:
        if self._staged:
            raise ValueError(f"Commit or discard pending changes before {action}.")
