"""Debounced, per-layer serialised persistence of committed changes."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from ...config import settings
from ...errors import PersistenceFailure
from ...models.domain import LayerDiff, VersionSnapshot
from ...persistence.base import TerritoryPersistence
from .queue import DebounceQueue, merge_diffs

logger = logging.getLogger(__name__)

WriteKey = tuple[int, int]
"""(area_id, layer_id)."""


class AutosaveCoordinator:
    """Turns a stream of layer diffs into debounced writes.

    * Diffs for one layer arriving within ``window`` seconds are merged and
      written once.
    * At most one write per layer is in flight; diffs arriving meanwhile stay
      queued and are merged.
    * Writes for different layers run concurrently.
    * A failed write is recorded in :attr:`failures` and reported to
      ``on_failure``. It is only written again through :meth:`retry`.
      Later diffs for that layer stay queued until then, so writes never
      reach storage out of order.
    """

    def __init__(
        self,
        persistence: TerritoryPersistence,
        *,
        window: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        on_failure: Optional[Callable[[PersistenceFailure], None]] = None,
    ) -> None:
        self.persistence = persistence
        self.window = settings.autosave_debounce_seconds if window is None else window
        self.clock = clock
        self.on_failure = on_failure
        self.failures: list[PersistenceFailure] = []
        self._queue = DebounceQueue(self.window)
        self._in_flight: dict[WriteKey, asyncio.Task] = {}
        self._failed: dict[WriteKey, LayerDiff] = {}
        self._snapshots: list[tuple[int, VersionSnapshot]] = []
        self._snapshot_tasks: set[asyncio.Task] = set()
        self._wakeup: Optional[asyncio.Event] = None
        self._runner: Optional[asyncio.Task] = None
        self._stopping = False

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self, area_id: int, layer_id: int, diff: LayerDiff) -> None:
        if diff.is_empty:
            return
        deadline = self._queue.push((area_id, layer_id), diff, self.clock())
        logger.debug("Queued write for layer %s of area %s (deadline %s)", layer_id, area_id, deadline)
        self._wake()

    def schedule_snapshot(self, area_id: int, snapshot: VersionSnapshot) -> None:
        """Queue a snapshot write; it is not debounced."""

        self._snapshots.append((area_id, snapshot))
        self._wake()

    @property
    def pending_layers(self) -> list[WriteKey]:
        return self._queue.pending_keys()

    @property
    def in_flight(self) -> list[WriteKey]:
        return list(self._in_flight)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def flush_due(self) -> list[asyncio.Task]:
        """Start writes for every layer whose debounce window has elapsed.

        Returns the started tasks without awaiting them.
        """

        started = self._start_snapshot_writes()
        for key in self._queue.due(self.clock(), exclude=self._blocked()):
            diff = self._queue.take(key)
            if diff is not None:
                started.append(self._start_write(key, diff))
        return started

    async def force_flush(self) -> None:
        """Write everything pending now, ignoring deadlines, and wait for it."""

        while True:
            tasks = self._start_snapshot_writes()
            blocked = self._blocked()
            for key in self._queue.pending_keys():
                if key not in blocked:
                    diff = self._queue.take(key)
                    if diff is not None:
                        tasks.append(self._start_write(key, diff))
            tasks.extend(self._in_flight.values())
            tasks.extend(self._snapshot_tasks)
            if not tasks:
                return
            await asyncio.gather(*set(tasks), return_exceptions=True)

    async def retry(self, layer_id: int, area_id: Optional[int] = None) -> bool:
        """Write a failed layer again, merged with anything queued since.

        Returns ``True`` when the write succeeded.
        """

        keys = [key for key in self._failed if key[1] == layer_id and (area_id is None or key[0] == area_id)]
        if not keys:
            raise ValueError(f"No failed write recorded for layer {layer_id}.")

        succeeded = True
        for key in keys:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                await asyncio.gather(in_flight, return_exceptions=True)
            diff = self._failed.pop(key)
            self.failures = [failure for failure in self.failures if (failure.area_id, failure.layer_id) != key]
            queued = self._queue.take(key)
            if queued is not None:
                diff = merge_diffs(diff, queued)
            if diff.is_empty:
                continue
            logger.info("Retrying write for layer %s of area %s", key[1], key[0])
            succeeded = await self._start_write(key, diff) and succeeded
        return succeeded

    def _blocked(self) -> set[WriteKey]:
        """Keys that must not be written now: in flight, or waiting for a retry."""

        return set(self._in_flight) | set(self._failed)

    def _start_write(self, key: WriteKey, diff: LayerDiff) -> asyncio.Task:
        task = asyncio.ensure_future(self._write(key, diff))
        self._in_flight[key] = task
        return task

    async def _write(self, key: WriteKey, diff: LayerDiff) -> bool:
        area_id, layer_id = key
        try:
            await self.persistence.write_diff(area_id, layer_id, diff)
        except Exception as exc:
            self._record_failure(PersistenceFailure(area_id, layer_id, diff, exc))
            return False
        else:
            logger.info(
                "Saved layer %s of area %s (+%d/-%d codes)",
                layer_id,
                area_id,
                len(diff.added),
                len(diff.removed),
            )
            return True
        finally:
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]
            if key in self._queue:
                self._wake()

    def _record_failure(self, failure: PersistenceFailure) -> None:
        key = (failure.area_id, failure.layer_id)
        if failure.diff is not None and failure.layer_id is not None:
            previous = self._failed.get(key)
            self._failed[key] = merge_diffs(previous, failure.diff) if previous else failure.diff
        self.failures.append(failure)
        logger.warning("%s", failure)
        if self.on_failure is not None:
            self.on_failure(failure)

    def _start_snapshot_writes(self) -> list[asyncio.Task]:
        started = []
        while self._snapshots:
            area_id, snapshot = self._snapshots.pop(0)
            task = asyncio.ensure_future(self._write_snapshot(area_id, snapshot))
            self._snapshot_tasks.add(task)
            task.add_done_callback(self._snapshot_tasks.discard)
            started.append(task)
        return started

    async def _write_snapshot(self, area_id: int, snapshot: VersionSnapshot) -> bool:
        try:
            await self.persistence.write_snapshot(area_id, snapshot)
        except Exception as exc:
            self._record_failure(PersistenceFailure(area_id, None, None, exc))
            return False
        logger.info("Saved version %s of area %s", snapshot.version_number, area_id)
        return True

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Flush due writes until :meth:`stop` is called."""

        wakeup = self._wakeup = asyncio.Event()
        while not self._stopping:
            wakeup.clear()
            await self.flush_due()
            deadline = self._queue.next_deadline(exclude=self._blocked())
            timeout = None if deadline is None else max(0.0, deadline - self.clock())
            try:
                await asyncio.wait_for(wakeup.wait(), timeout)
            except asyncio.TimeoutError:
                pass
        self._wakeup = None

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    def start(self) -> asyncio.Task:
        if self._runner is None or self._runner.done():
            self._stopping = False
            self._runner = asyncio.ensure_future(self.run())
        return self._runner

    async def stop(self) -> None:
        """Stop the background loop and write everything still pending."""

        self._stopping = True
        self._wake()
        if self._runner is not None:
            await self._runner
            self._runner = None
        await self.force_flush()
