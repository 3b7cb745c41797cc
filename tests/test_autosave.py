import asyncio
from datetime import datetime, timezone

import pytest

from territory_engine.models.domain import AreaState, LayerDiff, VersionSnapshot
from territory_engine.services.autosave import AutosaveCoordinator, DebounceQueue, merge_diffs


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class RecordingPersistence:
    def __init__(self) -> None:
        self.writes = []
        self.snapshots = []
        self.active: dict[int, int] = {}
        self.max_active: dict[int, int] = {}
        self.gate: asyncio.Event | None = None
        self.fail_layers: set[int] = set()

    async def write_diff(self, area_id, layer_id, diff):
        self.active[layer_id] = self.active.get(layer_id, 0) + 1
        self.max_active[layer_id] = max(self.max_active.get(layer_id, 0), self.active[layer_id])
        try:
            if self.gate is not None:
                await self.gate.wait()
            if layer_id in self.fail_layers:
                raise OSError("disk full")
            self.writes.append((area_id, layer_id, diff))
        finally:
            self.active[layer_id] -= 1

    async def write_snapshot(self, area_id, snapshot):
        self.snapshots.append((area_id, snapshot))


def test_merge_diffs_cancels_add_then_remove() -> None:
    merged = merge_diffs(LayerDiff(1, added=("a", "b")), LayerDiff(1, added=("c",), removed=("a",)))

    assert merged == LayerDiff(1, added=("b", "c"), removed=())
    assert merge_diffs(LayerDiff(1, removed=("a",)), LayerDiff(1, added=("a",))).is_empty
    with pytest.raises(ValueError):
        merge_diffs(LayerDiff(1), LayerDiff(2))


def test_debounce_queue_is_a_function_of_elapsed_time() -> None:
    queue = DebounceQueue(window=2.0)

    queue.push("layer", LayerDiff(1, added=("a",)), now=0.0)
    queue.push("layer", LayerDiff(1, added=("b",)), now=1.5)

    assert queue.due(now=2.0) == []
    assert queue.next_deadline() == 3.5
    assert queue.due(now=3.5) == ["layer"]
    assert queue.take("layer") == LayerDiff(1, added=("a", "b"))
    assert queue.pending_keys() == []


def test_debounce_queue_drops_diffs_that_cancel_out() -> None:
    queue = DebounceQueue(window=2.0)

    queue.push("layer", LayerDiff(1, added=("a",)), now=0.0)
    assert queue.push("layer", LayerDiff(1, removed=("a",)), now=1.0) is None

    assert queue.pending_keys() == []
    assert queue.next_deadline() is None


def test_rapid_edits_coalesce_into_one_write_of_the_net_diff() -> None:
    clock = FakeClock()
    persistence = RecordingPersistence()

    async def scenario():
        coordinator = AutosaveCoordinator(persistence, window=2.0, clock=clock)
        coordinator.schedule(1, 7, LayerDiff(7, added=("80331", "80333")))
        clock.now = 0.5
        coordinator.schedule(1, 7, LayerDiff(7, removed=("80331",)))
        clock.now = 1.0
        coordinator.schedule(1, 7, LayerDiff(7, added=("81241",)))

        clock.now = 2.9
        assert await coordinator.flush_due() == []

        clock.now = 3.0
        tasks = await coordinator.flush_due()
        await asyncio.gather(*tasks)

    asyncio.run(scenario())

    assert persistence.writes == [(1, 7, LayerDiff(7, added=("80333", "81241"), removed=()))]


def test_one_write_in_flight_per_layer_and_layers_run_concurrently() -> None:
    clock = FakeClock()
    persistence = RecordingPersistence()

    async def scenario():
        persistence.gate = asyncio.Event()
        coordinator = AutosaveCoordinator(persistence, window=1.0, clock=clock)
        coordinator.schedule(1, 1, LayerDiff(1, added=("a",)))
        clock.now = 1.0
        first = await coordinator.flush_due()
        await asyncio.sleep(0)

        coordinator.schedule(1, 1, LayerDiff(1, added=("b",)))
        coordinator.schedule(1, 2, LayerDiff(2, added=("c",)))
        clock.now = 5.0
        second = await coordinator.flush_due()
        await asyncio.sleep(0)

        assert coordinator.in_flight == [(1, 1), (1, 2)]
        assert coordinator.pending_layers == [(1, 1)]
        assert len(second) == 1

        persistence.gate.set()
        await asyncio.gather(*first, *second)
        third = await coordinator.flush_due()
        await asyncio.gather(*third)

    asyncio.run(scenario())

    assert persistence.max_active == {1: 1, 2: 1}
    assert [(layer_id, diff.added) for _, layer_id, diff in persistence.writes] == [
        (1, ("a",)),
        (2, ("c",)),
        (1, ("b",)),
    ]


def test_failed_write_is_surfaced_and_not_retried_automatically() -> None:
    clock = FakeClock()
    persistence = RecordingPersistence()
    persistence.fail_layers = {4}
    reported = []

    async def scenario():
        coordinator = AutosaveCoordinator(persistence, window=1.0, clock=clock, on_failure=reported.append)
        coordinator.schedule(9, 4, LayerDiff(4, added=("80331",)))
        clock.now = 1.0
        await asyncio.gather(*await coordinator.flush_due())

        clock.now = 10.0
        assert await coordinator.flush_due() == []
        await coordinator.force_flush()
        assert persistence.writes == []

        persistence.fail_layers.clear()
        succeeded = await coordinator.retry(4)
        return coordinator, succeeded

    coordinator, succeeded = asyncio.run(scenario())

    (failure,) = reported
    assert (failure.area_id, failure.layer_id) == (9, 4)
    assert failure.diff == LayerDiff(4, added=("80331",))
    assert isinstance(failure.cause, OSError)
    assert succeeded
    assert coordinator.failures == []
    assert persistence.writes == [(9, 4, LayerDiff(4, added=("80331",)))]


def test_force_flush_drains_everything_regardless_of_deadlines() -> None:
    clock = FakeClock()
    persistence = RecordingPersistence()
    snapshot = VersionSnapshot(
        id=1,
        area_id=1,
        version_number=1,
        state=AreaState(area_id=1, name="Bavaria", granularity="5digit", description=None, layers=()),
        created_at=datetime.now(timezone.utc),
    )

    async def scenario():
        coordinator = AutosaveCoordinator(persistence, window=60.0, clock=clock)
        coordinator.schedule(1, 1, LayerDiff(1, added=("a",)))
        coordinator.schedule(1, 2, LayerDiff(2, removed=("b",)))
        coordinator.schedule_snapshot(1, snapshot)
        await coordinator.force_flush()
        return coordinator

    coordinator = asyncio.run(scenario())

    assert sorted(layer_id for _, layer_id, _ in persistence.writes) == [1, 2]
    assert persistence.snapshots == [(1, snapshot)]
    assert coordinator.pending_layers == []


def test_background_loop_writes_after_the_window() -> None:
    persistence = RecordingPersistence()

    async def scenario():
        coordinator = AutosaveCoordinator(persistence, window=0.01)
        coordinator.start()
        coordinator.schedule(1, 1, LayerDiff(1, added=("a",)))
        await asyncio.sleep(0.1)
        written = list(persistence.writes)
        await coordinator.stop()
        return written

    assert asyncio.run(scenario()) == [(1, 1, LayerDiff(1, added=("a",)))]


def test_edits_after_a_failed_write_wait_for_the_retry() -> None:
    clock = FakeClock()
    persistence = RecordingPersistence()
    persistence.fail_layers = {4}

    async def scenario():
        coordinator = AutosaveCoordinator(persistence, window=1.0, clock=clock)
        coordinator.schedule(9, 4, LayerDiff(4, added=("80331", "80333")))
        clock.now = 1.0
        await asyncio.gather(*await coordinator.flush_due())

        persistence.fail_layers.clear()
        coordinator.schedule(9, 4, LayerDiff(4, removed=("80331",)))
        coordinator.schedule(9, 5, LayerDiff(5, added=("10115",)))
        clock.now = 5.0
        await asyncio.gather(*await coordinator.flush_due())
        await coordinator.force_flush()
        held_back = (list(persistence.writes), coordinator.pending_layers)

        succeeded = await coordinator.retry(4)
        return coordinator, held_back, succeeded

    coordinator, (writes_before_retry, pending), succeeded = asyncio.run(scenario())

    assert writes_before_retry == [(9, 5, LayerDiff(5, added=("10115",)))]
    assert pending == [(9, 4)]
    assert succeeded
    assert persistence.writes[-1] == (9, 4, LayerDiff(4, added=("80333",)))
    assert coordinator.pending_layers == []
    assert coordinator.failures == []
