"""Debounce bookkeeping for pending layer writes.

Nothing here knows about clocks or event loops: the current time is always
passed in, so the scheduling decisions are plain functions of elapsed time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Container, Hashable, Optional

from ...models.domain import LayerDiff


def merge_diffs(first: LayerDiff, second: LayerDiff) -> LayerDiff:
    """Combine two consecutive diffs of one layer into their net effect.

    Adding a code that the first diff removed, or removing a code the first
    diff added, cancels out.
    """

    if first.layer_id != second.layer_id:
        raise ValueError(f"Cannot merge diffs of layers {first.layer_id} and {second.layer_id}.")

    second_added = set(second.added)
    second_removed = set(second.removed)
    first_added = set(first.added)
    first_removed = set(first.removed)

    added = [code for code in first.added if code not in second_removed]
    added += [code for code in second.added if code not in first_removed and code not in first_added]
    removed = [code for code in first.removed if code not in second_added]
    removed += [code for code in second.removed if code not in first_added and code not in first_removed]
    return LayerDiff(first.layer_id, added=tuple(added), removed=tuple(removed))


@dataclass(slots=True)
class PendingWrite:
    diff: LayerDiff
    deadline: float


class DebounceQueue:
    """Trailing-edge debounce of diffs keyed by (area, layer).

    Every push merges into the key's pending diff and moves its deadline to
    ``now + window``.
    """

    def __init__(self, window: float) -> None:
        if window < 0:
            raise ValueError("Debounce window must not be negative.")
        self.window = window
        self._pending: dict[Hashable, PendingWrite] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def push(self, key: Hashable, diff: LayerDiff, now: float) -> Optional[float]:
        """Queue ``diff`` and return the key's new deadline.

        Returns ``None`` when the merged diff cancels out to nothing.
        """

        existing = self._pending.get(key)
        merged = merge_diffs(existing.diff, diff) if existing else diff
        if merged.is_empty:
            self._pending.pop(key, None)
            return None
        deadline = now + self.window
        self._pending[key] = PendingWrite(diff=merged, deadline=deadline)
        return deadline

    def due(self, now: float, exclude: Container[Hashable] = ()) -> list[Hashable]:
        """Keys whose deadline has passed, earliest first."""

        ready = [
            (pending.deadline, index, key)
            for index, (key, pending) in enumerate(self._pending.items())
            if pending.deadline <= now and key not in exclude
        ]
        return [key for _, _, key in sorted(ready)]

    def next_deadline(self, exclude: Container[Hashable] = ()) -> Optional[float]:
        deadlines = [pending.deadline for key, pending in self._pending.items() if key not in exclude]
        return min(deadlines, default=None)

    def take(self, key: Hashable) -> Optional[LayerDiff]:
        pending = self._pending.pop(key, None)
        return pending.diff if pending else None

    def pending_keys(self) -> list[Hashable]:
        return list(self._pending)
