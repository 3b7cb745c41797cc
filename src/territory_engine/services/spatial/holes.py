"""Hole detection for territory selections."""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .index import SpatialIndex

logger = logging.getLogger(__name__)


def find_holes(index: "SpatialIndex", selected: Iterable[str]) -> list[str]:
    """Return unselected regions that are fully enclosed by the selection.

    Unselected regions touching the dataset's outer envelope seed a flood fill
    through the adjacency graph restricted to unselected regions. Whatever the
    fill cannot reach is enclosed. The result is a suggestion only; nothing is
    assigned.
    """

    start = time.perf_counter()
    selected_codes = set(selected)
    adjacency = index.adjacency_graph()
    unselected = [code for code in index.codes() if code not in selected_codes]
    if not selected_codes or not unselected:
        return []

    seeds = index.boundary_reachable_codes().difference(selected_codes)
    visited = set(seeds)
    queue = deque(seeds)
    while queue:
        current = queue.popleft()
        for neighbour in adjacency.get(current, ()):
            if neighbour not in selected_codes and neighbour not in visited:
                visited.add(neighbour)
                queue.append(neighbour)

    holes = sorted(code for code in unselected if code not in visited)
    logger.info(
        "Hole detection over %d selected regions found %d hole(s) in %.1f ms",
        len(selected_codes),
        len(holes),
        (time.perf_counter() - start) * 1000,
    )
    return holes
