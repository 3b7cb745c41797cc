"""Drive-time radius selection backed by a routing collaborator."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Optional, Sequence

from ...errors import InvalidGeometry
from ..geospatial import METERS_PER_DEGREE
from ..routing.osrm_client import get_routing_provider
from .context import SelectionContext
from .operators import resolve_point

logger = logging.getLogger(__name__)

MAX_DRIVE_MINUTES = 240.0
# Upper bound for straight-line travel speed; regions farther than this can
# never be reached in time and are not sent to the router.
MAX_STRAIGHT_LINE_SPEED_KMH = 130.0


async def drive_time_select(
    ctx: SelectionContext,
    center: Sequence[float],
    max_duration_minutes: float,
    granularity: Optional[str] = None,
) -> list[str]:
    """Codes of all regions reachable by car within the duration.

    The routing collaborator decides reachability; this function validates the
    request, narrows the candidates and keeps only codes of the context's
    dataset.
    """

    if granularity is not None and granularity != ctx.granularity:
        raise ValueError(
            f"Drive-time request for granularity '{granularity}' does not match the loaded '{ctx.granularity}' boundaries."
        )
    try:
        origin = resolve_point(ctx, center)
        if not math.isfinite(max_duration_minutes) or not 0 < max_duration_minutes <= MAX_DRIVE_MINUTES:
            raise InvalidGeometry(
                f"Drive time must be between 0 and {MAX_DRIVE_MINUTES:.0f} minutes, got {max_duration_minutes}."
            )
    except InvalidGeometry as exc:
        logger.warning("Ignoring drive-time selection: %s", exc)
        return []

    reach_km = max_duration_minutes / 60.0 * MAX_STRAIGHT_LINE_SPEED_KMH
    candidate_codes = ctx.index.circle_query(origin, reach_km * 1000.0 / METERS_PER_DEGREE)
    candidates = [ctx.index.feature(code) for code in candidate_codes]
    candidates = [feature for feature in candidates if feature is not None]
    if not candidates:
        return []

    routing = ctx.routing or get_routing_provider()
    resolved = await routing.resolve_codes(origin, max_duration_minutes, candidates)
    allowed = set(candidate_codes)
    codes = [code for code in dict.fromkeys(resolved) if code in allowed]
    logger.info(
        "Drive-time selection of %.0f min resolved %d of %d candidate regions",
        max_duration_minutes,
        len(codes),
        len(candidates),
    )
    return codes


class DriveTimeSelector:
    """Runs drive-time selections so that only the latest request per gesture wins.

    Starting a request for a gesture key cancels the previous request for the
    same key. A superseded request resolves to ``None``; its result is never
    returned out of order.
    """

    def __init__(self, ctx: SelectionContext) -> None:
        self.ctx = ctx
        self._tasks: dict[str, asyncio.Task] = {}
        self._generations: dict[str, int] = {}

    async def select(
        self,
        gesture_key: str,
        center: Sequence[float],
        max_duration_minutes: float,
    ) -> Optional[list[str]]:
        previous = self._tasks.get(gesture_key)
        if previous is not None and not previous.done():
            logger.debug("Cancelling superseded drive-time request for %s", gesture_key)
            previous.cancel()

        generation = self._generations.get(gesture_key, 0) + 1
        self._generations[gesture_key] = generation
        task = asyncio.ensure_future(drive_time_select(self.ctx, center, max_duration_minutes))
        self._tasks[gesture_key] = task
        try:
            codes = await task
        except asyncio.CancelledError:
            if self._generations.get(gesture_key) != generation:
                return None
            raise
        finally:
            if self._tasks.get(gesture_key) is task:
                del self._tasks[gesture_key]

        if self._generations.get(gesture_key) != generation:
            return None
        return codes

    def cancel(self, gesture_key: str) -> None:
        task = self._tasks.pop(gesture_key, None)
        self._generations[gesture_key] = self._generations.get(gesture_key, 0) + 1
        if task is not None and not task.done():
            task.cancel()

    def cancel_all(self) -> None:
        for gesture_key in list(self._tasks):
            self.cancel(gesture_key)
