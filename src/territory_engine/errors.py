"""Error taxonomy shared by the engine services and the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .models.domain import LayerDiff


class TerritoryEngineError(Exception):
    """Base class for all engine errors."""


class InvalidGeometry(TerritoryEngineError, ValueError):
    """Raised for degenerate rings, too few points or non-finite coordinates."""


class NotFound(TerritoryEngineError, LookupError):
    """Raised when an area, layer or version id does not resolve."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} '{entity_id}' not found.")
        self.entity = entity
        self.entity_id = entity_id


class NoHistory(TerritoryEngineError):
    """Raised when undo or redo is requested with an empty stack."""


class RoutingUnavailable(TerritoryEngineError, ConnectionError):
    """Raised when the routing service cannot be reached."""


class PersistenceFailure(TerritoryEngineError):
    """A write to the persistence store failed.

    Carries the area, the layer and the diff that was attempted so the caller
    can retry the exact write.
    """

    def __init__(
        self,
        area_id: int,
        layer_id: int | None,
        diff: "LayerDiff | None",
        cause: BaseException | None = None,
    ) -> None:
        target = f"layer {layer_id}" if layer_id is not None else "snapshot"
        message = f"Failed to persist {target} of area {area_id}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.area_id = area_id
        self.layer_id = layer_id
        self.diff = diff
        self.cause = cause


@dataclass(slots=True)
class ConflictDetected:
    """Informational notice that codes are owned by more than one layer.

    Never raised; assignments proceed regardless.
    """

    layer_id: int
    codes: Sequence[str]

    @property
    def message(self) -> str:
        return f"{len(self.codes)} code(s) in layer {self.layer_id} are also assigned to other layers."
