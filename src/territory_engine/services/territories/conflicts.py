"""Detection of region codes owned by more than one layer."""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from ...errors import ConflictDetected
from ...models.domain import ConflictingCode, ConflictOwner, Layer


def detect_conflicts(
    layers: Sequence[Layer],
    assignments: Mapping[int, Iterable[str]],
) -> list[ConflictingCode]:
    """Return every code assigned to two or more of the given layers.

    Read-only: the reverse index is built from ``assignments`` and nothing is
    changed. Codes are reported in sorted order, owners in the given layer
    order. A layer listed twice counts once.
    """

    owners: dict[str, list[Layer]] = {}
    for layer in {layer.id: layer for layer in layers}.values():
        for code in assignments.get(layer.id, ()):
            owners.setdefault(code, []).append(layer)

    return [
        ConflictingCode(
            code=code,
            layers=tuple(ConflictOwner(id=layer.id, name=layer.name, color=layer.color) for layer in owning),
        )
        for code, owning in sorted(owners.items())
        if len(owning) > 1
    ]


def conflicts_for_assignment(
    layer_id: int,
    codes: Iterable[str],
    other_assignments: Mapping[int, Iterable[str]],
) -> ConflictDetected | None:
    """Notice for codes about to be assigned to ``layer_id`` that other layers already own."""

    taken: set[str] = set()
    for other_id, other_codes in other_assignments.items():
        if other_id != layer_id:
            taken.update(other_codes)
    overlapping = sorted(set(codes) & taken)
    if not overlapping:
        return None
    return ConflictDetected(layer_id=layer_id, codes=overlapping)
