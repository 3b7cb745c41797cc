"""Area, layer and assignment endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ...models.domain import Area, ChangeRecord, Layer
from ...schemas.areas import (
    AreaCreateRequest,
    AreaModel,
    AreaUpdateRequest,
    AssignmentRequest,
    ConflictModel,
    ConflictOwnerModel,
    GranularityChangeRequest,
    GranularityChangeResponse,
    HolesResponse,
    LayerCreateRequest,
    LayerModel,
    LayerOrderRequest,
    LayerUpdateRequest,
    MergeRequest,
    SplitRequest,
)
from ...schemas.history import AssignmentResponse, ChangeRecordModel
from ...services.session import TerritoryEngine, get_engine
from ...services.territories.store import TerritoryStore
from ..errors import to_http_error

router = APIRouter(prefix="/areas", tags=["areas"])


def area_to_model(area: Area) -> AreaModel:
    return AreaModel(
        id=area.id,
        name=area.name,
        granularity=area.granularity,
        description=area.description,
        archived=area.archived,
        current_version_number=area.current_version_number,
    )


def layer_to_model(store: TerritoryStore, layer: Layer) -> LayerModel:
    return LayerModel(
        id=layer.id,
        area_id=layer.area_id,
        name=layer.name,
        color=layer.color,
        opacity=layer.opacity,
        visible=layer.visible,
        order_index=layer.order_index,
        postal_codes=sorted(store.layer_codes(layer.id)),
    )


def record_to_model(record: ChangeRecord) -> ChangeRecordModel:
    return ChangeRecordModel(
        id=record.id,
        area_id=record.area_id,
        layer_id=record.layer_id,
        kind=record.kind,
        timestamp=record.timestamp,
        added=list(record.added),
        removed=list(record.removed),
        description=record.description,
        confirmed=record.confirmed,
    )


# ----------------------------------------------------------------------
# Areas
# ----------------------------------------------------------------------


@router.get("", response_model=list[AreaModel])
async def list_areas(
    include_archived: bool = Query(default=False),
    engine: TerritoryEngine = Depends(get_engine),
) -> list[AreaModel]:
    return [area_to_model(area) for area in engine.store.list_areas(include_archived)]


@router.post("", response_model=AreaModel, status_code=status.HTTP_201_CREATED)
async def create_area(payload: AreaCreateRequest, engine: TerritoryEngine = Depends(get_engine)) -> AreaModel:
    try:
        session = engine.create_area(payload.name, payload.granularity, payload.description)
    except Exception as exc:
        raise to_http_error(exc, "create area") from exc
    return area_to_model(session.area)


@router.get("/{area_id}", response_model=AreaModel)
async def get_area(area_id: int, engine: TerritoryEngine = Depends(get_engine)) -> AreaModel:
    try:
        return area_to_model(engine.store.get_area(area_id))
    except Exception as exc:
        raise to_http_error(exc, f"load area {area_id}") from exc


@router.patch("/{area_id}", response_model=AreaModel)
async def update_area(
    area_id: int,
    payload: AreaUpdateRequest,
    engine: TerritoryEngine = Depends(get_engine),
) -> AreaModel:
    try:
        return area_to_model(engine.store.update_area(area_id, name=payload.name, description=payload.description))
    except Exception as exc:
        raise to_http_error(exc, f"update area {area_id}") from exc


@router.post("/{area_id}/archive", response_model=AreaModel)
async def archive_area(area_id: int, engine: TerritoryEngine = Depends(get_engine)) -> AreaModel:
    try:
        return area_to_model(engine.store.archive_area(area_id))
    except Exception as exc:
        raise to_http_error(exc, f"archive area {area_id}") from exc


@router.post("/{area_id}/restore", response_model=AreaModel)
async def restore_area(area_id: int, engine: TerritoryEngine = Depends(get_engine)) -> AreaModel:
    try:
        return area_to_model(engine.store.restore_area(area_id))
    except Exception as exc:
        raise to_http_error(exc, f"restore area {area_id}") from exc


@router.post("/{area_id}/granularity", response_model=GranularityChangeResponse)
async def change_granularity(
    area_id: int,
    payload: GranularityChangeRequest,
    engine: TerritoryEngine = Depends(get_engine),
) -> GranularityChangeResponse:
    try:
        result = engine.session(area_id).change_granularity(payload.granularity, force=payload.force)
    except Exception as exc:
        raise to_http_error(exc, f"change granularity of area {area_id}") from exc
    return GranularityChangeResponse(
        granularity=payload.granularity,
        migrated_layers=result.migrated_layers,
        added_codes=result.added_codes,
        removed_codes=result.removed_codes,
    )


@router.get("/{area_id}/conflicts", response_model=list[ConflictModel])
async def get_conflicts(area_id: int, engine: TerritoryEngine = Depends(get_engine)) -> list[ConflictModel]:
    try:
        conflicts = engine.store.area_conflicts(area_id)
    except Exception as exc:
        raise to_http_error(exc, f"detect conflicts in area {area_id}") from exc
    return [
        ConflictModel(
            code=conflict.code,
            layers=[ConflictOwnerModel(id=owner.id, name=owner.name, color=owner.color) for owner in conflict.layers],
        )
        for conflict in conflicts
    ]


@router.get("/{area_id}/holes", response_model=HolesResponse)
async def get_holes(
    area_id: int,
    layer_id: Optional[int] = Query(default=None),
    engine: TerritoryEngine = Depends(get_engine),
) -> HolesResponse:
    try:
        holes = engine.session(area_id).holes(layer_id)
    except FileNotFoundError as exc:
        raise to_http_error(ValueError(str(exc)), f"detect holes in area {area_id}") from exc
    except Exception as exc:
        raise to_http_error(exc, f"detect holes in area {area_id}") from exc
    return HolesResponse(area_id=area_id, layer_id=layer_id, holes=holes)


# ----------------------------------------------------------------------
# Layers
# ----------------------------------------------------------------------


@router.get("/{area_id}/layers", response_model=list[LayerModel])
async def list_layers(area_id: int, engine: TerritoryEngine = Depends(get_engine)) -> list[LayerModel]:
    try:
        engine.store.get_area(area_id)
    except Exception as exc:
        raise to_http_error(exc, f"load area {area_id}") from exc
    return [layer_to_model(engine.store, layer) for layer in engine.store.list_layers(area_id)]


@router.post("/{area_id}/layers", response_model=LayerModel, status_code=status.HTTP_201_CREATED)
async def create_layer(
    area_id: int,
    payload: LayerCreateRequest,
    engine: TerritoryEngine = Depends(get_engine),
) -> LayerModel:
    try:
        layer = engine.store.create_layer(
            area_id,
            payload.name,
            color=payload.color,
            opacity=payload.opacity,
            visible=payload.visible,
        )
    except Exception as exc:
        raise to_http_error(exc, f"create layer in area {area_id}") from exc
    return layer_to_model(engine.store, layer)


@router.patch("/{area_id}/layers/{layer_id}", response_model=LayerModel)
async def update_layer(
    area_id: int,
    layer_id: int,
    payload: LayerUpdateRequest,
    engine: TerritoryEngine = Depends(get_engine),
) -> LayerModel:
    try:
        _layer_in_area(engine, area_id, layer_id)
        layer = engine.store.update_layer(layer_id, **payload.model_dump(exclude_none=True))
    except Exception as exc:
        raise to_http_error(exc, f"update layer {layer_id}") from exc
    return layer_to_model(engine.store, layer)


@router.delete("/{area_id}/layers/{layer_id}", status_code=status.HTTP_200_OK)
async def delete_layer(area_id: int, layer_id: int, engine: TerritoryEngine = Depends(get_engine)) -> dict:
    try:
        _layer_in_area(engine, area_id, layer_id)
        engine.session(area_id).delete_layer(layer_id)
    except Exception as exc:
        raise to_http_error(exc, f"delete layer {layer_id}") from exc
    return {"deleted": layer_id}


@router.put("/{area_id}/layers/order", response_model=list[LayerModel])
async def reorder_layers(
    area_id: int,
    payload: LayerOrderRequest,
    engine: TerritoryEngine = Depends(get_engine),
) -> list[LayerModel]:
    try:
        layers = engine.store.reorder_layers(area_id, list(payload.layer_ids))
    except Exception as exc:
        raise to_http_error(exc, f"reorder layers of area {area_id}") from exc
    return [layer_to_model(engine.store, layer) for layer in layers]


@router.post("/{area_id}/layers/{layer_id}/assign", response_model=AssignmentResponse)
async def assign_codes(
    area_id: int,
    layer_id: int,
    payload: AssignmentRequest,
    engine: TerritoryEngine = Depends(get_engine),
) -> AssignmentResponse:
    try:
        _layer_in_area(engine, area_id, layer_id)
        records, conflict = engine.session(area_id).assign(layer_id, payload.codes, payload.description)
    except Exception as exc:
        raise to_http_error(exc, f"assign codes to layer {layer_id}") from exc
    return AssignmentResponse(
        changes=[record_to_model(record) for record in records],
        conflict_codes=list(conflict.codes) if conflict else [],
        warning=conflict.message if conflict else None,
    )


@router.post("/{area_id}/layers/{layer_id}/unassign", response_model=AssignmentResponse)
async def unassign_codes(
    area_id: int,
    layer_id: int,
    payload: AssignmentRequest,
    engine: TerritoryEngine = Depends(get_engine),
) -> AssignmentResponse:
    try:
        _layer_in_area(engine, area_id, layer_id)
        records = engine.session(area_id).unassign(layer_id, payload.codes, payload.description)
    except Exception as exc:
        raise to_http_error(exc, f"unassign codes from layer {layer_id}") from exc
    return AssignmentResponse(changes=[record_to_model(record) for record in records])


@router.post("/{area_id}/layers/merge", response_model=AssignmentResponse)
async def merge_layers(
    area_id: int,
    payload: MergeRequest,
    engine: TerritoryEngine = Depends(get_engine),
) -> AssignmentResponse:
    try:
        _layer_in_area(engine, area_id, payload.target_layer_id)
        records = engine.session(area_id).merge_layers(
            list(payload.source_layer_ids), payload.target_layer_id, payload.strategy
        )
    except Exception as exc:
        raise to_http_error(exc, f"merge layers in area {area_id}") from exc
    return AssignmentResponse(changes=[record_to_model(record) for record in records])


@router.post("/{area_id}/layers/{layer_id}/split", response_model=LayerModel, status_code=status.HTTP_201_CREATED)
async def split_layer(
    area_id: int,
    layer_id: int,
    payload: SplitRequest,
    engine: TerritoryEngine = Depends(get_engine),
) -> LayerModel:
    try:
        _layer_in_area(engine, area_id, layer_id)
        layer, _ = engine.session(area_id).split_layer(layer_id, payload.codes, payload.name)
    except Exception as exc:
        raise to_http_error(exc, f"split layer {layer_id}") from exc
    return layer_to_model(engine.store, layer)


def _layer_in_area(engine: TerritoryEngine, area_id: int, layer_id: int) -> Layer:
    engine.store.get_area(area_id)
    layer = engine.store.get_layer(layer_id)
    if layer.area_id != area_id:
        raise ValueError(f"Layer {layer_id} does not belong to area {area_id}.")
    return layer
