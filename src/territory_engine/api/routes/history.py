"""Undo/redo, change history and autosave endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...schemas.history import (
    AutosaveStatusModel,
    ChangeRecordModel,
    PersistenceFailureModel,
    UndoRedoStatusModel,
)
from ...services.session import TerritoryEngine, get_engine
from ..errors import to_http_error
from .areas import record_to_model

router = APIRouter(prefix="/areas/{area_id}", tags=["history"])


def _status(engine: TerritoryEngine, area_id: int) -> UndoRedoStatusModel:
    status_ = engine.session(area_id).tracker.status()
    return UndoRedoStatusModel(
        can_undo=status_.can_undo,
        can_redo=status_.can_redo,
        undo_count=status_.undo_count,
        redo_count=status_.redo_count,
        state=status_.state.value,
    )


@router.get("/history", response_model=list[ChangeRecordModel])
async def get_history(
    area_id: int,
    limit: Optional[int] = Query(default=50, ge=1),
    engine: TerritoryEngine = Depends(get_engine),
) -> list[ChangeRecordModel]:
    try:
        records = engine.session(area_id).tracker.history(limit)
    except Exception as exc:
        raise to_http_error(exc, f"load history of area {area_id}") from exc
    return [record_to_model(record) for record in records]


@router.get("/status", response_model=UndoRedoStatusModel)
async def get_status(area_id: int, engine: TerritoryEngine = Depends(get_engine)) -> UndoRedoStatusModel:
    try:
        return _status(engine, area_id)
    except Exception as exc:
        raise to_http_error(exc, f"load undo status of area {area_id}") from exc


@router.post("/undo", response_model=UndoRedoStatusModel)
async def undo(area_id: int, engine: TerritoryEngine = Depends(get_engine)) -> UndoRedoStatusModel:
    try:
        engine.session(area_id).tracker.undo()
        return _status(engine, area_id)
    except Exception as exc:
        raise to_http_error(exc, f"undo in area {area_id}") from exc


@router.post("/redo", response_model=UndoRedoStatusModel)
async def redo(area_id: int, engine: TerritoryEngine = Depends(get_engine)) -> UndoRedoStatusModel:
    try:
        engine.session(area_id).tracker.redo()
        return _status(engine, area_id)
    except Exception as exc:
        raise to_http_error(exc, f"redo in area {area_id}") from exc


@router.post("/changes/{change_id}/confirm", response_model=ChangeRecordModel)
async def confirm_change(
    area_id: int,
    change_id: int,
    engine: TerritoryEngine = Depends(get_engine),
) -> ChangeRecordModel:
    try:
        return record_to_model(engine.session(area_id).tracker.confirm(change_id))
    except Exception as exc:
        raise to_http_error(exc, f"confirm change {change_id}") from exc


@router.post("/changes/{change_id}/compensate", response_model=ChangeRecordModel)
async def compensate_change(
    area_id: int,
    change_id: int,
    engine: TerritoryEngine = Depends(get_engine),
) -> ChangeRecordModel:
    try:
        return record_to_model(engine.session(area_id).tracker.compensate(change_id))
    except Exception as exc:
        raise to_http_error(exc, f"compensate change {change_id}") from exc


@router.get("/autosave", response_model=AutosaveStatusModel)
async def autosave_status(area_id: int, engine: TerritoryEngine = Depends(get_engine)) -> AutosaveStatusModel:
    try:
        engine.store.get_area(area_id)
    except Exception as exc:
        raise to_http_error(exc, f"load area {area_id}") from exc
    autosave = engine.autosave
    return AutosaveStatusModel(
        pending_layers=[layer_id for owner, layer_id in autosave.pending_layers if owner == area_id],
        in_flight_layers=[layer_id for owner, layer_id in autosave.in_flight if owner == area_id],
        failures=[
            PersistenceFailureModel(
                area_id=failure.area_id,
                layer_id=failure.layer_id,
                added=list(failure.diff.added) if failure.diff else [],
                removed=list(failure.diff.removed) if failure.diff else [],
                error=str(failure.cause or failure),
            )
            for failure in autosave.failures
            if failure.area_id == area_id
        ],
    )


@router.post("/autosave/flush", response_model=AutosaveStatusModel)
async def flush_autosave(area_id: int, engine: TerritoryEngine = Depends(get_engine)) -> AutosaveStatusModel:
    try:
        await engine.autosave.force_flush()
    except Exception as exc:
        raise to_http_error(exc, "flush pending writes") from exc
    return await autosave_status(area_id, engine)


@router.post("/autosave/retry/{layer_id}", response_model=AutosaveStatusModel)
async def retry_autosave(
    area_id: int,
    layer_id: int,
    engine: TerritoryEngine = Depends(get_engine),
) -> AutosaveStatusModel:
    try:
        await engine.autosave.retry(layer_id, area_id=area_id)
    except Exception as exc:
        raise to_http_error(exc, f"retry write of layer {layer_id}") from exc
    return await autosave_status(area_id, engine)
