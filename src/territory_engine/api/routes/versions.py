"""Version snapshot endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status

from ...models.domain import VersionSnapshot
from ...schemas.history import (
    LayerComparisonModel,
    VersionComparisonModel,
    VersionCreateRequest,
    VersionModel,
    VersionRestoreRequest,
    VersionRestoreResponse,
)
from ...services.session import TerritoryEngine, get_engine
from ..errors import to_http_error
from .areas import record_to_model

router = APIRouter(prefix="/areas/{area_id}/versions", tags=["versions"])


def version_to_model(version: VersionSnapshot) -> VersionModel:
    return VersionModel(
        id=version.id,
        area_id=version.area_id,
        version_number=version.version_number,
        name=version.name,
        description=version.description,
        change_count=version.change_count,
        created_at=version.created_at,
        layer_count=len(version.state.layers),
        parent_version_number=version.parent_version_number,
        branch_name=version.branch_name,
    )


@router.get("", response_model=list[VersionModel])
async def list_versions(area_id: int, engine: TerritoryEngine = Depends(get_engine)) -> list[VersionModel]:
    try:
        versions = engine.session(area_id).versions.list_versions()
    except Exception as exc:
        raise to_http_error(exc, f"list versions of area {area_id}") from exc
    return [version_to_model(version) for version in versions]


@router.post("", response_model=VersionModel, status_code=status.HTTP_201_CREATED)
async def create_version(
    area_id: int,
    payload: VersionCreateRequest,
    engine: TerritoryEngine = Depends(get_engine),
) -> VersionModel:
    try:
        version = engine.session(area_id).versions.snapshot(payload.name, payload.description)
    except Exception as exc:
        raise to_http_error(exc, f"create version of area {area_id}") from exc
    return version_to_model(version)


@router.get("/compare", response_model=VersionComparisonModel)
async def compare_versions(
    area_id: int,
    from_version: int,
    to_version: int,
    engine: TerritoryEngine = Depends(get_engine),
) -> VersionComparisonModel:
    try:
        comparison = engine.session(area_id).versions.compare(from_version, to_version)
    except Exception as exc:
        raise to_http_error(exc, f"compare versions of area {area_id}") from exc
    return VersionComparisonModel(
        from_version=comparison.from_version,
        to_version=comparison.to_version,
        added_layers=[layer.name for layer in comparison.added_layers],
        removed_layers=[layer.name for layer in comparison.removed_layers],
        changed_layers=[
            LayerComparisonModel(
                layer_id=layer.layer_id,
                name=layer.name,
                added_codes=layer.added_codes,
                removed_codes=layer.removed_codes,
                changed_attributes=layer.changed_attributes,
            )
            for layer in comparison.changed_layers
        ],
        total_changes=comparison.total_changes,
    )


@router.get("/{version_id}", response_model=VersionModel)
async def get_version(area_id: int, version_id: int, engine: TerritoryEngine = Depends(get_engine)) -> VersionModel:
    try:
        return version_to_model(engine.session(area_id).versions.get_version(version_id))
    except Exception as exc:
        raise to_http_error(exc, f"load version {version_id}") from exc


@router.post("/{version_id}/restore", response_model=VersionRestoreResponse)
async def restore_version(
    area_id: int,
    version_id: int,
    payload: Optional[VersionRestoreRequest] = None,
    engine: TerritoryEngine = Depends(get_engine),
) -> VersionRestoreResponse:
    payload = payload or VersionRestoreRequest()
    try:
        result = engine.session(area_id).versions.restore(
            version_id,
            create_branch=payload.create_branch,
            branch_name=payload.branch_name,
        )
    except Exception as exc:
        raise to_http_error(exc, f"restore version {version_id}") from exc
    return VersionRestoreResponse(
        change=record_to_model(result.record),
        version=version_to_model(result.branch) if result.branch else None,
    )
