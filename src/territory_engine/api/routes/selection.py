"""Selection endpoints: turn gestures into region codes without assigning them."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from ...schemas.selection import (
    CircleSelectionRequest,
    CodeListSelectionRequest,
    CodeListSelectionResponse,
    DriveTimeSelectionRequest,
    PointSelectionRequest,
    PointSelectionResponse,
    PolygonSelectionRequest,
    SelectionResponse,
)
from ...services.selection import (
    SelectionContext,
    circle_select,
    code_list_select,
    drive_time_select,
    point_select,
    polygon_select,
)
from ...services.session import get_spatial_index
from ..errors import to_http_error

router = APIRouter(prefix="/selection", tags=["selection"])


def _context(granularity: str, zoom: float = 6.0) -> SelectionContext:
    try:
        return SelectionContext(index=get_spatial_index(granularity), zoom=zoom)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Exception as exc:
        raise to_http_error(exc, f"load {granularity} boundaries") from exc


@router.post("/point", response_model=PointSelectionResponse)
def select_point(payload: PointSelectionRequest) -> PointSelectionResponse:
    ctx = _context(payload.granularity)
    return PointSelectionResponse(granularity=payload.granularity, code=point_select(ctx, payload.point))


@router.post("/polygon", response_model=SelectionResponse)
def select_polygon(payload: PolygonSelectionRequest) -> SelectionResponse:
    ctx = _context(payload.granularity)
    return SelectionResponse(granularity=payload.granularity, codes=polygon_select(ctx, payload.ring))


@router.post("/circle", response_model=SelectionResponse)
def select_circle(payload: CircleSelectionRequest) -> SelectionResponse:
    ctx = _context(payload.granularity, payload.zoom)
    return SelectionResponse(
        granularity=payload.granularity,
        codes=circle_select(ctx, payload.center, payload.pixel_radius),
    )


@router.post("/drive-time", response_model=SelectionResponse)
async def select_drive_time(payload: DriveTimeSelectionRequest) -> SelectionResponse:
    ctx = _context(payload.granularity)
    try:
        codes = await drive_time_select(ctx, payload.center, payload.max_duration_minutes, payload.granularity)
    except Exception as exc:
        raise to_http_error(exc, "compute drive-time selection") from exc
    return SelectionResponse(granularity=payload.granularity, codes=codes)


@router.post("/codes", response_model=CodeListSelectionResponse)
def select_code_list(payload: CodeListSelectionRequest) -> CodeListSelectionResponse:
    ctx = _context(payload.granularity)
    result = code_list_select(ctx, payload.text)
    return CodeListSelectionResponse(
        granularity=payload.granularity,
        codes=result.codes,
        matches=result.matches,
        invalid=result.invalid,
        unmatched=result.unmatched,
    )
