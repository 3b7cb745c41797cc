"""Boundary dataset endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from ...config import settings
from ...schemas.selection import BoundaryDatasetSummary
from ...services.session import get_spatial_index
from ..errors import to_http_error

router = APIRouter(prefix="/boundaries", tags=["boundaries"])


@router.get("", response_model=list[str])
def list_granularities() -> list[str]:
    """Granularities whose boundary file is present."""
    return [granularity for granularity in settings.granularities if settings.boundary_file(granularity).exists()]


@router.get("/{granularity}", response_model=BoundaryDatasetSummary)
def get_boundaries(granularity: str) -> BoundaryDatasetSummary:
    try:
        index = get_spatial_index(granularity)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Exception as exc:
        raise to_http_error(exc, f"load {granularity} boundaries") from exc
    return BoundaryDatasetSummary(granularity=granularity, feature_count=len(index), envelope=index.envelope)


@router.get("/{granularity}/codes", response_model=list[str])
def get_codes(granularity: str) -> list[str]:
    try:
        return sorted(get_spatial_index(granularity).codes())
    except FileNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Exception as exc:
        raise to_http_error(exc, f"load {granularity} boundaries") from exc
