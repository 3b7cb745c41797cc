"""Pydantic request/response models for boundary and selection endpoints."""

from __future__ import annotations

from typing import Optional, Sequence

from pydantic import BaseModel, Field


class PointSelectionRequest(BaseModel):
    granularity: str
    point: tuple[float, float] = Field(..., description="(lng, lat) of the clicked point.")


class PolygonSelectionRequest(BaseModel):
    granularity: str
    ring: Sequence[tuple[float, float]] = Field(..., description="Lasso ring as (lng, lat) points.")


class CircleSelectionRequest(BaseModel):
    granularity: str
    center: tuple[float, float]
    pixel_radius: float = Field(..., description="Radius as drawn on screen, in pixels.")
    zoom: float = Field(6.0, description="Map zoom the circle was drawn at.")


class DriveTimeSelectionRequest(BaseModel):
    granularity: str
    center: tuple[float, float]
    max_duration_minutes: float = Field(..., gt=0, description="Maximum driving time from the center.")


class CodeListSelectionRequest(BaseModel):
    granularity: str
    text: str = Field(..., description="Codes separated by commas, semicolons, whitespace or newlines.")


class SelectionResponse(BaseModel):
    granularity: str
    codes: list[str]


class CodeListSelectionResponse(SelectionResponse):
    matches: dict[str, list[str]]
    invalid: list[str]
    unmatched: list[str]


class PointSelectionResponse(BaseModel):
    granularity: str
    code: Optional[str]


class BoundaryDatasetSummary(BaseModel):
    granularity: str
    feature_count: int
    envelope: Optional[tuple[float, float, float, float]]
