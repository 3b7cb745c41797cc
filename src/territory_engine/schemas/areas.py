"""Pydantic request/response models for areas, layers and assignments."""

from __future__ import annotations

from typing import Literal, Optional, Sequence

from pydantic import BaseModel, Field


class AreaCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    granularity: str = Field("5digit", description="Boundary granularity, e.g. 2digit or 5digit.")
    description: Optional[str] = None


class AreaUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class AreaModel(BaseModel):
    id: int
    name: str
    granularity: str
    description: Optional[str] = None
    archived: bool = False
    current_version_number: int = 0


class LayerCreateRequest(BaseModel):
    name: str
    color: Optional[str] = Field(None, description="Hex color (#rrggbb); picked automatically when omitted.")
    opacity: int = Field(70, ge=0, le=100)
    visible: bool = True


class LayerUpdateRequest(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None
    opacity: Optional[int] = Field(None, ge=0, le=100)
    visible: Optional[bool] = None
    order_index: Optional[int] = None


class LayerModel(BaseModel):
    id: int
    area_id: int
    name: str
    color: str
    opacity: int
    visible: bool
    order_index: int
    postal_codes: list[str] = Field(default_factory=list)


class LayerOrderRequest(BaseModel):
    layer_ids: Sequence[int]


class AssignmentRequest(BaseModel):
    codes: Sequence[str] = Field(..., description="Region codes to add or remove.")
    description: Optional[str] = None


class MergeRequest(BaseModel):
    source_layer_ids: Sequence[int]
    target_layer_id: int
    strategy: Literal["union", "keep-target", "keep-source"] = "union"


class SplitRequest(BaseModel):
    codes: Sequence[str]
    name: str


class GranularityChangeRequest(BaseModel):
    granularity: str
    force: bool = Field(False, description="Allow a change that removes all assignments.")


class GranularityChangeResponse(BaseModel):
    granularity: str
    migrated_layers: int
    added_codes: int
    removed_codes: int


class ConflictOwnerModel(BaseModel):
    id: int
    name: str
    color: str


class ConflictModel(BaseModel):
    code: str
    layers: list[ConflictOwnerModel]


class HolesResponse(BaseModel):
    area_id: int
    layer_id: Optional[int] = None
    holes: list[str]
