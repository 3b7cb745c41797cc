"""Pydantic request/response models for change history and versions."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ChangeRecordModel(BaseModel):
    id: int
    area_id: int
    layer_id: Optional[int]
    kind: str
    timestamp: datetime
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    description: Optional[str] = None
    confirmed: bool = False


class AssignmentResponse(BaseModel):
    changes: list[ChangeRecordModel]
    conflict_codes: list[str] = Field(default_factory=list)
    warning: Optional[str] = None


class UndoRedoStatusModel(BaseModel):
    can_undo: bool
    can_redo: bool
    undo_count: int
    redo_count: int
    state: str


class PersistenceFailureModel(BaseModel):
    area_id: int
    layer_id: Optional[int]
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    error: str


class AutosaveStatusModel(BaseModel):
    pending_layers: list[int]
    in_flight_layers: list[int]
    failures: list[PersistenceFailureModel]


class VersionCreateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class VersionModel(BaseModel):
    id: int
    area_id: int
    version_number: int
    name: Optional[str] = None
    description: Optional[str] = None
    change_count: int
    created_at: datetime
    layer_count: int
    parent_version_number: Optional[int] = None
    branch_name: Optional[str] = None


class LayerComparisonModel(BaseModel):
    layer_id: int
    name: str
    added_codes: list[str]
    removed_codes: list[str]
    changed_attributes: list[str]


class VersionComparisonModel(BaseModel):
    from_version: int
    to_version: int
    added_layers: list[str]
    removed_layers: list[str]
    changed_layers: list[LayerComparisonModel]
    total_changes: int


class VersionRestoreRequest(BaseModel):
    create_branch: bool = Field(False, description="Also save the restored state as a new version.")
    branch_name: Optional[str] = None


class VersionRestoreResponse(BaseModel):
    change: ChangeRecordModel
    version: Optional[VersionModel] = None
