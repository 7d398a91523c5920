"""Pydantic schemas for cross-framework control mappings."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

MappingTypeLiteral = Literal["equivalent", "partial", "related"]
ConfidenceLiteral = Literal["manual", "ai_high", "ai_medium", "heuristic"]


class ControlMappingOut(BaseModel):
    id: int
    source_control_id: int
    source_control_code: str | None = None
    source_control_title: str | None = None
    source_framework: str | None = None
    target_control_id: int
    target_control_code: str | None = None
    target_control_title: str | None = None
    target_framework: str | None = None
    mapping_type: str
    confidence: str
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime
    model_config = {"from_attributes": True}


class ControlMappingCreate(BaseModel):
    source_control_id: int
    target_control_id: int
    mapping_type: MappingTypeLiteral = "equivalent"
    confidence: ConfidenceLiteral = "manual"
    notes: str | None = None
    created_by: str | None = Field(None, max_length=200)


class ControlMappingBulkResult(BaseModel):
    count: int


class EquivalentControlOut(BaseModel):
    id: int
    framework_id: int
    framework_name: str | None = None
    control_code: str
    title: str
    mapping_id: int
    mapping_type: str
    confidence: str
    direction: Literal["outgoing", "incoming"]
