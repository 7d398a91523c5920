"""Pydantic schemas for the harmonization analysis."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class OpportunityOut(BaseModel):
    target_task_id: int
    title: str
    source: str
    source_plan_id: int
    source_task_id: int
    confidence: Literal["High", "Medium"]
    confidence_level: Literal["manual", "ai_high", "ai_medium", "heuristic"]
    saved_hours: int


class IntegrityWarningOut(BaseModel):
    kind: str
    message: str
    plan_id: int | None = None
    task_id: int | None = None
    control_id: int | None = None


class HarmonizationOut(BaseModel):
    plan_id: int
    framework_id: int | None = None
    savings_percentage: int
    total_saved_hours: int = 0
    baseline_hours: int
    opportunities: list[OpportunityOut] = []
    warnings: list[IntegrityWarningOut] = []


class HarmonizationStatsOut(BaseModel):
    mapping_index: dict
    integrity_warnings: dict[str, int] = {}
