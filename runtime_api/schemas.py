from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class StateOut(BaseModel):
    channel_id: str
    changed_at: int
    state: str


class RuntimeOut(BaseModel):
    channel_id: str
    started_at: int
    stopped_at: int
    duration_seconds: int = Field(..., ge=0)
    is_aggregated: bool


class AggregateOut(BaseModel):
    channel_id: str
    bucket_start: int
    interval: str
    duration_seconds: int = Field(..., ge=0)


class AggregationPassOut(BaseModel):
    channel_id: str
    status: str
    runtimes_aggregated: int = 0
    aggregates: List[AggregateOut] = Field(default_factory=list)
    error: Optional[str] = None
