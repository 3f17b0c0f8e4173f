"""Pydantic schemas for API contracts."""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChunkUploadResponse(_CamelModel):
    storage_key: str = Field(alias="storageKey")
    size: int
    duration_ms: int | None = Field(default=None, alias="durationMs")
    captured_at: datetime | None = Field(default=None, alias="capturedAt")
    sequence: int | None = None


class MergeResponse(_CamelModel):
    merged_key: str = Field(alias="mergedKey")
    size: int
    source_keys: List[str] = Field(default_factory=list, alias="sourceKeys")


class DeleteResponse(BaseModel):
    deleted: str
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    detail: str
