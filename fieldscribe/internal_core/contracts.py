from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

TranscriptionPath = Literal["vad_chunked", "uniform_chunked", "byte_range", "whole_file"]

ChunkStatus = Literal["OK", "EMPTY", "FAILED", "UPSTREAM_FAILED"]

AuditEventType = Literal["decode", "vad", "plan", "encode", "upload", "merge", "fallback"]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    type: AuditEventType
    code: str
    detail: str
    duration_ms: Optional[int] = None


class ChunkReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    index: int = Field(ge=0)
    start_ms: int = Field(ge=0)
    end_ms: int = Field(ge=0)
    encoded_bytes: int = 0
    status: ChunkStatus
    error_code: Optional[str] = None
    prompt_chars: int = 0
    text_chars: int = 0
    latency_ms: Optional[int] = None


class TranscriptionReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = ""
    path: Optional[TranscriptionPath] = None
    attempts: int = 0
    chunks: List[ChunkReport] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    events: List[AuditEvent] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)
