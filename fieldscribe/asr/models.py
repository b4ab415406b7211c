"""
Typed data contracts shared by the segmentation, packing and merge stages.

Design intent:
- Keep PCM immutable once decoded so concurrent stages can share one buffer.
- Enforce window validity at construction so later stages never re-check bounds.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from pydantic import BaseModel, Field, model_validator


@dataclass(frozen=True)
class PcmBuffer:
    samples: np.ndarray
    sample_rate: int = 16000

    def __post_init__(self) -> None:
        audio = np.array(self.samples, dtype=np.float32, copy=True).reshape(-1)
        audio.setflags(write=False)
        object.__setattr__(self, "samples", audio)
        if int(self.sample_rate) <= 0:
            raise ValueError("PcmBuffer.sample_rate must be > 0")

    @property
    def num_samples(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_ms(self) -> float:
        return self.num_samples * 1000.0 / float(self.sample_rate)


class SpeechInterval(BaseModel):
    start_ms: float = Field(ge=0.0)
    end_ms: float = Field(ge=0.0)

    @model_validator(mode="after")
    def _validate_window(self) -> "SpeechInterval":
        if not (math.isfinite(self.start_ms) and math.isfinite(self.end_ms)):
            raise ValueError("SpeechInterval bounds must be finite")
        if self.end_ms <= self.start_ms:
            raise ValueError("SpeechInterval.end_ms must be > SpeechInterval.start_ms")
        return self

    @property
    def duration_ms(self) -> float:
        return self.end_ms - self.start_ms


class ChunkPlan(BaseModel):
    index: int = Field(ge=0)
    start_ms: int = Field(ge=0)
    end_ms: int = Field(ge=0)

    @model_validator(mode="after")
    def _validate_window(self) -> "ChunkPlan":
        if self.end_ms <= self.start_ms:
            raise ValueError("ChunkPlan.end_ms must be > ChunkPlan.start_ms")
        return self

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


class ChunkResult(BaseModel):
    index: int = Field(ge=0)
    start_ms: int = Field(ge=0)
    end_ms: int = Field(ge=0)
    text: str = ""
    error: str | None = None
    error_code: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
