"""
Chunk planning for size- and duration-limited transcription requests.

Design intent:
- Pack speech intervals greedily so each request carries as much speech as the limits allow.
- Repeat a short lead-in of audio at every seam so the merger can find duplicated words.
- Derive byte limits from the WAV header plus sample payload so no planned chunk is rejected.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Sequence

from fieldscribe.asr.models import ChunkPlan, SpeechInterval
from fieldscribe.internal_core.config import WAV_HEADER_BYTES, PipelineConfig


def estimate_wav_bytes(duration_ms: float, sample_rate: int, bytes_per_sample: int) -> int:
    # One extra sample covers floor/ceil rounding when slicing at millisecond bounds.
    samples = math.ceil(max(duration_ms, 0.0) * sample_rate / 1000.0) + 1
    return WAV_HEADER_BYTES + samples * bytes_per_sample


def max_duration_ms_for_bytes(max_bytes: int, sample_rate: int, bytes_per_sample: int) -> int:
    max_samples = (max_bytes - WAV_HEADER_BYTES) // bytes_per_sample - 1
    if max_samples <= 0:
        return 0
    return int(max_samples * 1000 // sample_rate)


@dataclass(frozen=True)
class PlannerLimits:
    max_duration_ms: int
    max_bytes: int
    overlap_ms: int
    min_chunk_ms: int
    sample_rate: int
    bytes_per_sample: int

    @classmethod
    def from_config(cls, cfg: PipelineConfig) -> "PlannerLimits":
        return cls(
            max_duration_ms=cfg.max_chunk_duration_ms,
            max_bytes=int(cfg.STT_MAX_CHUNK_BYTES),
            overlap_ms=int(cfg.STT_OVERLAP_MS),
            min_chunk_ms=cfg.min_chunk_duration_ms,
            sample_rate=int(cfg.STT_SAMPLE_RATE),
            bytes_per_sample=int(cfg.STT_BYTES_PER_SAMPLE),
        )

    @property
    def byte_limited_ms(self) -> int:
        return max_duration_ms_for_bytes(self.max_bytes, self.sample_rate, self.bytes_per_sample)

    @property
    def core_ms(self) -> int:
        """Longest stretch of new audio one chunk may carry besides its overlap."""
        return max(1, min(self.max_duration_ms, self.byte_limited_ms - self.overlap_ms))

    @property
    def hard_limit_ms(self) -> int:
        return min(self.max_duration_ms + self.overlap_ms, self.byte_limited_ms)

    def bytes_for(self, duration_ms: float) -> int:
        return estimate_wav_bytes(duration_ms, self.sample_rate, self.bytes_per_sample)

    def fits_packed(self, duration_ms: float) -> bool:
        return duration_ms <= self.max_duration_ms and self.bytes_for(duration_ms) <= self.max_bytes

    def fits_hard(self, duration_ms: float) -> bool:
        return duration_ms <= self.hard_limit_ms and self.bytes_for(duration_ms) <= self.max_bytes


def _to_windows(segments: Sequence[SpeechInterval], total_ms: int) -> list[tuple[int, int]]:
    out: list[tuple[int, int]] = []
    for seg in segments:
        start = max(0, int(math.floor(seg.start_ms)))
        end = min(total_ms, int(math.ceil(seg.end_ms)))
        if end > start:
            out.append((start, end))
    out.sort()
    return out


def _split_long(windows: list[tuple[int, int]], core_ms: int) -> list[tuple[int, int]]:
    out: list[tuple[int, int]] = []
    for start, end in windows:
        cursor = start
        while end - cursor > core_ms:
            out.append((cursor, cursor + core_ms))
            cursor += core_ms
        if end > cursor:
            out.append((cursor, end))
    return out


def _pack(windows: list[tuple[int, int]], limits: PlannerLimits) -> list[list[int]]:
    chunks: list[list[int]] = []
    current: list[int] | None = None
    for start, end in windows:
        if current is None:
            current = [start, end]
            continue
        candidate_end = max(current[1], end)
        if limits.fits_packed(candidate_end - current[0]):
            current[1] = candidate_end
            continue
        chunks.append(current)
        current = [max(0, start - limits.overlap_ms), end]
    if current is not None:
        chunks.append(current)
    return chunks


def build_uniform_chunks(total_ms: int, limits: PlannerLimits) -> list[list[int]]:
    if total_ms <= 0:
        return []
    core = limits.core_ms
    lead = limits.overlap_ms // 2
    trail = limits.overlap_ms - lead
    chunks: list[list[int]] = []
    boundary = 0
    while boundary < total_ms:
        nxt = min(total_ms, boundary + core)
        start = boundary - lead if boundary > 0 else 0
        end = nxt + trail if nxt < total_ms else total_ms
        chunks.append([max(0, start), min(total_ms, end)])
        boundary = nxt
    return chunks


def _absorb_short_chunks(chunks: list[list[int]], limits: PlannerLimits) -> list[list[int]]:
    if limits.min_chunk_ms <= 0:
        return chunks
    result = [list(c) for c in chunks]
    i = 0
    while i < len(result) and len(result) > 1:
        start, end = result[i]
        if end - start >= limits.min_chunk_ms:
            i += 1
            continue
        merged_into = None
        # Prefer the following chunk; the preceding one is the fallback.
        for neighbor in (i + 1, i - 1):
            if neighbor < 0 or neighbor >= len(result):
                continue
            merged_start = min(start, result[neighbor][0])
            merged_end = max(end, result[neighbor][1])
            if limits.fits_hard(merged_end - merged_start):
                result[neighbor] = [merged_start, merged_end]
                merged_into = neighbor
                break
        if merged_into is None:
            i += 1
            continue
        del result[i]
        i = merged_into if merged_into < i else i
    return result


def plan_chunks_with_debug(
    segments: Sequence[SpeechInterval],
    duration_ms: float,
    limits: PlannerLimits,
) -> tuple[list[ChunkPlan], dict[str, Any]]:
    debug: dict[str, Any] = {
        "mode": "empty",
        "core_ms": limits.core_ms,
        "byte_limited_ms": limits.byte_limited_ms,
        "max_duration_ms": limits.max_duration_ms,
        "max_bytes": limits.max_bytes,
        "overlap_ms": limits.overlap_ms,
    }
    if not math.isfinite(duration_ms) or duration_ms <= 0:
        return [], debug
    total_ms = int(math.ceil(duration_ms))

    windows = _split_long(_to_windows(segments, total_ms), limits.core_ms)
    if windows:
        raw = _pack(windows, limits)
        debug["mode"] = "segments"
    else:
        raw = build_uniform_chunks(total_ms, limits)
        debug["mode"] = "uniform"
    debug["raw_chunks"] = len(raw)

    packed = _absorb_short_chunks(raw, limits)
    plans = [
        ChunkPlan(index=index, start_ms=start, end_ms=end)
        for index, (start, end) in enumerate(c for c in packed if c[1] > c[0])
    ]
    debug["chunks"] = len(plans)
    return plans, debug


def plan_chunks(
    segments: Sequence[SpeechInterval],
    duration_ms: float,
    limits: PlannerLimits,
) -> list[ChunkPlan]:
    plans, _ = plan_chunks_with_debug(segments, duration_ms, limits)
    return plans
