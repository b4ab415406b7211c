"""
End-to-end orchestration: decode, detect, plan, upload, merge.

Design intent:
- Each stage degrades to the next fallback instead of aborting the run.
- Only this module decides that a run is unrecoverable, and then raises one aggregated error.
- Never return a partial transcript as final: a run yields a complete merge or an error.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from pathlib import PurePath
from typing import Any, Optional

from fieldscribe.asr.merge import merge_chunk_results, merge_texts, tail_prompt_source
from fieldscribe.asr.models import ChunkPlan, ChunkResult, PcmBuffer, SpeechInterval
from fieldscribe.asr.planner import PlannerLimits, plan_chunks_with_debug
from fieldscribe.asr.scheduler import UPSTREAM_FAILED, run_uploads
from fieldscribe.asr.segments import normalize_speech_segments
from fieldscribe.asr.vad import VADParams, detect_speech_segments_with_debug
from fieldscribe.internal_core.asr.base import TranscriptionProvider
from fieldscribe.internal_core.asr.classifier import VADSession
from fieldscribe.internal_core.audio_utils import decode_to_pcm, encode_wav_chunk, guess_content_type
from fieldscribe.internal_core.audit import log_event
from fieldscribe.internal_core.config import PipelineConfig, tighten_config
from fieldscribe.internal_core.contracts import ChunkReport, TranscriptionReport
from fieldscribe.internal_core.errors import (
    ChunkEncodingError,
    DecodeError,
    TranscriptionPipelineError,
    TranscriptionServiceError,
)

logger = logging.getLogger(__name__)

Decoder = Callable[[bytes, str], PcmBuffer]

_BASENAME_RE = re.compile(r"[^a-z0-9]+", re.IGNORECASE)


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


def sanitize_base_name(name: str) -> str:
    stem = PurePath(name or "").stem
    normalized = _BASENAME_RE.sub("_", stem).strip("_")
    return normalized[:32] or "chunk"


def chunk_file_name(base_name: str, chunk: ChunkPlan) -> str:
    return f"{base_name}_chunk{chunk.index + 1:03d}_{chunk.start_ms}-{chunk.end_ms}.wav"


def split_byte_ranges(raw: bytes, max_bytes: int) -> list[bytes]:
    if max_bytes <= 0:
        raise ValueError("max_bytes must be > 0")
    return [raw[offset : offset + max_bytes] for offset in range(0, len(raw), max_bytes)]


def _chunk_status(result: ChunkResult) -> str:
    if result.error_code == UPSTREAM_FAILED:
        return "UPSTREAM_FAILED"
    if result.error is not None:
        return "FAILED"
    return "OK" if result.text else "EMPTY"


class TranscriptionPipeline:
    def __init__(
        self,
        cfg: PipelineConfig,
        provider: TranscriptionProvider,
        *,
        decoder: Decoder = decode_to_pcm,
        vad_session: Optional[VADSession] = None,
    ):
        cfg.validate()
        self._cfg = cfg
        self._provider = provider
        self._decoder = decoder
        self._vad_session = vad_session

    async def transcribe(
        self,
        audio: bytes,
        *,
        filename: str = "audio.wav",
        language: Optional[str] = None,
        on_result: Optional[Callable[[ChunkResult], None]] = None,
    ) -> TranscriptionReport:
        cfg = self._cfg
        language = language or cfg.STT_DEFAULT_LANGUAGE or None
        report = TranscriptionReport(meta={"provider": self._provider.name(), "input_bytes": len(audio)})

        started = time.perf_counter()
        try:
            pcm = self._decoder(audio, filename)
        except DecodeError as e:
            logger.warning("Decode failed for %s (%s); using byte-range fallback", filename, e.code)
            report.warnings.append(f"decode failed: {e.message}")
            report.errors.append(f"decode:{e.code}")
            log_event(report, "decode", e.code, e.message, _elapsed_ms(started))
            try:
                report.text = await self._transcribe_byte_ranges(
                    audio, filename=filename, language=language, report=report
                )
                report.path = "byte_range"
                return report
            except TranscriptionServiceError as se:
                report.errors.append(f"byte_range:{se.code}")
                log_event(report, "fallback", se.code, f"byte-range fallback failed: {se.message}")
            return await self._transcribe_whole_file(audio, filename=filename, language=language, report=report)

        log_event(report, "decode", "OK", f"{pcm.num_samples} samples", _elapsed_ms(started))
        report.meta["duration_ms"] = pcm.duration_ms

        segments = self._detect(pcm, report)
        normalized = normalize_speech_segments(
            segments,
            pcm.duration_ms,
            cfg.STT_VAD_SPEECH_PAD_MS,
            merge_gap_ms=cfg.STT_VAD_MIN_SILENCE_MS,
        )
        report.meta["segments_raw"] = len(segments)
        report.meta["segments_normalized"] = len(normalized)

        for attempt in range(cfg.STT_REPLAN_ATTEMPTS + 1):
            run_cfg = tighten_config(cfg, attempt)
            report.attempts = attempt + 1
            if attempt > 0:
                report.warnings.append(
                    f"replan attempt {attempt}: max {run_cfg.STT_MAX_CHUNK_DURATION_SEC:.1f}s / "
                    f"{run_cfg.STT_MAX_CHUNK_BYTES} bytes"
                )
            text = await self._run_chunked_attempt(
                pcm,
                normalized,
                run_cfg,
                filename=filename,
                language=language,
                report=report,
                on_result=on_result,
            )
            if text is not None:
                report.text = text
                return report
            if not report.chunks and report.meta.get("plan", {}).get("mode") == "empty":
                break

        return await self._transcribe_whole_file(audio, filename=filename, language=language, report=report)

    def _detect(self, pcm: PcmBuffer, report: TranscriptionReport) -> list[SpeechInterval]:
        cfg = self._cfg
        session = self._vad_session if cfg.STT_VAD_ENABLED else None
        started = time.perf_counter()
        try:
            segments, vad_debug = detect_speech_segments_with_debug(
                pcm, VADParams.from_config(cfg), session=session
            )
        except Exception as e:
            logger.warning("Speech detection failed, planning uniform chunks: %s", e)
            report.warnings.append(f"speech detection failed: {e}")
            log_event(report, "vad", "VAD_FAILED", str(e), _elapsed_ms(started))
            report.meta["vad"] = {"method": "failed"}
            return []
        report.meta["vad"] = vad_debug
        if vad_debug.get("fallback_reason") and vad_debug["fallback_reason"] != "VAD_DISABLED":
            report.warnings.append(f"speech classifier fallback: {vad_debug['fallback_reason']}")
        log_event(
            report,
            "vad",
            str(vad_debug.get("method", "none")).upper(),
            f"{len(segments)} speech segments",
            _elapsed_ms(started),
        )
        return segments

    async def _run_chunked_attempt(
        self,
        pcm: PcmBuffer,
        segments: list[SpeechInterval],
        run_cfg: PipelineConfig,
        *,
        filename: str,
        language: Optional[str],
        report: TranscriptionReport,
        on_result: Optional[Callable[[ChunkResult], None]],
    ) -> Optional[str]:
        limits = PlannerLimits.from_config(run_cfg)
        plans, plan_debug = plan_chunks_with_debug(segments, pcm.duration_ms, limits)
        report.meta["plan"] = plan_debug
        report.chunks = []
        if not plans:
            log_event(report, "plan", "EMPTY_PLAN", "no chunks planned")
            return None
        log_event(report, "plan", plan_debug["mode"].upper(), f"{len(plans)} chunks")

        payloads: dict[int, bytes] = {}
        windows: list[ChunkPlan] = []
        for plan in plans:
            try:
                payload = encode_wav_chunk(pcm, plan.start_ms, plan.end_ms, chunk_index=plan.index)
            except ChunkEncodingError as e:
                logger.warning("Dropping chunk %s: %s", e.chunk_index, e.message)
                report.warnings.append(f"chunk {e.chunk_index} dropped: {e.code}")
                log_event(report, "encode", e.code, e.message)
                continue
            new_index = len(windows)
            windows.append(ChunkPlan(index=new_index, start_ms=plan.start_ms, end_ms=plan.end_ms))
            payloads[new_index] = payload
        if not windows:
            report.errors.append("encode:NO_CHUNKS")
            log_event(report, "encode", "NO_CHUNKS", "every planned chunk failed to encode")
            return None

        base_name = sanitize_base_name(filename)
        latency_ms: dict[int, int] = {}
        prompt_chars: dict[int, int] = {}

        async def _transcribe_chunk(chunk: ChunkPlan, prompt: str) -> str:
            prompt_chars[chunk.index] = len(prompt)
            chunk_started = time.perf_counter()
            try:
                return await self._provider.transcribe(
                    payloads[chunk.index],
                    filename=chunk_file_name(base_name, chunk),
                    language=language,
                    prompt=prompt or None,
                )
            finally:
                latency_ms[chunk.index] = _elapsed_ms(chunk_started)

        started = time.perf_counter()
        results = await run_uploads(
            windows,
            _transcribe_chunk,
            concurrency=run_cfg.STT_UPLOAD_CONCURRENCY,
            prompt_tail_chars=run_cfg.STT_PROMPT_TAIL_CHARS,
            prompt_chain=run_cfg.STT_PROMPT_CHAIN,
            on_result=on_result,
        )
        report.chunks = [
            ChunkReport(
                index=r.index,
                start_ms=r.start_ms,
                end_ms=r.end_ms,
                encoded_bytes=len(payloads[r.index]),
                status=_chunk_status(r),
                error_code=r.error_code,
                prompt_chars=prompt_chars.get(r.index, 0),
                text_chars=len(r.text),
                latency_ms=latency_ms.get(r.index),
            )
            for r in results
        ]

        failed = [r for r in results if not r.ok]
        if failed:
            first = failed[0]
            report.errors.append(f"upload:{first.error_code}")
            log_event(
                report,
                "upload",
                first.error_code or "FAILED",
                f"{len(failed)} of {len(results)} chunks failed; first at index {first.index}",
                _elapsed_ms(started),
            )
            return None
        log_event(report, "upload", "OK", f"{len(results)} chunks transcribed", _elapsed_ms(started))

        merged = merge_chunk_results(
            results,
            max_tokens=run_cfg.STT_MERGE_MAX_TOKENS,
            min_chars=run_cfg.STT_MERGE_MIN_CHARS,
        )
        report.path = "vad_chunked" if plan_debug["mode"] == "segments" else "uniform_chunked"
        log_event(report, "merge", "OK", f"{len(merged)} chars")
        return merged

    async def _transcribe_byte_ranges(
        self,
        raw: bytes,
        *,
        filename: str,
        language: Optional[str],
        report: TranscriptionReport,
    ) -> str:
        cfg = self._cfg
        pieces = split_byte_ranges(raw, cfg.STT_MAX_CHUNK_BYTES)
        path = PurePath(filename or "audio")
        stem = path.stem or "audio"
        content_type = guess_content_type(filename)
        merged = ""
        started = time.perf_counter()
        for i, piece in enumerate(pieces):
            prompt = tail_prompt_source(merged, cfg.STT_PROMPT_TAIL_CHARS)
            text = await self._provider.transcribe(
                piece,
                filename=f"{stem}-fallback-{i:03d}{path.suffix}",
                language=language,
                prompt=prompt or None,
                content_type=content_type,
            )
            merged = merge_texts(
                merged,
                text,
                max_tokens=cfg.STT_MERGE_MAX_TOKENS,
                min_chars=cfg.STT_MERGE_MIN_CHARS,
            )
        log_event(report, "fallback", "BYTE_RANGE_OK", f"{len(pieces)} byte ranges", _elapsed_ms(started))
        report.meta["byte_ranges"] = len(pieces)
        return merged

    async def _transcribe_whole_file(
        self,
        raw: bytes,
        *,
        filename: str,
        language: Optional[str],
        report: TranscriptionReport,
    ) -> TranscriptionReport:
        logger.warning("Falling back to a single whole-file request for %s", filename)
        report.warnings.append("falling back to a single whole-file request")
        started = time.perf_counter()
        try:
            text = await self._provider.transcribe(
                raw,
                filename=PurePath(filename or "audio").name,
                language=language,
                content_type=guess_content_type(filename),
            )
        except TranscriptionServiceError as e:
            report.errors.append(f"whole_file:{e.code}")
            log_event(report, "fallback", e.code, f"whole-file request failed: {e.message}")
            raise TranscriptionPipelineError(
                f"Transcription failed after every fallback: {', '.join(report.errors)}",
                report.errors,
            ) from e
        log_event(report, "fallback", "WHOLE_FILE_OK", "single request", _elapsed_ms(started))
        report.text = (text or "").strip()
        report.path = "whole_file"
        return report


def report_debug(report: TranscriptionReport) -> dict[str, Any]:
    return {
        "path": report.path,
        "attempts": report.attempts,
        "warnings": list(report.warnings),
        "errors": list(report.errors),
        "meta": dict(report.meta),
    }
