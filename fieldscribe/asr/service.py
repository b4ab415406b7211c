"""
Wire configuration, providers and the pipeline together for callers (API, CLI).

Design intent:
- Build remote clients once per configuration and reuse them across runs.
- Keep caller overrides (provider, chunk limits) explicit and validated.
- Surface one adapter-level error type for misconfiguration.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Optional

from fieldscribe.asr.models import ChunkResult
from fieldscribe.asr.pipeline import TranscriptionPipeline
from fieldscribe.internal_core import load_config
from fieldscribe.internal_core.asr import (
    MockTranscriptionProvider,
    OpenAITranscriptionProvider,
    TranscriptionProvider,
    VADSession,
)
from fieldscribe.internal_core.audio_utils import read_audio_file
from fieldscribe.internal_core.config import PipelineConfig
from fieldscribe.internal_core.contracts import TranscriptionReport
from fieldscribe.internal_core.errors import TranscriptionServiceError


class TranscriptionSetupError(RuntimeError):
    """Raised when the requested provider or overrides cannot be honored."""


_PROVIDER_CACHE: dict[tuple[Any, ...], TranscriptionProvider] = {}
_PROVIDER_CACHE_LOCK = threading.Lock()
_SUPPORTED_PROVIDERS = {"openai", "mock"}


def _provider_cache_key(provider_name: str, cfg: PipelineConfig) -> tuple[Any, ...]:
    if provider_name == "openai":
        return (
            "openai",
            str(cfg.STT_TRANSCRIBE_MODEL),
            str(cfg.OPENAI_API_KEY),
            float(cfg.STT_REQUEST_TIMEOUT_SEC),
        )
    return (provider_name,)


def _normalize_provider_name(name: str | None) -> str:
    return (name or "").strip().lower()


def resolve_provider_name(cfg: PipelineConfig, provider_override: str | None) -> str:
    name = _normalize_provider_name(provider_override) or _normalize_provider_name(cfg.STT_PROVIDER)
    if not name:
        name = "openai" if cfg.OPENAI_API_KEY else "mock"
    if name not in _SUPPORTED_PROVIDERS:
        raise TranscriptionSetupError(f"Unsupported transcription provider: {name}")
    return name


def get_provider(provider_name: str, cfg: PipelineConfig) -> TranscriptionProvider:
    if provider_name == "mock":
        return MockTranscriptionProvider()
    key = _provider_cache_key(provider_name, cfg)
    with _PROVIDER_CACHE_LOCK:
        existing = _PROVIDER_CACHE.get(key)
        if existing is not None:
            return existing
        try:
            created = OpenAITranscriptionProvider(
                api_key=cfg.OPENAI_API_KEY,
                model=cfg.STT_TRANSCRIBE_MODEL,
                timeout_sec=cfg.STT_REQUEST_TIMEOUT_SEC,
            )
        except TranscriptionServiceError as exc:
            raise TranscriptionSetupError(exc.message) from exc
        _PROVIDER_CACHE[key] = created
        return created


def apply_overrides(
    cfg: PipelineConfig,
    *,
    max_chunk_duration_sec: float | None = None,
    overlap_ms: int | None = None,
    upload_concurrency: int | None = None,
) -> PipelineConfig:
    if max_chunk_duration_sec is not None and max_chunk_duration_sec > 0:
        cfg = replace(cfg, STT_MAX_CHUNK_DURATION_SEC=float(max_chunk_duration_sec))
    if overlap_ms is not None and overlap_ms >= 0:
        cfg = replace(cfg, STT_OVERLAP_MS=int(overlap_ms))
    if upload_concurrency is not None and upload_concurrency > 0:
        cfg = replace(cfg, STT_UPLOAD_CONCURRENCY=int(upload_concurrency))
    try:
        cfg.validate()
    except ValueError as exc:
        raise TranscriptionSetupError(str(exc)) from exc
    return cfg


def build_vad_session(cfg: PipelineConfig) -> Optional[VADSession]:
    if not cfg.STT_VAD_ENABLED:
        return None
    return VADSession(cfg.STT_VAD_MODEL_PATH, sample_rate=cfg.STT_SAMPLE_RATE)


def build_pipeline(
    cfg: PipelineConfig | None = None,
    *,
    provider: str | TranscriptionProvider | None = None,
    vad_session: VADSession | None = None,
) -> TranscriptionPipeline:
    cfg = cfg or load_config()
    if isinstance(provider, TranscriptionProvider):
        resolved = provider
    else:
        resolved = get_provider(resolve_provider_name(cfg, provider), cfg)
    if vad_session is None:
        vad_session = build_vad_session(cfg)
    return TranscriptionPipeline(cfg, resolved, vad_session=vad_session)


async def transcribe_audio_bytes(
    audio: bytes,
    *,
    filename: str = "audio.wav",
    language: str | None = None,
    cfg: PipelineConfig | None = None,
    provider: str | TranscriptionProvider | None = None,
    vad_session: VADSession | None = None,
    on_result: Callable[[ChunkResult], None] | None = None,
) -> TranscriptionReport:
    pipeline = build_pipeline(cfg, provider=provider, vad_session=vad_session)
    return await pipeline.transcribe(audio, filename=filename, language=language, on_result=on_result)


async def transcribe_audio_file(
    audio_path: str | Path,
    *,
    language: str | None = None,
    cfg: PipelineConfig | None = None,
    provider: str | TranscriptionProvider | None = None,
    vad_session: VADSession | None = None,
    on_result: Callable[[ChunkResult], None] | None = None,
) -> TranscriptionReport:
    """
    Transcribe a file on disk.

    Raises ``FileNotFoundError`` for a missing path and ``ValueError`` when the file exceeds
    ``STT_MAX_UPLOAD_BYTES``.
    """
    cfg = cfg or load_config()
    path = Path(audio_path).expanduser().resolve()
    raw = read_audio_file(path, max_bytes=cfg.STT_MAX_UPLOAD_BYTES)
    return await transcribe_audio_bytes(
        raw,
        filename=path.name,
        language=language,
        cfg=cfg,
        provider=provider,
        vad_session=vad_session,
        on_result=on_result,
    )
