"""
HTTP surface for the transcription pipeline.

Design intent:
- Keep API orchestration thin and typed.
- Delegate all segmentation, upload and merge logic to the asr package.
- Return run metadata alongside the transcript so failures are diagnosable.
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from fieldscribe.asr.pipeline import report_debug
from fieldscribe.asr.service import (
    TranscriptionSetupError,
    apply_overrides,
    build_pipeline,
    build_vad_session,
)
from fieldscribe.internal_core import load_config
from fieldscribe.internal_core.asr import TranscriptionProvider, VADSession
from fieldscribe.internal_core.audio_utils import read_audio_file
from fieldscribe.internal_core.config import PipelineConfig
from fieldscribe.internal_core.contracts import ChunkReport, TranscriptionPath
from fieldscribe.internal_core.errors import TranscriptionPipelineError


class TranscribeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    audio_path: Optional[str] = None
    audio_b64: Optional[str] = None
    filename: Optional[str] = Field(default=None, max_length=256)
    language: Optional[str] = Field(default=None, max_length=16)
    provider: Optional[str] = None
    max_chunk_duration_sec: Optional[float] = Field(default=None, gt=0)
    overlap_ms: Optional[int] = Field(default=None, ge=0)
    upload_concurrency: Optional[int] = Field(default=None, ge=1, le=16)


class TranscribeResponse(BaseModel):
    text: str
    path: Optional[TranscriptionPath] = None
    attempts: int
    chunks: list[ChunkReport] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    debug: dict[str, Any] = Field(default_factory=dict)


app = FastAPI(title="fieldscribe transcription service")
logger = logging.getLogger(__name__)


def _get_config() -> PipelineConfig:
    configured = getattr(app.state, "pipeline_config", None)
    if isinstance(configured, PipelineConfig):
        return configured
    created = load_config()
    setattr(app.state, "pipeline_config", created)
    return created


def _get_vad_session(cfg: PipelineConfig) -> Optional[VADSession]:
    # One handle per app so the classifier loads at most once.
    existing = getattr(app.state, "vad_session", None)
    if isinstance(existing, VADSession):
        return existing
    created = build_vad_session(cfg)
    setattr(app.state, "vad_session", created)
    return created


def _read_payload(payload: TranscribeRequest, cfg: PipelineConfig) -> tuple[bytes, str]:
    if payload.audio_b64:
        try:
            raw = base64.b64decode(payload.audio_b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(status_code=400, detail=f"Invalid audio_b64: {exc}") from exc
        if not raw:
            raise HTTPException(status_code=400, detail="audio_b64 decoded to an empty payload.")
        if len(raw) > cfg.STT_MAX_UPLOAD_BYTES:
            raise HTTPException(status_code=413, detail="Audio payload exceeds the upload limit.")
        return raw, payload.filename or "audio.wav"

    if payload.audio_path:
        path = Path(payload.audio_path).expanduser()
        try:
            raw = read_audio_file(path, max_bytes=cfg.STT_MAX_UPLOAD_BYTES)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=413, detail=str(exc)) from exc
        return raw, payload.filename or path.name

    raise HTTPException(status_code=400, detail="Provide one of: audio_path or audio_b64.")


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/transcribe", response_model=TranscribeResponse)
async def transcribe(payload: TranscribeRequest) -> TranscribeResponse:
    base_cfg = _get_config()
    raw, filename = _read_payload(payload, base_cfg)

    try:
        cfg = apply_overrides(
            base_cfg,
            max_chunk_duration_sec=payload.max_chunk_duration_sec,
            overlap_ms=payload.overlap_ms,
            upload_concurrency=payload.upload_concurrency,
        )
        injected = getattr(app.state, "transcription_provider", None)
        provider: str | TranscriptionProvider | None = (
            injected if isinstance(injected, TranscriptionProvider) else payload.provider
        )
        pipeline = build_pipeline(cfg, provider=provider, vad_session=_get_vad_session(cfg))
    except TranscriptionSetupError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        report = await pipeline.transcribe(raw, filename=filename, language=payload.language)
    except TranscriptionPipelineError as exc:
        logger.error("Transcription failed for %s: %s", filename, exc.errors)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return TranscribeResponse(
        text=report.text,
        path=report.path,
        attempts=report.attempts,
        chunks=list(report.chunks),
        warnings=list(report.warnings),
        debug=report_debug(report),
    )
