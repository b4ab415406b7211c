from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

WAV_HEADER_BYTES = 44
# Decoder output and chunk encoding are fixed to 16kHz mono 16-bit PCM.
PCM_SAMPLE_RATE = 16000
PCM_SAMPLE_WIDTH = 2
_VALID_VAD_WINDOWS = (512, 1024, 1536)


def _project_root() -> Path:
    # fieldscribe/internal_core/config.py -> fieldscribe -> repo root
    return Path(__file__).resolve().parents[2]


def _resolve_existing_path_or_empty(candidates: list[Path]) -> str:
    for candidate in candidates:
        try:
            resolved = candidate.expanduser().resolve()
        except OSError:
            continue
        if resolved.exists():
            return str(resolved)
    return ""


def _model_root_from_env() -> Optional[Path]:
    raw = os.getenv("FIELDSCRIBE_MODEL_ROOT", "").strip()
    if not raw:
        return None
    try:
        return Path(raw).expanduser().resolve()
    except OSError:
        return None


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_set(name: str) -> bool:
    value = os.getenv(name)
    return value is not None and value != ""


def _getenv_int_preset(name: str, default: int, preset_value: Optional[int]) -> int:
    if _env_set(name):
        return _getenv_int(name, default)
    if preset_value is not None:
        return int(preset_value)
    return default


def _getenv_float_preset(name: str, default: float, preset_value: Optional[float]) -> float:
    if _env_set(name):
        return _getenv_float(name, default)
    if preset_value is not None:
        return float(preset_value)
    return default


def _getenv_bool_preset(name: str, default: bool, preset_value: Optional[bool]) -> bool:
    if _env_set(name):
        return _getenv_bool(name, default)
    if preset_value is not None:
        return bool(preset_value)
    return default


def _preset_overrides(name: str) -> dict[str, object]:
    if name == "noisy_field_recording_v1":
        return {
            "STT_VAD_THRESHOLD": 0.6,
            "STT_VAD_MIN_SPEECH_MS": 400,
            "STT_VAD_MIN_SILENCE_MS": 300,
            "STT_VAD_ENERGY_PEAK_RATIO": 0.3,
        }
    if name == "low_bandwidth_v1":
        return {
            "STT_MAX_CHUNK_DURATION_SEC": 300,
            "STT_MAX_CHUNK_BYTES": 8 * 1024 * 1024,
            "STT_UPLOAD_CONCURRENCY": 2,
        }
    return {}


def _snap_vad_window(value: int) -> int:
    return value if value in _VALID_VAD_WINDOWS else _VALID_VAD_WINDOWS[0]


@dataclass(frozen=True)
class PipelineConfig:
    STT_PRESET: str
    STT_VAD_ENABLED: bool
    STT_VAD_THRESHOLD: float
    STT_VAD_MIN_SPEECH_MS: int
    STT_VAD_MIN_SILENCE_MS: int
    STT_VAD_SPEECH_PAD_MS: int
    STT_VAD_MAX_SPEECH_MS: int
    STT_VAD_WINDOW_SAMPLES: int
    STT_VAD_ENERGY_PEAK_RATIO: float
    STT_VAD_MODEL_PATH: str
    STT_SAMPLE_RATE: int
    STT_BYTES_PER_SAMPLE: int
    STT_MAX_CHUNK_DURATION_SEC: float
    STT_MAX_CHUNK_BYTES: int
    STT_OVERLAP_MS: int
    STT_MIN_CHUNK_DURATION_SEC: float
    STT_UPLOAD_CONCURRENCY: int
    STT_PROMPT_TAIL_CHARS: int
    STT_PROMPT_CHAIN: bool
    STT_MERGE_MAX_TOKENS: int
    STT_MERGE_MIN_CHARS: int
    STT_REPLAN_ATTEMPTS: int
    STT_REPLAN_SHRINK_FACTOR: float
    STT_PROVIDER: str
    STT_TRANSCRIBE_MODEL: str
    OPENAI_API_KEY: str
    STT_REQUEST_TIMEOUT_SEC: float
    STT_DEFAULT_LANGUAGE: str
    STT_LOG_LEVEL: str
    STT_MAX_UPLOAD_BYTES: int

    @property
    def max_chunk_duration_ms(self) -> int:
        return int(round(self.STT_MAX_CHUNK_DURATION_SEC * 1000))

    @property
    def min_chunk_duration_ms(self) -> int:
        return int(round(self.STT_MIN_CHUNK_DURATION_SEC * 1000))

    def min_valid_chunk_bytes(self) -> int:
        # Smallest payload that still leaves one second of audio beyond the overlap.
        samples = math.ceil((self.STT_OVERLAP_MS + 1000) * self.STT_SAMPLE_RATE / 1000)
        return WAV_HEADER_BYTES + (samples + 1) * self.STT_BYTES_PER_SAMPLE

    def validate(self) -> None:
        problems: list[str] = []
        if not 0.0 <= self.STT_VAD_THRESHOLD <= 1.0:
            problems.append("STT_VAD_THRESHOLD must be within [0, 1]")
        if self.STT_VAD_MIN_SPEECH_MS < 0 or self.STT_VAD_MIN_SILENCE_MS < 0:
            problems.append("VAD speech/silence durations must be >= 0")
        if self.STT_VAD_MAX_SPEECH_MS <= 0:
            problems.append("STT_VAD_MAX_SPEECH_MS must be > 0")
        if self.STT_SAMPLE_RATE != PCM_SAMPLE_RATE:
            problems.append(f"STT_SAMPLE_RATE must be {PCM_SAMPLE_RATE} (decoder output rate)")
        if self.STT_BYTES_PER_SAMPLE != PCM_SAMPLE_WIDTH:
            problems.append(f"STT_BYTES_PER_SAMPLE must be {PCM_SAMPLE_WIDTH} (16-bit PCM)")
        if self.STT_MAX_CHUNK_DURATION_SEC <= 0:
            problems.append("STT_MAX_CHUNK_DURATION_SEC must be > 0")
        if self.STT_OVERLAP_MS < 0:
            problems.append("STT_OVERLAP_MS must be >= 0")
        if self.STT_OVERLAP_MS >= self.max_chunk_duration_ms:
            problems.append("STT_OVERLAP_MS must be smaller than the max chunk duration")
        if self.STT_MAX_CHUNK_BYTES < self.min_valid_chunk_bytes():
            problems.append(
                f"STT_MAX_CHUNK_BYTES must be at least {self.min_valid_chunk_bytes()} bytes"
            )
        if self.STT_UPLOAD_CONCURRENCY < 1:
            problems.append("STT_UPLOAD_CONCURRENCY must be >= 1")
        if self.STT_REPLAN_ATTEMPTS < 0:
            problems.append("STT_REPLAN_ATTEMPTS must be >= 0")
        if not 0.0 < self.STT_REPLAN_SHRINK_FACTOR < 1.0:
            problems.append("STT_REPLAN_SHRINK_FACTOR must be within (0, 1)")
        if problems:
            raise ValueError("Invalid pipeline configuration: " + "; ".join(problems))


def tighten_config(cfg: PipelineConfig, attempt: int) -> PipelineConfig:
    """Shrink packing limits for replan attempt ``attempt`` (0 leaves them untouched)."""
    if attempt <= 0:
        return cfg
    factor = cfg.STT_REPLAN_SHRINK_FACTOR ** attempt
    min_duration_sec = (cfg.STT_OVERLAP_MS + 1000) / 1000.0
    duration_sec = max(min_duration_sec, cfg.STT_MAX_CHUNK_DURATION_SEC * factor)
    max_bytes = max(cfg.min_valid_chunk_bytes(), int(cfg.STT_MAX_CHUNK_BYTES * factor))
    return replace(
        cfg,
        STT_MAX_CHUNK_DURATION_SEC=duration_sec,
        STT_MAX_CHUNK_BYTES=max_bytes,
    )


def load_config() -> PipelineConfig:
    project_root = _project_root()
    model_root = _model_root_from_env()

    stt_preset = _getenv_str("STT_PRESET", "")
    preset = _preset_overrides(stt_preset)

    model_prefixes: list[Path] = []
    if model_root is not None:
        model_prefixes.append(model_root)
    model_prefixes.extend([project_root / "models", project_root])
    default_vad_model = _resolve_existing_path_or_empty(
        [base / "silero_vad" / "silero_vad.jit" for base in model_prefixes]
        + [base / "silero_vad.jit" for base in model_prefixes]
    )

    api_key = _getenv_str("OPENAI_API_KEY", "")
    default_provider = "openai" if api_key else "mock"

    cfg = PipelineConfig(
        STT_PRESET=stt_preset,
        STT_VAD_ENABLED=_getenv_bool_preset("STT_VAD_ENABLED", True, preset.get("STT_VAD_ENABLED")),
        STT_VAD_THRESHOLD=_getenv_float_preset(
            "STT_VAD_THRESHOLD", 0.5, preset.get("STT_VAD_THRESHOLD")
        ),
        STT_VAD_MIN_SPEECH_MS=_getenv_int_preset(
            "STT_VAD_MIN_SPEECH_MS", 250, preset.get("STT_VAD_MIN_SPEECH_MS")
        ),
        STT_VAD_MIN_SILENCE_MS=_getenv_int_preset(
            "STT_VAD_MIN_SILENCE_MS", 100, preset.get("STT_VAD_MIN_SILENCE_MS")
        ),
        STT_VAD_SPEECH_PAD_MS=_getenv_int_preset(
            "STT_VAD_SPEECH_PAD_MS", 200, preset.get("STT_VAD_SPEECH_PAD_MS")
        ),
        STT_VAD_MAX_SPEECH_MS=_getenv_int_preset(
            "STT_VAD_MAX_SPEECH_MS", 15 * 60 * 1000, preset.get("STT_VAD_MAX_SPEECH_MS")
        ),
        STT_VAD_WINDOW_SAMPLES=_snap_vad_window(_getenv_int("STT_VAD_WINDOW_SAMPLES", 512)),
        STT_VAD_ENERGY_PEAK_RATIO=_getenv_float_preset(
            "STT_VAD_ENERGY_PEAK_RATIO", 0.2, preset.get("STT_VAD_ENERGY_PEAK_RATIO")
        ),
        STT_VAD_MODEL_PATH=_getenv_str("STT_VAD_MODEL_PATH", default_vad_model),
        STT_SAMPLE_RATE=_getenv_int("STT_SAMPLE_RATE", PCM_SAMPLE_RATE),
        STT_BYTES_PER_SAMPLE=_getenv_int("STT_BYTES_PER_SAMPLE", PCM_SAMPLE_WIDTH),
        STT_MAX_CHUNK_DURATION_SEC=_getenv_float_preset(
            "STT_MAX_CHUNK_DURATION_SEC", 1200.0, preset.get("STT_MAX_CHUNK_DURATION_SEC")
        ),
        STT_MAX_CHUNK_BYTES=_getenv_int_preset(
            "STT_MAX_CHUNK_BYTES", 24 * 1024 * 1024, preset.get("STT_MAX_CHUNK_BYTES")
        ),
        STT_OVERLAP_MS=_getenv_int("STT_OVERLAP_MS", 500),
        STT_MIN_CHUNK_DURATION_SEC=_getenv_float("STT_MIN_CHUNK_DURATION_SEC", 15.0),
        STT_UPLOAD_CONCURRENCY=_getenv_int_preset(
            "STT_UPLOAD_CONCURRENCY", 3, preset.get("STT_UPLOAD_CONCURRENCY")
        ),
        STT_PROMPT_TAIL_CHARS=_getenv_int("STT_PROMPT_TAIL_CHARS", 200),
        STT_PROMPT_CHAIN=_getenv_bool("STT_PROMPT_CHAIN", True),
        STT_MERGE_MAX_TOKENS=_getenv_int("STT_MERGE_MAX_TOKENS", 30),
        STT_MERGE_MIN_CHARS=_getenv_int("STT_MERGE_MIN_CHARS", 6),
        STT_REPLAN_ATTEMPTS=_getenv_int("STT_REPLAN_ATTEMPTS", 2),
        STT_REPLAN_SHRINK_FACTOR=_getenv_float("STT_REPLAN_SHRINK_FACTOR", 0.5),
        STT_PROVIDER=_getenv_str("STT_PROVIDER", default_provider).strip().lower(),
        STT_TRANSCRIBE_MODEL=_getenv_str("STT_TRANSCRIBE_MODEL", "gpt-4o-transcribe"),
        OPENAI_API_KEY=api_key,
        STT_REQUEST_TIMEOUT_SEC=_getenv_float("STT_REQUEST_TIMEOUT_SEC", 120.0),
        STT_DEFAULT_LANGUAGE=_getenv_str("STT_DEFAULT_LANGUAGE", ""),
        STT_LOG_LEVEL=_getenv_str("STT_LOG_LEVEL", "INFO"),
        STT_MAX_UPLOAD_BYTES=_getenv_int("STT_MAX_UPLOAD_BYTES", 200 * 1024 * 1024),
    )
    cfg.validate()
    return cfg
