from __future__ import annotations

import io
import logging
import math
import mimetypes
import shutil
import subprocess
import wave
from pathlib import Path
from typing import Optional

import numpy as np

from fieldscribe.asr.models import PcmBuffer

from .config import PCM_SAMPLE_RATE, PCM_SAMPLE_WIDTH
from .errors import ChunkEncodingError, DecodeError

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = PCM_SAMPLE_RATE
TARGET_SAMPLE_WIDTH = PCM_SAMPLE_WIDTH


def _which(cmd: str) -> Optional[str]:
    return shutil.which(cmd)


def enforce_max_size_bytes(path: Path, max_bytes: int) -> None:
    size = path.stat().st_size
    if size > max_bytes:
        raise ValueError(
            f"Audio file too large ({size / (1024 * 1024):.1f}MB), "
            f"max allowed is {max_bytes / (1024 * 1024):.1f}MB"
        )


def read_audio_file(path: Path, *, max_bytes: int) -> bytes:
    if not path.exists():
        raise FileNotFoundError(f"Audio file not found: {path}")
    enforce_max_size_bytes(path, max_bytes=max_bytes)
    return path.read_bytes()


def guess_content_type(filename: str) -> str:
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or "application/octet-stream"


def _pcm16_to_float32(raw: bytes) -> np.ndarray:
    usable = len(raw) - (len(raw) % TARGET_SAMPLE_WIDTH)
    audio_i16 = np.frombuffer(raw[:usable], dtype="<i2")
    return (audio_i16.astype(np.float32) / 32768.0).clip(-1.0, 1.0)


def _try_parse_wav16k_mono(raw: bytes) -> Optional[np.ndarray]:
    try:
        with wave.open(io.BytesIO(raw), "rb") as wf:
            if (
                wf.getnchannels() != 1
                or wf.getframerate() != TARGET_SAMPLE_RATE
                or wf.getsampwidth() != TARGET_SAMPLE_WIDTH
            ):
                return None
            frames = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError):
        return None
    return _pcm16_to_float32(frames)


def _decode_with_ffmpeg(ffmpeg: str, raw: bytes) -> np.ndarray:
    cmd = [
        ffmpeg,
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        "pipe:0",
        "-f",
        "s16le",
        "-ac",
        "1",
        "-ar",
        str(TARGET_SAMPLE_RATE),
        "pipe:1",
    ]
    try:
        proc = subprocess.run(
            cmd, input=raw, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE
        )
    except subprocess.CalledProcessError as e:
        stderr = (
            e.stderr.decode("utf-8", "ignore")
            if isinstance(e.stderr, (bytes, bytearray))
            else str(e.stderr)
        )
        raise DecodeError(
            f"Audio conversion failed via ffmpeg: {stderr.strip() or 'unknown error'}"
        ) from e
    return _pcm16_to_float32(proc.stdout)


def _decode_with_miniaudio(raw: bytes) -> np.ndarray:
    try:
        import miniaudio  # type: ignore
    except ImportError as e:
        raise DecodeError(
            "Audio decoding requires `ffmpeg` or the Python dependency `miniaudio`.",
            code="DECODER_UNAVAILABLE",
        ) from e

    try:
        decoded = miniaudio.decode(
            raw,
            output_format=miniaudio.SampleFormat.SIGNED16,
            nchannels=1,
            sample_rate=TARGET_SAMPLE_RATE,
        )
    except miniaudio.DecodeError as e:
        raise DecodeError(f"Audio conversion failed: {e}") from e
    return _pcm16_to_float32(decoded.samples.tobytes())


def decode_to_pcm(raw: bytes, filename: str = "") -> PcmBuffer:
    """
    Decode an in-memory recording to 16kHz mono float32 PCM.
    16kHz mono 16-bit WAV is parsed directly; anything else goes through ffmpeg,
    then `miniaudio` when ffmpeg is not installed.
    """
    if not raw:
        raise DecodeError("Audio payload is empty.", code="EMPTY_AUDIO")

    audio = _try_parse_wav16k_mono(raw)
    if audio is None:
        ffmpeg = _which("ffmpeg")
        if ffmpeg:
            audio = _decode_with_ffmpeg(ffmpeg, raw)
        else:
            audio = _decode_with_miniaudio(raw)

    if audio.size == 0:
        raise DecodeError(f"Decoded audio is empty: {filename or '<bytes>'}", code="EMPTY_AUDIO")
    logger.debug("decoded %s: %d samples", filename or "<bytes>", audio.size)
    return PcmBuffer(samples=audio, sample_rate=TARGET_SAMPLE_RATE)


def slice_pcm(pcm: PcmBuffer, start_ms: float, end_ms: float) -> np.ndarray:
    start = max(0, int(math.floor(start_ms * pcm.sample_rate / 1000.0)))
    end = min(pcm.num_samples, int(math.ceil(end_ms * pcm.sample_rate / 1000.0)))
    if end <= start:
        return pcm.samples[0:0]
    return pcm.samples[start:end]


def encode_wav_bytes(audio: np.ndarray, sample_rate: int = TARGET_SAMPLE_RATE) -> bytes:
    audio = np.asarray(audio, dtype=np.float32).clip(-1.0, 1.0)
    audio_i16 = (audio * 32767.0).round().astype("<i2")
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(TARGET_SAMPLE_WIDTH)
        wf.setframerate(int(sample_rate))
        wf.writeframes(audio_i16.tobytes())
    return buf.getvalue()


def encode_wav_chunk(pcm: PcmBuffer, start_ms: float, end_ms: float, *, chunk_index: int = 0) -> bytes:
    window = slice_pcm(pcm, start_ms, end_ms)
    if window.size == 0:
        raise ChunkEncodingError(
            chunk_index,
            f"Chunk {chunk_index} [{start_ms:.0f}ms, {end_ms:.0f}ms] has no samples",
            code="EMPTY_CHUNK",
        )
    try:
        return encode_wav_bytes(window, pcm.sample_rate)
    except (wave.Error, ValueError) as e:
        raise ChunkEncodingError(chunk_index, f"Chunk {chunk_index} could not be encoded: {e}") from e
